# src/credbridge/cli.py
"""credbridge command line: relay, simulate, threats, decode-vaa."""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import signal
from pathlib import Path
from typing import Optional

import click
from click.core import ParameterSource

from credbridge import __version__
from credbridge.core.attestation import Attestation
from credbridge.core.errors import AttestationFormatError, ConfigError
from credbridge.helper.encoding import hex_to_bytes
from credbridge.logging_config import configure_logging


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default="INFO", show_default=True, help="Log level.")
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    default="console",
    show_default=True,
    help="Log renderer.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, log_format: str):
    """Relay issued credentials from a source ledger to a mirror ledger."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_format"] = log_format
    configure_logging(log_level, log_format)


def _flag_or(ctx: click.Context, name: str, fallback: str) -> str:
    """Group option `name` if given on the command line, else `fallback`."""
    root = ctx.find_root()
    if root.get_parameter_source(name) is ParameterSource.DEFAULT:
        return fallback
    return root.params[name]


# ======================================================================
# relay
# ======================================================================

@cli.command()
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="dotenv file to read (default: ./.env if present).",
)
@click.pass_context
def relay(ctx: click.Context, env_file: Optional[Path]):
    """Run the relayer against the configured EVM ledgers."""
    from credbridge.adapters.evm import build_evm_clients
    from credbridge.config import load_config
    from credbridge.relayer.attestation import WormholescanClient
    from credbridge.relayer.cursor import cursor_store_for
    from credbridge.relayer.relayer import Relayer

    try:
        config = load_config(env_file)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    configure_logging(
        _flag_or(ctx, "log_level", config.log_level),
        _flag_or(ctx, "log_format", config.log_format),
    )

    async def _main() -> None:
        source, destination = build_evm_clients(config.network, config.relayer)
        attestations = WormholescanClient(config.relayer.attestation_api_url)
        relayer = Relayer(
            source,
            destination,
            attestations,
            config.relayer,
            cursor_store=cursor_store_for(config.relayer.cursor_path),
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, relayer.stop)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass
        try:
            await relayer.run()
        finally:
            await attestations.aclose()

    asyncio.run(_main())


# ======================================================================
# simulate
# ======================================================================

@cli.command()
@click.option("--credentials", "-n", default=5, show_default=True, help="Credentials to issue.")
@click.option("--relayers", "-r", default=2, show_default=True, help="Concurrent relayer instances.")
@click.option("--pending-polls", default=0, show_default=True, help="Lookups before an attestation appears.")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
def simulate(credentials: int, relayers: int, pending_polls: int, as_json: bool):
    """Issue credentials and relay them between two in-process ledgers."""
    from credbridge.simulation.runner import run_simulation

    if credentials < 1 or relayers < 1:
        raise click.BadParameter("--credentials and --relayers must be >= 1")

    report = asyncio.run(
        run_simulation(credentials, relayers=relayers, pending_polls=pending_polls)
    )

    if as_json:
        click.echo(report.model_dump_json(indent=2))
        return

    for name, results in report.results.items():
        click.echo(f"{name}:")
        for result in results:
            click.echo(f"  seq={result.sequence:<4} {result.outcome.value}")
    click.echo("mirrored:")
    for cid, record in report.mirrored.items():
        status = "missing" if record is None else f"issuer={record.issuer} seq={record.sequence}"
        click.echo(f"  {cid}: {status}")
    click.echo(f"delivered={report.delivered} processed={report.processed_count}")
    if not report.all_mirrored:
        raise SystemExit(1)


# ======================================================================
# threats
# ======================================================================

@cli.command()
@click.option("--threat", "threat_ids", multiple=True, help="Run only these threat ids.")
def threats(threat_ids):
    """Run the verifier threat scenarios and compare against the labels."""
    from credbridge.simulation.runner import run_scenario
    from credbridge.simulation.threats import SCENARIOS, ThreatId

    try:
        selected = [ThreatId(t) for t in threat_ids] or list(SCENARIOS)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--threat") from exc

    failures = 0
    for threat_id in selected:
        scenario = SCENARIOS[threat_id]
        click.echo(f"=== {threat_id.value} (expects {scenario.expected_violation.value}) ===")
        for outcome in run_scenario(scenario):
            verdict = "accepted" if outcome.accepted else f"rejected ({outcome.error})"
            mark = "ok" if outcome.correct else "WRONG"
            failures += 0 if outcome.correct else 1
            click.echo(f"  sample {outcome.index} [{outcome.label.value}] {verdict} -> {mark}")

    if failures:
        click.echo(f"{failures} sample(s) misclassified")
        raise SystemExit(1)


# ======================================================================
# decode-vaa
# ======================================================================

def _decode_input(text: str) -> bytes:
    text = text.strip()
    try:
        return hex_to_bytes(text)
    except ValueError:
        pass
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise click.BadParameter("expected hex or base64 attestation bytes") from exc


@cli.command(name="decode-vaa")
@click.argument("data")
def decode_vaa(data: str):
    """Decode attestation bytes (hex or base64) and print their fields."""
    raw = _decode_input(data)
    try:
        attestation = Attestation.from_bytes(raw)
    except AttestationFormatError as exc:
        raise click.ClickException(f"malformed attestation: {exc}") from exc

    message = attestation.message
    fields = {
        "version": attestation.version,
        "guardian_set_index": attestation.guardian_set_index,
        "signatures": [sig.index for sig in attestation.signatures],
        "digest": attestation.digest_hex(),
        "emitter_chain": message.emitter_chain,
        "emitter_address": message.emitter_address,
        "sequence": message.sequence,
        "nonce": message.nonce,
        "consistency_level": message.consistency_level,
        "timestamp": message.timestamp,
        "payload": "0x" + message.payload.hex(),
    }
    try:
        payload = message.credential_payload()
    except ValueError:
        fields["credential"] = None
    else:
        fields["credential"] = {"issuer": payload.issuer, "cid_hash": payload.cid_hash}
    click.echo(json.dumps(fields, indent=2))


if __name__ == "__main__":
    cli()
