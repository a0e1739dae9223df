# src/credbridge/adapters/simulated.py
"""
Relayer ports backed by in-process SimulatedLedger instances.

Used by the `simulate` command and by the test suite. Both clients can
inject faults (provider outages, submission latency) so that the relayer's
resilience paths can be exercised without a network.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

from credbridge.core.enums import EventName
from credbridge.core.errors import DeliveryError, LedgerError, ProviderError
from credbridge.core.models import EmissionEvent, TxReceipt
from credbridge.helper.encoding import normalize_address
from credbridge.ledgers.chain import SimulatedLedger
from credbridge.relayer.ports import DestinationLedgerClient, SourceLedgerClient


class SimulatedSourceClient(SourceLedgerClient):
    def __init__(
        self,
        ledger: SimulatedLedger,
        issuer_address: str,
        *,
        emitter_chain: Optional[int] = None,
    ) -> None:
        self.ledger = ledger
        self.issuer_address = normalize_address(issuer_address)
        self.emitter_chain = ledger.chain_id if emitter_chain is None else emitter_chain
        self.calls = 0
        self._failures = 0

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` calls raise ProviderError."""
        self._failures += count

    def _check_provider(self) -> None:
        self.calls += 1
        if self._failures > 0:
            self._failures -= 1
            raise ProviderError(f"{self.ledger.name}: connection refused")

    async def get_head(self) -> int:
        self._check_provider()
        return self.ledger.head

    async def get_emissions(self, from_block: int, to_block: int) -> List[EmissionEvent]:
        self._check_provider()
        logs = self.ledger.get_logs(
            address=self.issuer_address,
            name=EventName.MESSAGE_EMITTED.value,
            from_block=from_block,
            to_block=to_block,
        )
        return [
            EmissionEvent(
                sequence=ev.args["sequence"],
                block_number=ev.block_number,
                emitter_chain=self.emitter_chain,
                emitter_address=self.issuer_address,
                tx_hash=ev.tx_hash,
            )
            for ev in logs
        ]


class SimulatedDestinationClient(DestinationLedgerClient):
    """
    Submits attestations to a CredentialMirror as `sender`.

    Reverts surface as DeliveryError carrying the program's revert reason,
    the same shape a JSON-RPC node returns.
    """

    def __init__(
        self,
        ledger: SimulatedLedger,
        mirror_address: str,
        sender: str,
        *,
        latency: float = 0.0,
    ) -> None:
        self.ledger = ledger
        self.mirror_address = normalize_address(mirror_address)
        self.sender = normalize_address(sender)
        self.latency = latency
        self.submissions = 0

    async def submit_attestation(self, data: bytes) -> TxReceipt:
        self.submissions += 1
        # Yield so concurrent relayers interleave like real submissions.
        await asyncio.sleep(self.latency)
        try:
            return self.ledger.transact(
                self.mirror_address,
                "receive_and_verify_vaa",
                data,
                sender=self.sender,
            )
        except LedgerError as exc:
            raise DeliveryError(f"execution reverted: {exc.reason}") from exc
