# src/credbridge/simulation/world.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from credbridge.config import RelayerConfig, VerifierConfig
from credbridge.core.enums import WormholeChainId
from credbridge.core.models import MessageId, TxReceipt
from credbridge.helper.crypto import GuardianSetVerifier, GuardianSigner
from credbridge.helper.encoding import account_address, keccak_hex
from credbridge.ledgers.chain import SimulatedLedger
from credbridge.ledgers.core_bridge import CoreBridge
from credbridge.ledgers.issuer import CredentialIssuer
from credbridge.ledgers.mirror import CredentialMirror
from credbridge.mechanisms.guardian import GuardianNetwork, InMemoryAttestationService
from credbridge.adapters.simulated import SimulatedDestinationClient, SimulatedSourceClient
from credbridge.relayer.cursor import CursorStore
from credbridge.relayer.ports import AttestationSource, DestinationLedgerClient, SourceLedgerClient
from credbridge.relayer.relayer import Relayer

DEFAULT_GUARDIANS = 5


def content_hash_for(cid: str) -> str:
    """Deterministic stand-in for the digest of an uploaded artifact."""
    return keccak_hex(b"content:" + cid.encode("utf-8"))


@dataclass
class SimulationWorld:
    """
    Two simulated ledgers wired together by a guardian network.

    This is *not* a deployment model. It only records what the relay
    protocol needs:
        - source:       core bridge + CredentialIssuer
        - destination:  core bridge (guardian-set verifier) + CredentialMirror
        - guardians:    observe the source bridge and sign attestations

    Tests and the `simulate` / `threats` commands build one per run.
    """

    source: SimulatedLedger
    destination: SimulatedLedger
    source_bridge: CoreBridge
    destination_bridge: CoreBridge
    issuer: CredentialIssuer
    mirror: CredentialMirror
    guardians: GuardianNetwork
    issuer_owner: str
    mirror_owner: str
    message_fee: int = 0

    # ------------------------------------------------------------------
    # Source-side actions
    # ------------------------------------------------------------------

    def issue(
        self,
        cid: str,
        content_hash: Optional[str] = None,
        *,
        sender: Optional[str] = None,
        value: Optional[int] = None,
    ) -> TxReceipt:
        """Issue one credential; the receipt's return_value is the sequence."""
        return self.source.transact(
            self.issuer.address,
            "issue_credential",
            cid,
            content_hash or content_hash_for(cid),
            sender=sender or self.issuer_owner,
            value=self.message_fee if value is None else value,
        )

    def batch_issue(
        self,
        cids: Sequence[str],
        content_hashes: Optional[Sequence[str]] = None,
        *,
        sender: Optional[str] = None,
        value: Optional[int] = None,
    ) -> TxReceipt:
        hashes = list(content_hashes) if content_hashes is not None else [content_hash_for(c) for c in cids]
        return self.source.transact(
            self.issuer.address,
            "batch_issue_credentials",
            list(cids),
            hashes,
            sender=sender or self.issuer_owner,
            value=self.message_fee * len(cids) if value is None else value,
        )

    # ------------------------------------------------------------------
    # Attestations
    # ------------------------------------------------------------------

    def message_id(self, sequence: int) -> MessageId:
        return MessageId(
            emitter_chain=self.guardians.chain_id,
            emitter_address=self.issuer.address,
            sequence=sequence,
        )

    def attestation_for(self, sequence: int) -> Optional[bytes]:
        return self.guardians.attestation(self.message_id(sequence))

    def deliver(self, data: bytes, *, sender: Optional[str] = None) -> TxReceipt:
        """Submit attestation bytes to the mirror directly (no relayer)."""
        return self.destination.transact(
            self.mirror.address,
            "receive_and_verify_vaa",
            data,
            sender=sender or account_address("direct-submitter"),
        )

    # ------------------------------------------------------------------
    # Relayer wiring
    # ------------------------------------------------------------------

    def source_client(self) -> SimulatedSourceClient:
        return SimulatedSourceClient(self.source, self.issuer.address, emitter_chain=self.guardians.chain_id)

    def destination_client(self, sender: Optional[str] = None, *, latency: float = 0.0) -> SimulatedDestinationClient:
        return SimulatedDestinationClient(
            self.destination,
            self.mirror.address,
            sender or account_address("relayer"),
            latency=latency,
        )

    def attestation_service(self, *, pending_polls: int = 0, transient_errors: int = 0) -> InMemoryAttestationService:
        return InMemoryAttestationService(
            self.guardians,
            pending_polls=pending_polls,
            transient_errors=transient_errors,
        )

    def relayer_config(self, **overrides) -> RelayerConfig:
        """Relayer settings suited to in-process runs: no real waiting."""
        settings = dict(
            source_chain_id=self.guardians.chain_id,
            poll_interval=0.01,
            attestation_interval=0.0,
            attestation_max_attempts=10,
            restart_backoff=0.0,
            max_workers=4,
            queue_size=16,
            max_block_range=2000,
            start_block=0,
        )
        settings.update(overrides)
        return RelayerConfig(**settings)

    def relayer(
        self,
        config: Optional[RelayerConfig] = None,
        *,
        name: str = "relayer",
        source: Optional[SourceLedgerClient] = None,
        destination: Optional[DestinationLedgerClient] = None,
        attestations: Optional[AttestationSource] = None,
        cursor_store: Optional[CursorStore] = None,
    ) -> Relayer:
        return Relayer(
            source or self.source_client(),
            destination or self.destination_client(account_address(name)),
            attestations or self.attestation_service(),
            config or self.relayer_config(),
            cursor_store=cursor_store,
            name=name,
        )


def make_world(
    *,
    source_chain: int = WormholeChainId.ETHEREUM,
    destination_chain: int = WormholeChainId.POLYGON,
    guardian_seeds: Optional[List[str]] = None,
    message_fee: int = 0,
    finality_blocks: int = 0,
    expected_source_chain: Optional[int] = None,
    trusted_emitter: Optional[str] = None,
) -> SimulationWorld:
    """
    Deploy core bridges, issuer and mirror on two fresh ledgers.

    By default the mirror trusts exactly the deployed issuer on
    `source_chain`; `expected_source_chain` / `trusted_emitter` override that
    to model a misconfigured deployment.
    """
    seeds = guardian_seeds or [f"guardian-{i}" for i in range(DEFAULT_GUARDIANS)]
    signer = GuardianSigner.from_seeds(seeds)

    source = SimulatedLedger(int(source_chain), name="source")
    destination = SimulatedLedger(int(destination_chain), name="destination")

    source_bridge = CoreBridge(message_fee=message_fee)
    source.deploy(source_bridge)
    destination_bridge = CoreBridge(verifier=GuardianSetVerifier([signer.guardian_set()]))
    destination.deploy(destination_bridge)

    issuer_owner = account_address("issuer-owner")
    mirror_owner = account_address("mirror-owner")

    issuer = CredentialIssuer(owner=issuer_owner, core_bridge=source_bridge.address)
    source.deploy(issuer)

    mirror = CredentialMirror(
        owner=mirror_owner,
        core_bridge=destination_bridge.address,
        config=VerifierConfig(
            expected_source_chain=int(source_chain) if expected_source_chain is None else expected_source_chain,
            trusted_emitter=trusted_emitter or issuer.address,
        ),
    )
    destination.deploy(mirror)
    source.transact(issuer.address, "set_mirror_contract", mirror.address, sender=issuer_owner)

    guardians = GuardianNetwork(
        source,
        source_bridge.address,
        signer,
        finality_blocks=finality_blocks,
    )

    return SimulationWorld(
        source=source,
        destination=destination,
        source_bridge=source_bridge,
        destination_bridge=destination_bridge,
        issuer=issuer,
        mirror=mirror,
        guardians=guardians,
        issuer_owner=issuer_owner,
        mirror_owner=mirror_owner,
        message_fee=message_fee,
    )
