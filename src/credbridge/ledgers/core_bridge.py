# src/credbridge/ledgers/core_bridge.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from credbridge.core.enums import EventName
from credbridge.core.errors import InsufficientFee
from credbridge.helper.crypto import BridgeVerifier, VerificationReport
from credbridge.ledgers.chain import LedgerProgram


@dataclass
class BridgeStorage:
    message_fee: int
    sequences: Dict[str, int] = field(default_factory=dict)
    collected_fees: int = 0


class CoreBridge(LedgerProgram):
    """
    The bridging network's on-ledger endpoint.

    One instance lives on every ledger taking part in the protocol:

      * on the source ledger, programs call `publish_message` to hand a
        payload to the guardian network; the bridge assigns a per-emitter
        sequence number (starting at 0) and writes `LogMessagePublished`,
        which guardians observe;

      * on the destination ledger, programs call `parse_and_verify_vm` to
        have an attestation checked against the current guardian set. This
        is the "trusted bridge verification primitive": programs do not
        re-implement signature checking, they delegate to the bridge.
    """

    name = "core-bridge"

    def __init__(self, message_fee: int = 0, verifier: Optional[BridgeVerifier] = None) -> None:
        super().__init__()
        self.storage = BridgeStorage(message_fee=message_fee)
        # Immutable configuration, deliberately outside snapshotted storage.
        self._verifier = verifier

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def message_fee(self) -> int:
        return self.storage.message_fee

    def next_sequence(self, emitter: str) -> int:
        return self.storage.sequences.get(emitter, 0)

    # ------------------------------------------------------------------
    # External
    # ------------------------------------------------------------------

    def publish_message(self, nonce: int, payload: bytes, consistency_level: int) -> int:
        fee = self.storage.message_fee
        if self.msg.value < fee:
            raise InsufficientFee(required=fee, provided=self.msg.value)

        emitter = self.msg.sender
        sequence = self.storage.sequences.get(emitter, 0)
        self.storage.sequences[emitter] = sequence + 1
        self.storage.collected_fees += self.msg.value

        self._emit(
            EventName.MESSAGE_PUBLISHED.value,
            sender=emitter,
            sequence=sequence,
            nonce=nonce,
            payload=payload,
            consistency_level=consistency_level,
        )
        return sequence

    def parse_and_verify_vm(self, data: bytes) -> VerificationReport:
        if self._verifier is None:
            return VerificationReport(valid=False, reason="no guardian set configured")
        return self._verifier.parse_and_verify(data)
