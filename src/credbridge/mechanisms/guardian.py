# src/credbridge/mechanisms/guardian.py
from __future__ import annotations

import threading
from collections import Counter
from typing import Dict, Optional, Sequence

import structlog

from credbridge.core.enums import EventName
from credbridge.core.errors import AttestationServiceError
from credbridge.core.models import CrossChainMessage, LedgerEvent, MessageId, MessageTuple
from credbridge.helper.crypto import GuardianSigner
from credbridge.ledgers.chain import SimulatedLedger
from credbridge.relayer.ports import AttestationSource

log = structlog.get_logger(__name__)


class GuardianNetwork:
    """
    Simulated guardian network attached to one source ledger.

    Conceptual role
    ----------------
        • Every guardian watches the core bridge's `LogMessagePublished`
          events on the source ledger.
        • Once an event is `finality_blocks` deep, guardians rebuild the
          message body (emitter chain, padded emitter address, sequence,
          nonce, consistency level, block timestamp, payload) and sign
          its digest.
        • The resulting attestation is made available under the key
          (emitter_chain, emitter_address, sequence).

    All guardians are assumed honest and always online; signing with a
    subset of keys is only used by threat scenarios (`sign_message`).
    """

    def __init__(
        self,
        ledger: SimulatedLedger,
        core_bridge: str,
        signer: GuardianSigner,
        *,
        finality_blocks: int = 0,
        chain_id: Optional[int] = None,
    ) -> None:
        self.ledger = ledger
        self.core_bridge = core_bridge
        self.signer = signer
        self.finality_blocks = finality_blocks
        self.chain_id = ledger.chain_id if chain_id is None else chain_id
        self._observed_to = 0
        self._signed: Dict[MessageTuple, bytes] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def finalized_head(self) -> int:
        return self.ledger.head - self.finality_blocks

    def observe(self) -> int:
        """Sign every newly finalized publication; returns how many were signed."""
        with self._lock:
            upper = self.finalized_head()
            if upper <= self._observed_to:
                return 0
            events = self.ledger.get_logs(
                address=self.core_bridge,
                name=EventName.MESSAGE_PUBLISHED.value,
                from_block=self._observed_to + 1,
                to_block=upper,
            )
            for event in events:
                message = self._message_from_event(event)
                key = message.message_id().to_tuple()
                self._signed[key] = self.signer.sign(message).to_bytes()
                log.debug("guardian.signed", sequence=message.sequence, block=event.block_number)
            self._observed_to = upper
            return len(events)

    def _message_from_event(self, event: LedgerEvent) -> CrossChainMessage:
        args = event.args
        return CrossChainMessage(
            emitter_chain=self.chain_id,
            emitter_address=args["sender"],
            sequence=args["sequence"],
            nonce=args["nonce"],
            consistency_level=args["consistency_level"],
            timestamp=self.ledger.block(event.block_number).timestamp,
            payload=args["payload"],
        )

    # ------------------------------------------------------------------
    # Lookup / ad-hoc signing
    # ------------------------------------------------------------------

    def attestation(self, message_id: MessageId) -> Optional[bytes]:
        self.observe()
        return self._signed.get(message_id.to_tuple())

    def sign_message(
        self,
        message: CrossChainMessage,
        signer_indices: Optional[Sequence[int]] = None,
    ) -> bytes:
        """Sign an arbitrary message body (used to craft hostile attestations)."""
        return self.signer.sign(message, signer_indices=signer_indices).to_bytes()


class InMemoryAttestationService(AttestationSource):
    """
    AttestationSource backed by a GuardianNetwork.

    `pending_polls` makes every attestation look unavailable for that many
    lookups before it is served, like a public API that lags behind the
    guardians. `transient_errors` makes the first N lookups fail with
    AttestationServiceError. Per-key counts of answered lookups are kept
    in `polls`.
    """

    def __init__(
        self,
        network: GuardianNetwork,
        *,
        pending_polls: int = 0,
        transient_errors: int = 0,
    ) -> None:
        self.network = network
        self.pending_polls = pending_polls
        self.polls: Counter = Counter()
        self._withheld: Dict[MessageTuple, int] = {}
        self._transient_errors = transient_errors

    def withhold(self, message_id: MessageId, polls: int) -> None:
        """Override `pending_polls` for one message."""
        self._withheld[message_id.to_tuple()] = polls

    async def fetch(self, message_id: MessageId) -> Optional[bytes]:
        if self._transient_errors > 0:
            self._transient_errors -= 1
            raise AttestationServiceError("attestation service unavailable", status_code=503)

        key = message_id.to_tuple()
        self.polls[key] += 1

        withheld = self._withheld.get(key, self.pending_polls)
        if self.polls[key] <= withheld:
            return None
        return self.network.attestation(message_id)
