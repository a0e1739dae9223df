# src/credbridge/relayer/ports.py
"""
Ports between the relayer and the outside world.

The relayer never talks to a ledger or to the attestation service
directly; it is handed one implementation of each port. Simulated and EVM
adapters live in `credbridge.adapters`, the guardian-network service in
`credbridge.mechanisms.guardian`, the HTTP client in
`credbridge.relayer.attestation`.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from credbridge.core.models import EmissionEvent, MessageId, TxReceipt


class SourceLedgerClient(ABC):
    """
    Read access to the source ledger's event log.

    Implementations raise `ProviderError` when the node cannot be reached;
    that error is fatal to the discovery loop.
    """

    @abstractmethod
    async def get_head(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def get_emissions(self, from_block: int, to_block: int) -> List[EmissionEvent]:
        """`CrossChainMessageEmitted` events of the issuer in [from_block, to_block]."""
        raise NotImplementedError


class DestinationLedgerClient(ABC):
    @abstractmethod
    async def submit_attestation(self, data: bytes) -> TxReceipt:
        """
        Submit attestation bytes to the mirror and wait for the receipt.

        Raises `DeliveryError` if the submission reverted or failed; the
        revert reason is kept in the message so that `is_already_processed`
        can classify it.
        """
        raise NotImplementedError


class AttestationSource(ABC):
    @abstractmethod
    async def fetch(self, message_id: MessageId) -> Optional[bytes]:
        """
        Signed attestation bytes for `message_id`, or None if the bridging
        network has not produced one yet.

        Raises `AttestationServiceError` for transient lookup failures.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release underlying resources (HTTP connections, ...)."""
        return None
