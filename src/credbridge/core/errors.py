# src/credbridge/core/errors.py
"""
Exception taxonomy.

Ledger programs raise `LedgerError` subclasses; each one aborts exactly
the transaction that raised it. The `reason` string mirrors the revert
message a real contract would return, which is what an off-chain client
gets to see.

Off-chain components raise `RelayerError` subclasses. Only
`ProviderError` is allowed to escape the discovery loop.
"""
from __future__ import annotations

from typing import Any, Optional


class CredbridgeError(Exception):
    """Base class for every error raised by this package."""


# ======================================================================
# 1. Ledger-side errors
# ======================================================================

class LedgerError(CredbridgeError):
    """A ledger program rejected a call; the transaction is reverted."""

    reason: str = "execution reverted"

    def __init__(self, reason: Optional[str] = None, **details: Any) -> None:
        self.reason = reason or self.reason
        self.details = details
        super().__init__(self.reason)


class ValidationError(LedgerError):
    """Bad input; the caller must change it before retrying."""


class DuplicateIdentifier(ValidationError):
    reason = "Credential already issued"


class DuplicateContent(ValidationError):
    reason = "Content hash already issued"


class InvalidTarget(ValidationError):
    reason = "Invalid target address"


class InvalidBatch(ValidationError):
    reason = "Invalid batch"


class InsufficientFee(ValidationError):
    reason = "Insufficient fee"


class NotFound(ValidationError):
    reason = "Credential not found"


class AuthorizationError(LedgerError):
    """Caller lacks the privilege for this operation. Never retried."""


class Unauthorized(AuthorizationError):
    reason = "Ownable: caller is not the owner"


class ProvenanceError(LedgerError):
    """
    The attestation is forged, mis-routed or from an untrusted emitter.

    These indicate misconfiguration or an attack and are logged loudly.
    """


class InvalidAttestation(ProvenanceError):
    reason = "Invalid VAA"


class WrongSourceChain(ProvenanceError):
    reason = "Invalid source chain"


class UntrustedEmitter(ProvenanceError):
    reason = "Untrusted emitter"


class IdempotenceError(LedgerError):
    """The requested effect already holds; collapsed to success off-chain."""


class AlreadyProcessed(IdempotenceError):
    reason = "VAA already processed"


class AlreadyRevoked(IdempotenceError):
    reason = "Credential already revoked"


# ======================================================================
# 2. Codec errors
# ======================================================================

class AttestationFormatError(CredbridgeError, ValueError):
    """Attestation bytes could not be decoded."""


# ======================================================================
# 3. Relayer-side errors
# ======================================================================

class RelayerError(CredbridgeError):
    """Base class for off-chain relay failures."""


class ProviderError(RelayerError):
    """
    Connectivity failure talking to a ledger node.

    Raised from discovery, this is fatal to the discovery loop: the driver
    restarts it after a backoff.
    """


class AttestationServiceError(RelayerError):
    """Transient failure of the attestation lookup (5xx, timeout, ...)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AttestationTimeout(RelayerError):
    """The attestation did not become available within the allowed attempts."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class DeliveryError(RelayerError):
    """The destination ledger rejected or failed a submission."""

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class ConfigError(CredbridgeError, ValueError):
    """Configuration is missing or malformed."""


ALREADY_PROCESSED_MARKERS = ("already processed",)


def is_already_processed(exc: BaseException) -> bool:
    """
    Return True iff `exc` says the destination already consumed the attestation.

    Typed errors from the simulated ledger are recognised directly; errors
    coming back from a real node only carry the revert string, so the
    message is matched as well.
    """
    if isinstance(exc, AlreadyProcessed):
        return True
    cause = exc.__cause__
    if isinstance(cause, AlreadyProcessed):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in ALREADY_PROCESSED_MARKERS)
