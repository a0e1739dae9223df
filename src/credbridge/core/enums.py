# src/credbridge/core/enums.py
from __future__ import annotations

from enum import Enum, IntEnum


class WormholeChainId(IntEnum):
    """
    Chain identifiers as assigned by the guardian network.

    These are *not* EVM chain ids. The guardian network numbers every
    supported chain with its own u16; attestations carry this number as
    `emitter_chain`, and the Verifier compares it against its configured
    expected source.
    """
    SOLANA = 1
    ETHEREUM = 2
    POLYGON = 5
    SEPOLIA = 10002
    POLYGON_AMOY = 10007


class PredicateName(str, Enum):
    """
    Canonical names of the checks the Verifier runs over an attestation.

    Evidence layer:
      Authentic(a)       - the bridge verification primitive accepts a
      SourceChain(a)     - a was emitted on the expected source chain
      TrustedEmitter(a)  - a was emitted by the trusted issuer program

    Runtime layer:
      Unique(a)          - digest(a) has not been consumed before
    """

    # ---- Evidence-layer predicates ----
    AUTHENTIC = "Authentic"
    SOURCE_CHAIN = "SourceChain"
    TRUSTED_EMITTER = "TrustedEmitter"

    # ---- Runtime-layer predicates ----
    UNIQUE = "Unique"


class EventName(str, Enum):
    """Names of events written to a ledger's log."""

    # source-side issuer
    CREDENTIAL_ISSUED = "LogCredentialIssued"
    MESSAGE_EMITTED = "CrossChainMessageEmitted"
    CREDENTIAL_REVOKED = "CredentialRevoked"
    MIRROR_TARGET_SET = "MirrorTargetSet"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"

    # core bridge
    MESSAGE_PUBLISHED = "LogMessagePublished"

    # destination-side mirror
    CREDENTIAL_RECEIVED = "CredentialReceived"


class RecordStatus(str, Enum):
    """
    Lifecycle of a credential identifier on one ledger.

        ABSENT -> ISSUED / MIRRORED -> REVOKED   (terminal)
    """
    ABSENT = "absent"
    ISSUED = "issued"
    MIRRORED = "mirrored"
    REVOKED = "revoked"


class RelayOutcome(str, Enum):
    """
    Final outcome of relaying one sequence number.

      - DELIVERED:           this relayer's submission was accepted.
      - ALREADY_PROCESSED:   the destination had already consumed the
                             attestation (another relayer won the race);
                             counted as success.
      - ATTESTATION_TIMEOUT: the attestation never became available
                             within the configured attempts.
      - FAILED:              genuine delivery error.
    """
    DELIVERED = "delivered"
    ALREADY_PROCESSED = "already_processed"
    ATTESTATION_TIMEOUT = "attestation_timeout"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self in (RelayOutcome.DELIVERED, RelayOutcome.ALREADY_PROCESSED)
