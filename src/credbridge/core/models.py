from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from pydantic import BaseModel, Field, field_validator

from credbridge.core.enums import RelayOutcome
from credbridge.helper.encoding import (
    hex_to_bytes,
    normalize_address,
    normalize_bytes32,
    to_emitter_address,
)

JsonDict = Dict[str, Any]

# Identity of an emitted message as understood by the attestation service:
#     MessageTuple = (emitter_chain, emitter_address, sequence)
MessageTuple = Tuple[int, str, int]


# ======================================================================
# 1. Ledger records
# ======================================================================

class IssuanceRecord(BaseModel):
    """
    Credential fact owned by the source-side issuer program.

    Invariants:
        • exactly one issuer is ever recorded per cid_hash (first writer wins);
        • a content_hash backs at most one cid_hash;
        • revoked flips once from False to True and never back.
    """

    cid_hash: str = Field(
        ...,
        description="keccak256 of the content identifier; primary key.",
    )
    content_hash: str = Field(
        ...,
        description="Digest of the credential artifact.",
    )
    issuer: str = Field(
        ...,
        description="Account that issued the credential.",
    )
    revoked: bool = False


class MirroredRecord(BaseModel):
    """
    Credential fact owned by the destination-side mirror program.

    Created only from a valid, correctly sourced, non-replayed attestation.
    Its `revoked` flag is independent of the source side: each ledger's
    owner revokes on their own ledger.
    """

    cid_hash: str
    issuer: str
    revoked: bool = False
    sequence: Optional[int] = Field(
        default=None,
        description="Sequence of the message this record was materialized from.",
    )


# ======================================================================
# 2. Cross-chain message and its payload
# ======================================================================

class CredentialPayload(BaseModel):
    """
    Application payload carried by a cross-chain message:

        payload = abi.encode(address issuer, bytes32 cidHash)
    """

    issuer: str
    cid_hash: str

    @field_validator("issuer")
    @classmethod
    def _check_issuer(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("cid_hash")
    @classmethod
    def _check_cid_hash(cls, value: str) -> str:
        return normalize_bytes32(value)

    def encode(self) -> bytes:
        return abi_encode(
            ["address", "bytes32"],
            [self.issuer, hex_to_bytes(self.cid_hash)],
        )

    @classmethod
    def decode(cls, data: bytes) -> "CredentialPayload":
        """Raises ValueError if `data` is not a well-formed payload."""
        try:
            issuer, raw_hash = abi_decode(["address", "bytes32"], data)
        except Exception as exc:
            raise ValueError(f"Malformed credential payload: {exc}") from exc
        return cls(issuer=issuer, cid_hash="0x" + raw_hash.hex())


class MessageId(BaseModel):
    """
    Canonical identity of an emitted message, the lookup key of the
    attestation service:

        key = (emitter_chain, emitter_address, sequence)
    """

    emitter_chain: int
    emitter_address: str
    sequence: int

    @field_validator("emitter_address")
    @classmethod
    def _pad_emitter(cls, value: str) -> str:
        return to_emitter_address(value)

    def to_tuple(self) -> MessageTuple:
        return (self.emitter_chain, self.emitter_address, self.sequence)

    def path(self) -> str:
        """URL path segment `{chain}/{emitter}/{sequence}`."""
        return f"{self.emitter_chain}/{self.emitter_address}/{self.sequence}"

    def __str__(self) -> str:
        return self.path()


class CrossChainMessage(BaseModel):
    """
    A message published through the core bridge; the *body* of an attestation.

    Not persisted by the issuer beyond emission: its existence is only
    discoverable through the source ledger's event log.
    """

    emitter_chain: int = Field(
        ...,
        description="Guardian-network chain id of the source ledger.",
    )
    emitter_address: str = Field(
        ...,
        description="32-byte padded address of the emitting program (hex, no prefix).",
    )
    sequence: int = Field(
        ...,
        description="Per-emitter monotonic counter assigned by the core bridge.",
    )
    nonce: int = 0
    consistency_level: int = 1
    timestamp: int = 0
    payload: bytes = b""

    @field_validator("emitter_address")
    @classmethod
    def _pad_emitter(cls, value: str) -> str:
        return to_emitter_address(value)

    def message_id(self) -> MessageId:
        return MessageId(
            emitter_chain=self.emitter_chain,
            emitter_address=self.emitter_address,
            sequence=self.sequence,
        )

    def credential_payload(self) -> CredentialPayload:
        return CredentialPayload.decode(self.payload)


# ======================================================================
# 3. Ledger I/O
# ======================================================================

class LedgerEvent(BaseModel):
    """One entry of a ledger's append-only event log."""

    name: str
    address: str = Field(
        ...,
        description="Program that emitted the event.",
    )
    block_number: int
    tx_hash: str
    log_index: int = 0
    args: JsonDict = Field(default_factory=dict)


class TxReceipt(BaseModel):
    """Outcome of a committed transaction."""

    tx_hash: str
    block_number: int
    status: bool = True
    events: List[LedgerEvent] = Field(default_factory=list)
    return_value: Any = None

    def events_named(self, name: str) -> List[LedgerEvent]:
        return [ev for ev in self.events if ev.name == name]


# ======================================================================
# 4. Relayer items
# ======================================================================

class EmissionEvent(BaseModel):
    """
    Discovery signal: the issuer emitted a cross-chain message.

    Produced by SourceLedgerClient.get_emissions and consumed by the
    relayer's worker pool.
    """

    sequence: int
    block_number: int
    emitter_chain: int
    emitter_address: str
    tx_hash: Optional[str] = None

    @field_validator("emitter_address")
    @classmethod
    def _pad_emitter(cls, value: str) -> str:
        return to_emitter_address(value)

    def message_id(self) -> MessageId:
        return MessageId(
            emitter_chain=self.emitter_chain,
            emitter_address=self.emitter_address,
            sequence=self.sequence,
        )


class RelayResult(BaseModel):
    """What happened to one sequence number in one relayer instance."""

    sequence: int
    outcome: RelayOutcome
    attempts: int = 0
    tx_hash: Optional[str] = None
    digest: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome.is_success
