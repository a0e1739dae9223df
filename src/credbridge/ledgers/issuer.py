# src/credbridge/ledgers/issuer.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from credbridge.core.enums import EventName, RecordStatus
from credbridge.core.errors import (
    AlreadyRevoked,
    DuplicateContent,
    DuplicateIdentifier,
    InsufficientFee,
    InvalidBatch,
    NotFound,
)
from credbridge.core.models import CredentialPayload, IssuanceRecord
from credbridge.helper.encoding import (
    ZERO_ADDRESS,
    cid_hash,
    normalize_address,
    normalize_bytes32,
)
from credbridge.ledgers.chain import OwnableProgram

MAX_BATCH_SIZE = 50
# Guardians sign once the emitting block is finalized.
CONSISTENCY_FINALIZED = 1


@dataclass
class IssuerStorage:
    owner: str
    core_bridge: str
    target_mirror: str = ZERO_ADDRESS
    records: Dict[str, IssuanceRecord] = field(default_factory=dict)
    # content_hash -> cid_hash it backs
    content_bindings: Dict[str, str] = field(default_factory=dict)


class CredentialIssuer(OwnableProgram):
    """
    Source-side emitter program.

    Records an issuance fact per content identifier, guards against
    duplicate identifiers and duplicate content, and asks the core bridge to
    publish a cross-chain message carrying (issuer, cid_hash). The sequence
    number returned by the bridge is also written to the log as
    `CrossChainMessageEmitted`, which is the relayer's discovery signal.

    Revocation is a local fact only; it is never propagated cross-chain.
    """

    name = "credential-issuer"

    def __init__(self, owner: str, core_bridge: str) -> None:
        super().__init__()
        self.storage = IssuerStorage(
            owner=normalize_address(owner),
            core_bridge=normalize_address(core_bridge),
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def cid_issuer(self, hashed_cid: str) -> str:
        """Issuer of `hashed_cid`, or the zero address if never issued."""
        record = self.storage.records.get(normalize_bytes32(hashed_cid))
        return record.issuer if record is not None else ZERO_ADDRESS

    def is_revoked(self, hashed_cid: str) -> bool:
        record = self.storage.records.get(normalize_bytes32(hashed_cid))
        return bool(record and record.revoked)

    def content_hash_issued(self, content_hash: str) -> bool:
        return normalize_bytes32(content_hash) in self.storage.content_bindings

    def record(self, hashed_cid: str) -> Optional[IssuanceRecord]:
        record = self.storage.records.get(normalize_bytes32(hashed_cid))
        return record.model_copy() if record is not None else None

    def status(self, cid: str) -> RecordStatus:
        record = self.storage.records.get(cid_hash(cid))
        if record is None:
            return RecordStatus.ABSENT
        return RecordStatus.REVOKED if record.revoked else RecordStatus.ISSUED

    def target_mirror_contract(self) -> str:
        return self.storage.target_mirror

    def message_fee(self) -> int:
        bridge = self._ledger().program(self.storage.core_bridge)
        return bridge.message_fee()

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_credential(self, cid: str, content_hash: str) -> int:
        """
        Issue one credential and publish it cross-chain; returns the sequence.

        The attached value must cover the bridge's message fee.
        """
        return self._issue(cid, content_hash, fee=self.msg.value)

    def batch_issue_credentials(self, cids: Sequence[str], content_hashes: Sequence[str]) -> List[int]:
        """
        Issue up to MAX_BATCH_SIZE credentials in one transaction.

        All-or-nothing: a duplicate anywhere in the batch (including a
        duplicate of an earlier entry of the same batch) reverts every pair.
        """
        if len(cids) != len(content_hashes):
            raise InvalidBatch("Array length mismatch", cids=len(cids), content_hashes=len(content_hashes))
        if not cids:
            raise InvalidBatch("Empty batch")
        if len(cids) > MAX_BATCH_SIZE:
            raise InvalidBatch(f"Batch size exceeds {MAX_BATCH_SIZE}", size=len(cids))

        fee = self.message_fee()
        if self.msg.value < fee * len(cids):
            raise InsufficientFee(required=fee * len(cids), provided=self.msg.value)

        return [self._issue(cid, h, fee=fee) for cid, h in zip(cids, content_hashes)]

    def _issue(self, cid: str, content_hash: str, *, fee: int) -> int:
        hashed = cid_hash(cid)
        content = normalize_bytes32(content_hash)

        if hashed in self.storage.records:
            raise DuplicateIdentifier(cid_hash=hashed)
        bound = self.storage.content_bindings.get(content)
        if bound is not None and bound != hashed:
            raise DuplicateContent(content_hash=content)

        issuer = self.msg.sender
        self.storage.records[hashed] = IssuanceRecord(
            cid_hash=hashed,
            content_hash=content,
            issuer=issuer,
        )
        self.storage.content_bindings[content] = hashed
        self._emit(EventName.CREDENTIAL_ISSUED.value, issuer=issuer, cid=cid, cid_hash=hashed)

        payload = CredentialPayload(issuer=issuer, cid_hash=hashed).encode()
        sequence = self._call(
            self.storage.core_bridge,
            "publish_message",
            0,
            payload,
            CONSISTENCY_FINALIZED,
            value=fee,
        )
        self._emit(EventName.MESSAGE_EMITTED.value, sequence=sequence)
        return sequence

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def revoke_credential(self, cid: str) -> None:
        self._only_owner()
        hashed = cid_hash(cid)
        record = self.storage.records.get(hashed)
        if record is None:
            raise NotFound(cid_hash=hashed)
        if record.revoked:
            raise AlreadyRevoked(cid_hash=hashed)
        record.revoked = True
        self._emit(EventName.CREDENTIAL_REVOKED.value, cid_hash=hashed)

    def set_mirror_contract(self, target: str) -> None:
        self._only_owner()
        self.storage.target_mirror = self._checked_address(target)
        self._emit(EventName.MIRROR_TARGET_SET.value, target=self.storage.target_mirror)
