# src/credbridge/ledgers/mirror.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Type

from credbridge.config import VerifierConfig
from credbridge.core.enums import EventName, PredicateName, RecordStatus
from credbridge.core.errors import (
    AlreadyProcessed,
    AlreadyRevoked,
    DuplicateIdentifier,
    InvalidAttestation,
    LedgerError,
    NotFound,
    UntrustedEmitter,
    WrongSourceChain,
)
from credbridge.core.models import MirroredRecord
from credbridge.core.state import InMemoryStateManager
from credbridge.engine.authorizer import AuthorizationResult, Authorizer
from credbridge.helper.crypto import VerificationReport
from credbridge.helper.encoding import cid_hash, normalize_address, normalize_bytes32
from credbridge.ledgers.chain import OwnableProgram

# First failed predicate -> revert raised by the mirror.
VIOLATION_ERRORS: Dict[PredicateName, Type[LedgerError]] = {
    PredicateName.AUTHENTIC: InvalidAttestation,
    PredicateName.SOURCE_CHAIN: WrongSourceChain,
    PredicateName.TRUSTED_EMITTER: UntrustedEmitter,
    PredicateName.UNIQUE: AlreadyProcessed,
}


@dataclass
class MirrorStorage:
    owner: str
    core_bridge: str
    processed: InMemoryStateManager = field(default_factory=InMemoryStateManager)
    records: Dict[str, MirroredRecord] = field(default_factory=dict)


class CredentialMirror(OwnableProgram):
    """
    Destination-side verifier program.

    Accepts attestation bytes from *anyone*; whoever relays them has no
    privilege. A mirrored record is created only if the attestation is
    authentic, was emitted on the expected source chain by the trusted
    issuer, and has not been consumed before. Everything happens inside the
    caller's transaction, so a failure at any step leaves the processed set
    and the records untouched.
    """

    name = "credential-mirror"

    def __init__(
        self,
        owner: str,
        core_bridge: str,
        config: VerifierConfig,
        authorizer: Optional[Authorizer] = None,
    ) -> None:
        super().__init__()
        self.storage = MirrorStorage(
            owner=normalize_address(owner),
            core_bridge=normalize_address(core_bridge),
        )
        self.config = config
        self.authorizer = authorizer or Authorizer()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def is_processed(self, digest: str) -> bool:
        return self.storage.processed.is_processed(normalize_bytes32(digest))

    def processed_count(self) -> int:
        return len(self.storage.processed)

    def cid_issuer(self, hashed_cid: str) -> Optional[str]:
        record = self.storage.records.get(normalize_bytes32(hashed_cid))
        return record.issuer if record is not None else None

    def is_revoked(self, hashed_cid: str) -> bool:
        record = self.storage.records.get(normalize_bytes32(hashed_cid))
        return bool(record and record.revoked)

    def record(self, hashed_cid: str) -> Optional[MirroredRecord]:
        record = self.storage.records.get(normalize_bytes32(hashed_cid))
        return record.model_copy() if record is not None else None

    def status(self, cid: str) -> RecordStatus:
        record = self.storage.records.get(cid_hash(cid))
        if record is None:
            return RecordStatus.ABSENT
        return RecordStatus.REVOKED if record.revoked else RecordStatus.MIRRORED

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, data: bytes) -> AuthorizationResult:
        """
        Dry-run the evidence checks without touching state.

        Unique is evaluated against the current processed set but its
        insert is discarded; useful for off-chain diagnostics.
        """
        report = self._bridge_report(data)
        scratch = InMemoryStateManager()
        if report.attestation is not None and self.storage.processed.is_processed(
            report.attestation.digest_hex()
        ):
            scratch.mark_processed(report.attestation.digest_hex())
        return self.authorizer.authorize(
            data,
            report,
            expected_source_chain=self.config.expected_source_chain,
            trusted_emitter=self.config.trusted_emitter,
            state=scratch,
        )

    def receive_and_verify_vaa(self, data: bytes) -> str:
        """
        Verify `data` and materialize the mirrored record; returns cid_hash.

        Reverts with InvalidAttestation, WrongSourceChain, UntrustedEmitter
        or AlreadyProcessed (first failing check wins), or with
        DuplicateIdentifier if a record already exists for the cid_hash.
        """
        report = self._bridge_report(data)
        result = self.authorizer.authorize(
            data,
            report,
            expected_source_chain=self.config.expected_source_chain,
            trusted_emitter=self.config.trusted_emitter,
            state=self.storage.processed,
        )
        if not result.authorized:
            failure = result.failure
            error_cls = VIOLATION_ERRORS[result.violated]
            if error_cls is InvalidAttestation:
                raise InvalidAttestation(
                    f"{InvalidAttestation.reason}: {report.reason}" if report.reason else None,
                    predicate=failure.name.value,
                )
            raise error_cls(predicate=failure.name.value, **failure.metadata)

        attestation = report.attestation
        try:
            payload = attestation.message.credential_payload()
        except ValueError as exc:
            raise InvalidAttestation("Invalid payload", detail=str(exc)) from exc

        if payload.cid_hash in self.storage.records:
            raise DuplicateIdentifier(cid_hash=payload.cid_hash)

        self.storage.records[payload.cid_hash] = MirroredRecord(
            cid_hash=payload.cid_hash,
            issuer=payload.issuer,
            sequence=attestation.message.sequence,
        )
        self._emit(
            EventName.CREDENTIAL_RECEIVED.value,
            cid_hash=payload.cid_hash,
            issuer=payload.issuer,
            sequence=attestation.message.sequence,
            digest=attestation.digest_hex(),
        )
        return payload.cid_hash

    def _bridge_report(self, data: bytes) -> VerificationReport:
        bridge = self._ledger().program(self.storage.core_bridge)
        return bridge.parse_and_verify_vm(data)

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
