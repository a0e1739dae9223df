"""Tests for the destination-side CredentialMirror program."""

import pytest

from credbridge.core.attestation import Attestation
from credbridge.core.enums import EventName, PredicateName, RecordStatus, WormholeChainId
from credbridge.core.errors import (
    AlreadyProcessed,
    AlreadyRevoked,
    DuplicateIdentifier,
    InvalidAttestation,
    NotFound,
    Unauthorized,
    UntrustedEmitter,
    WrongSourceChain,
)
from credbridge.helper.encoding import account_address, cid_hash
from credbridge.simulation.world import make_world


def _issue_and_sign(world, cid: str) -> bytes:
    receipt = world.issue(cid)
    data = world.attestation_for(receipt.return_value)
    assert data is not None
    return data


class TestReceiveAndVerify:
    """Happy path and replay protection."""

    def test_valid_attestation_creates_record(self, world):
        world.issue("QmWarmup")
        data = _issue_and_sign(world, "QmAAA")

        receipt = world.deliver(data)

        assert receipt.return_value == cid_hash("QmAAA")
        record = world.mirror.record(cid_hash("QmAAA"))
        assert record.issuer == world.issuer_owner
        assert record.revoked is False
        assert record.sequence == 1
        assert world.mirror.status("QmAAA") is RecordStatus.MIRRORED
        assert world.mirror.cid_issuer(cid_hash("QmAAA")) == world.issuer_owner

    def test_receive_emits_credential_received(self, world):
        data = _issue_and_sign(world, "QmAAA")
        receipt = world.deliver(data)

        (event,) = receipt.events_named(EventName.CREDENTIAL_RECEIVED.value)
        assert event.args["cid_hash"] == cid_hash("QmAAA")
        assert event.args["issuer"] == world.issuer_owner
        assert event.args["digest"] == Attestation.from_bytes(data).digest_hex()

    def test_digest_marked_processed(self, world):
        data = _issue_and_sign(world, "QmAAA")
        digest = Attestation.from_bytes(data).digest_hex()
        assert world.mirror.is_processed(digest) is False

        world.deliver(data)

        assert world.mirror.is_processed(digest) is True
        assert world.mirror.processed_count() == 1

    def test_replay_rejected_and_record_unchanged(self, world):
        data = _issue_and_sign(world, "QmAAA")
        world.deliver(data)
        before = world.mirror.record(cid_hash("QmAAA"))

        with pytest.raises(AlreadyProcessed):
            world.deliver(data)

        assert world.mirror.record(cid_hash("QmAAA")) == before
        assert world.mirror.processed_count() == 1

    def test_relayer_identity_is_irrelevant(self, world):
        """Anyone may submit; the second submitter still hits the replay check."""
        data = _issue_and_sign(world, "QmAAA")
        world.deliver(data, sender=account_address("relayer-a"))
        with pytest.raises(AlreadyProcessed):
            world.deliver(data, sender=account_address("relayer-b"))

    def test_attestations_can_arrive_out_of_order(self, world):
        first = _issue_and_sign(world, "Qm0")
        second = _issue_and_sign(world, "Qm1")

        world.deliver(second)
        world.deliver(first)

        assert world.mirror.record(cid_hash("Qm0")).sequence == 0
        assert world.mirror.record(cid_hash("Qm1")).sequence == 1


class TestRejections:
    """Every rejection leaves the processed set and records untouched."""

    def test_garbage_bytes_rejected(self, world):
        with pytest.raises(InvalidAttestation, match="Invalid VAA"):
            world.deliver(b"\x01\x02\x03")
        assert world.mirror.processed_count() == 0

    def test_short_quorum_rejected(self, world):
        data = _issue_and_sign(world, "QmAAA")
        attestation = Attestation.from_bytes(data)
        short = world.guardians.sign_message(attestation.message, signer_indices=[0, 1, 2])

        with pytest.raises(InvalidAttestation, match="quorum"):
            world.deliver(short)

        assert world.mirror.record(cid_hash("QmAAA")) is None
        assert world.mirror.processed_count() == 0
        world.deliver(data)

    def test_wrong_source_chain_rejected(self):
        world = make_world(expected_source_chain=WormholeChainId.SOLANA)
        data = _issue_and_sign(world, "QmAAA")

        with pytest.raises(WrongSourceChain) as excinfo:
            world.deliver(data)

        assert excinfo.value.details["predicate"] == PredicateName.SOURCE_CHAIN.value
        assert world.mirror.processed_count() == 0

    def test_untrusted_emitter_rejected(self):
        world = make_world(trusted_emitter=account_address("some-other-issuer"))
        data = _issue_and_sign(world, "QmAAA")

        with pytest.raises(UntrustedEmitter):
            world.deliver(data)

        assert world.mirror.record(cid_hash("QmAAA")) is None
        assert world.mirror.processed_count() == 0

    def test_malformed_payload_rejected(self, world):
        data = _issue_and_sign(world, "QmAAA")
        message = Attestation.from_bytes(data).message.model_copy(deep=True)
        message.sequence = 99
        message.payload = b"not an abi payload"
        signed = world.guardians.sign_message(message)

        with pytest.raises(InvalidAttestation, match="payload"):
            world.deliver(signed)

        assert world.mirror.is_processed(Attestation.from_bytes(signed).digest_hex()) is False

    def test_different_attestation_for_mirrored_cid_rejected(self, world):
        """A second message carrying an already mirrored cid_hash does not overwrite it."""
        data = _issue_and_sign(world, "QmAAA")
        world.deliver(data)

        message = Attestation.from_bytes(data).message.model_copy(deep=True)
        message.sequence = 42
        duplicate = world.guardians.sign_message(message)

        with pytest.raises(DuplicateIdentifier):
            world.deliver(duplicate)

        assert world.mirror.record(cid_hash("QmAAA")).sequence == 0
        assert world.mirror.processed_count() == 1


class TestVerifyDryRun:
    def test_verify_does_not_consume(self, world):
        data = _issue_and_sign(world, "QmAAA")

        result = world.mirror.verify(data)

        assert result.authorized is True
        assert world.mirror.processed_count() == 0
        world.deliver(data)

    def test_verify_reports_replay(self, world):
        data = _issue_and_sign(world, "QmAAA")
        world.deliver(data)

        result = world.mirror.verify(data)

        assert result.authorized is False
        assert result.violated is PredicateName.UNIQUE
        assert world.mirror.processed_count() == 1


class TestMirrorRevocation:
    """Mirror revocation is a destination-local fact."""

    def _revoke(self, world, cid, sender=None):
        return world.destination.transact(
            world.mirror.address,
            "revoke_credential",
            cid,
            sender=sender or world.mirror_owner,
        )

    def test_owner_revokes_mirrored_record(self, world):
        world.deliver(_issue_and_sign(world, "QmAAA"))
        self._revoke(world, "QmAAA")

        assert world.mirror.is_revoked(cid_hash("QmAAA")) is True
        assert world.mirror.status("QmAAA") is RecordStatus.REVOKED
        # source side is unaffected
        assert world.issuer.is_revoked(cid_hash("QmAAA")) is False

    def test_source_revocation_is_not_propagated(self, world):
        world.issue("QmAAA")
        world.source.transact(world.issuer.address, "revoke_credential", "QmAAA", sender=world.issuer_owner)

        world.deliver(world.attestation_for(0))

        assert world.issuer.is_revoked(cid_hash("QmAAA")) is True
        assert world.mirror.is_revoked(cid_hash("QmAAA")) is False

    def test_issuer_owner_has_no_power_on_mirror(self, world):
        world.deliver(_issue_and_sign(world, "QmAAA"))
        with pytest.raises(Unauthorized):
            self._revoke(world, "QmAAA", sender=world.issuer_owner)

    def test_revoking_unknown_record_rejected(self, world):
        with pytest.raises(NotFound):
            self._revoke(world, "QmNope")

    def test_second_revoke_rejected(self, world):
        world.deliver(_issue_and_sign(world, "QmAAA"))
        self._revoke(world, "QmAAA")
        with pytest.raises(AlreadyRevoked):
            self._revoke(world, "QmAAA")
