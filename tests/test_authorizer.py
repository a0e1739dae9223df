"""Tests for the predicate pipeline and the Authorizer."""

import pytest

from credbridge.core.enums import PredicateName
from credbridge.core.models import CrossChainMessage
from credbridge.core.state import InMemoryStateManager
from credbridge.engine.authorizer import Authorizer
from credbridge.helper.crypto import GuardianSetVerifier, GuardianSigner
from credbridge.helper.encoding import account_address, to_emitter_address
from credbridge.predicates.base import PredicateContext
from credbridge.predicates.registry import CANONICAL_ORDER, get_pipeline
from credbridge.predicates.runtimeLayer.unique import UniquePredicate

ISSUER_PROGRAM = account_address("issuer-program")


@pytest.fixture
def signer() -> GuardianSigner:
    return GuardianSigner.from_seeds([f"guardian-{i}" for i in range(5)])


@pytest.fixture
def verifier(signer) -> GuardianSetVerifier:
    return GuardianSetVerifier([signer.guardian_set()])


def _signed(signer, *, chain: int = 2, emitter: str = ISSUER_PROGRAM, indices=None) -> bytes:
    message = CrossChainMessage(
        emitter_chain=chain,
        emitter_address=emitter,
        sequence=3,
        timestamp=1_700_000_036,
        payload=b"payload",
    )
    return signer.sign(message, signer_indices=indices).to_bytes()


def _authorize(verifier, data, state, authorizer=None):
    return (authorizer or Authorizer()).authorize(
        data,
        verifier.parse_and_verify(data),
        expected_source_chain=2,
        trusted_emitter=to_emitter_address(ISSUER_PROGRAM),
        state=state,
    )


class TestRegistry:
    def test_canonical_order(self):
        assert CANONICAL_ORDER == [
            PredicateName.AUTHENTIC,
            PredicateName.SOURCE_CHAIN,
            PredicateName.TRUSTED_EMITTER,
            PredicateName.UNIQUE,
        ]
        assert Authorizer().pipeline == CANONICAL_ORDER

    def test_subset_keeps_canonical_order(self):
        pipeline = get_pipeline([PredicateName.UNIQUE, PredicateName.AUTHENTIC])
        assert [p.name for p in pipeline] == [PredicateName.AUTHENTIC, PredicateName.UNIQUE]

    def test_unknown_predicate_rejected(self):
        with pytest.raises(ValueError):
            get_pipeline(["Timely"])


class TestAuthorizer:
    """Fail-fast evaluation of Authentic -> SourceChain -> TrustedEmitter -> Unique."""

    def test_valid_attestation_authorized_and_marked(self, signer, verifier):
        state = InMemoryStateManager()
        data = _signed(signer)

        result = _authorize(verifier, data, state)

        assert result.authorized is True
        assert result.violated is None
        assert [r.name for r in result.predicate_results] == CANONICAL_ORDER
        assert len(state) == 1

    def test_replay_violates_unique(self, signer, verifier):
        state = InMemoryStateManager()
        data = _signed(signer)
        _authorize(verifier, data, state)

        result = _authorize(verifier, data, state)

        assert result.authorized is False
        assert result.violated is PredicateName.UNIQUE
        assert result.failure.metadata["digest"].startswith("0x")

    def test_forged_attestation_stops_at_authentic(self, signer, verifier):
        state = InMemoryStateManager()
        result = _authorize(verifier, _signed(signer, indices=[0]), state)

        assert result.violated is PredicateName.AUTHENTIC
        assert len(result.predicate_results) == 1
        assert len(state) == 0

    def test_wrong_chain_does_not_mark_digest(self, signer, verifier):
        state = InMemoryStateManager()
        result = _authorize(verifier, _signed(signer, chain=5), state)

        assert result.violated is PredicateName.SOURCE_CHAIN
        assert result.failure.metadata == {"actual": 5, "expected": 2}
        assert len(state) == 0

    def test_untrusted_emitter_does_not_mark_digest(self, signer, verifier):
        state = InMemoryStateManager()
        result = _authorize(verifier, _signed(signer, emitter=account_address("impostor")), state)

        assert result.violated is PredicateName.TRUSTED_EMITTER
        assert [r.name for r in result.predicate_results] == [
            PredicateName.AUTHENTIC,
            PredicateName.SOURCE_CHAIN,
            PredicateName.TRUSTED_EMITTER,
        ]
        assert len(state) == 0

    def test_emitter_comparison_ignores_case(self, signer, verifier):
        """Emitter comparison ignores hex case."""
        data = _signed(signer)
        result = Authorizer().authorize(
            data,
            verifier.parse_and_verify(data),
            expected_source_chain=2,
            trusted_emitter=to_emitter_address(ISSUER_PROGRAM).upper(),
            state=InMemoryStateManager(),
        )
        assert result.authorized is True

    def test_evidence_only_pipeline_needs_no_state(self, signer, verifier):
        authorizer = Authorizer(
            [PredicateName.AUTHENTIC, PredicateName.SOURCE_CHAIN, PredicateName.TRUSTED_EMITTER]
        )
        result = _authorize(verifier, _signed(signer), None, authorizer)
        assert result.authorized is True


class TestUniquePredicate:
    def test_missing_state_fails(self, signer, verifier):
        data = _signed(signer)
        ctx = PredicateContext(
            raw=data,
            report=verifier.parse_and_verify(data),
            expected_source_chain=2,
            trusted_emitter=to_emitter_address(ISSUER_PROGRAM),
            state=None,
        )
        result = UniquePredicate()(ctx)
        assert result.ok is False

    def test_marking_is_case_insensitive(self):
        state = InMemoryStateManager()
        state.mark_processed("0xABCD")
        assert state.is_processed("0xabcd") is True
        assert list(state.processed()) == ["0xabcd"]
