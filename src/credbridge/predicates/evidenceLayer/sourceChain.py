from credbridge.core.enums import PredicateName
from credbridge.predicates.base import Predicate, PredicateLayer, PredicateContext, PredicateResult


class SourceChainPredicate(Predicate):
    """
    SourceChain(a):

      "The attestation was emitted on the chain the mirror is configured
       to trust."

    Compares the guardian-network chain id in the message body against the
    mirror's `expected_source_chain`. Without this check, the same issuer
    address deployed on another chain could mint mirrored records.
    """

    name = PredicateName.SOURCE_CHAIN
    layer = PredicateLayer.EVIDENCE
    description = "Attestation emitter chain equals the configured source chain."

    def evaluate(self, ctx: PredicateContext) -> PredicateResult:
        attestation = ctx.attestation
        if attestation is None:
            return self._fail("SourceChain: no decoded attestation available.")

        actual = attestation.message.emitter_chain
        if actual != ctx.expected_source_chain:
            return self._fail(
                f"SourceChain: emitter chain {actual} != expected {ctx.expected_source_chain}.",
                actual=actual,
                expected=ctx.expected_source_chain,
            )
        return self._pass(emitter_chain=actual)
