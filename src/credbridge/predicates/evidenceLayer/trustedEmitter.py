from credbridge.core.enums import PredicateName
from credbridge.predicates.base import Predicate, PredicateLayer, PredicateContext, PredicateResult


class TrustedEmitterPredicate(Predicate):
    """
    TrustedEmitter(a): the emitting program is the configured issuer.

    Emitter addresses are compared in their 32-byte wire form, so a
    20-byte EVM address and its padded encoding are the same emitter.
    """

    name = PredicateName.TRUSTED_EMITTER
    layer = PredicateLayer.EVIDENCE
    description = "Attestation emitter address equals the trusted issuer program."

    def evaluate(self, ctx: PredicateContext) -> PredicateResult:
        attestation = ctx.attestation
        if attestation is None:
            return self._fail("TrustedEmitter: no decoded attestation available.")

        actual = attestation.message.emitter_address
        if actual != ctx.trusted_emitter.lower():
            return self._fail(
                "TrustedEmitter: emitter is not the trusted issuer.",
                actual=actual,
                expected=ctx.trusted_emitter,
            )
        return self._pass(emitter_address=actual)
