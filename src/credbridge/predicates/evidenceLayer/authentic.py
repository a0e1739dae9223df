from credbridge.core.enums import PredicateName
from credbridge.predicates.base import Predicate, PredicateLayer, PredicateContext, PredicateResult


class AuthenticPredicate(Predicate):
    """
        AuthenticPredicate

        High-level intent.
        ------------------
        Decides whether the submitted bytes are a genuine attestation of the
        bridging network: a quorum of the current guardian set signed the
        embedded message body.

        Scope of responsibility.
        ------------------------
        - Delegates entirely to the destination core bridge's verification
          primitive. The verdict is computed once by the mirror and handed
          in as ctx.report; this predicate only interprets it.
        - It deliberately does NOT decide:
            • whether the message comes from the right source chain;
            • whether the emitter is the trusted issuer program;
            • whether the attestation was already consumed.
          A perfectly signed attestation can still be mis-routed or
          replayed; those concerns belong to SourceChain, TrustedEmitter
          and Unique.
    """
    name = PredicateName.AUTHENTIC
    layer = PredicateLayer.EVIDENCE
    description = "Bridge verification primitive accepts the attestation bytes."

    def evaluate(self, ctx: PredicateContext) -> PredicateResult:
        report = ctx.report
        if not report.valid or report.attestation is None:
            return self._fail(
                f"Authentic: {report.reason or 'verification failed'}",
                bridge_reason=report.reason,
            )

        return self._pass(
            digest=report.attestation.digest_hex(),
            guardian_set_index=report.attestation.guardian_set_index,
            signatures=len(report.attestation.signatures),
        )
