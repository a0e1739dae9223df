from typing import List, Optional, Sequence

from pydantic import BaseModel

from credbridge.core.enums import PredicateName
from credbridge.core.state import StateManager
from credbridge.helper.crypto import VerificationReport
from credbridge.predicates.base import PredicateContext, PredicateResult
from credbridge.predicates.registry import get_pipeline


class AuthorizationResult(BaseModel):
    """
    Result of a single authorization attempt over one attestation.

    Fields
    ------
    authorized : bool
        True iff every predicate of the pipeline returned ok=True.

    violated : Optional[PredicateName]
        The first predicate that failed. The pipeline is fail-fast, so at
        most one predicate is ever reported as violated.

    predicate_results : List[PredicateResult]
        Per-predicate diagnostics, in execution order. Predicates after
        the first failure are not evaluated and do not appear here.
    """
    authorized: bool
    violated: Optional[PredicateName] = None
    predicate_results: List[PredicateResult]

    @property
    def failure(self) -> Optional[PredicateResult]:
        for res in self.predicate_results:
            if not res.ok:
                return res
        return None


class Authorizer:
    """
    Executes the mirror's authorization pipeline.

    -------------------------------------------------------------------------
    1. What is “authorization” here?
    -------------------------------------------------------------------------

        authorize(a, σ)  :=  Authentic(a) ∧ SourceChain(a)
                             ∧ TrustedEmitter(a) ∧ Unique(a, σ)

    - a : attestation bytes submitted by any relayer
    - σ : the destination-side processed-digest set

    -------------------------------------------------------------------------
    2. How the Authorizer operates
    -------------------------------------------------------------------------

      (1) Build a PredicateContext holding the raw bytes, the verdict of
          the bridge verification primitive, the provenance configuration
          and σ.
      (2) Take the pipeline from the registry (canonical order).
      (3) Evaluate predicates one by one and stop at the first failure.

    Stopping early is required, not an optimisation: Unique mutates σ,
    and it must never run for an attestation that is forged or
    mis-routed.

    -------------------------------------------------------------------------
    3. Error handling semantics
    -------------------------------------------------------------------------

    The Authorizer never raises for a semantic violation; it returns
    authorized=False. Translating a violation into a revert is the
    caller's job (the mirror program).
    """

    def __init__(self, predicates: Optional[Sequence[PredicateName]] = None) -> None:
        self._pipeline = get_pipeline(predicates)

    @property
    def pipeline(self) -> List[PredicateName]:
        return [p.name for p in self._pipeline]

    def authorize(
        self,
        raw: bytes,
        report: VerificationReport,
        *,
        expected_source_chain: int,
        trusted_emitter: str,
        state: Optional[StateManager],
    ) -> AuthorizationResult:
        ctx = PredicateContext(
            raw=raw,
            report=report,
            expected_source_chain=expected_source_chain,
            trusted_emitter=trusted_emitter,
            state=state,
        )

        results: List[PredicateResult] = []
        for pred in self._pipeline:
            res = pred(ctx)
            results.append(res)
            if not res.ok:
                return AuthorizationResult(
                    authorized=False,
                    violated=res.name,
                    predicate_results=results,
                )

        return AuthorizationResult(authorized=True, predicate_results=results)
