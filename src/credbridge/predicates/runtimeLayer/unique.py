from __future__ import annotations

from credbridge.core.enums import PredicateName
from credbridge.predicates.base import Predicate, PredicateLayer, PredicateContext, PredicateResult


class UniquePredicate(Predicate):
    """
    Unique(a):

    Unified semantics:
      "Each attestation is consumed at most once on the destination side.
       If the same digest is observed again, the predicate fails."

    Notes:
      - Identity is the attestation digest keccak256(keccak256(body)). Two
        encodings of the same body with different signature subsets share
        it, so re-signing does not open a replay.
      - The StateManager holds the processed set σ_D. On success the digest
        is inserted *before* the mirror touches any record; if anything
        later in the transaction fails, the ledger rolls the insert back.
      - Unique runs last in the pipeline, so an attestation rejected for
        any other reason never marks its digest.
    """

    name = PredicateName.UNIQUE
    layer = PredicateLayer.RUNTIME
    description = "Destination-side replay protection over attestation digests."

    def evaluate(self, ctx: PredicateContext) -> PredicateResult:
        state = ctx.state
        attestation = ctx.attestation
        if state is None:
            return self._fail("Unique: no destination state available.")
        if attestation is None:
            return self._fail("Unique: no decoded attestation available.")

        digest = attestation.digest_hex()
        if state.is_processed(digest):
            return self._fail(
                "Unique: attestation digest has already been processed.",
                digest=digest,
            )

        state.mark_processed(digest)
        return self._pass(digest=digest, note="Digest marked as processed.")
