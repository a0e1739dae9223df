"""
Predicate registry.

Maps each PredicateName to its concrete implementation class and fixes
the canonical evaluation order of the mirror's authorization pipeline.

The order matters:

    Authentic -> SourceChain -> TrustedEmitter -> Unique

Evidence-layer predicates run first and are side-effect free. Unique is
the only predicate that writes to σ and therefore runs last: an
attestation that fails any earlier check must never consume its digest.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Type

from credbridge.core.enums import PredicateName
from credbridge.predicates.base import Predicate
from credbridge.predicates.evidenceLayer.authentic import AuthenticPredicate
from credbridge.predicates.evidenceLayer.sourceChain import SourceChainPredicate
from credbridge.predicates.evidenceLayer.trustedEmitter import TrustedEmitterPredicate
from credbridge.predicates.runtimeLayer.unique import UniquePredicate


# ================================================================
# 1) PredicateName -> concrete implementation class
# ================================================================

REAL_PREDICATE_CLASSES: Dict[PredicateName, Type[Predicate]] = {
    PredicateName.AUTHENTIC:       AuthenticPredicate,
    PredicateName.SOURCE_CHAIN:    SourceChainPredicate,
    PredicateName.TRUSTED_EMITTER: TrustedEmitterPredicate,
    PredicateName.UNIQUE:          UniquePredicate,
}


def _make_pred(name: PredicateName) -> Predicate:
    cls = REAL_PREDICATE_CLASSES[name]
    return cls()


# ================================================================
# 2) Canonical predicate order
# ================================================================

CANONICAL_ORDER: List[PredicateName] = [
    # Evidence layer
    PredicateName.AUTHENTIC,        # Authentic(a)
    PredicateName.SOURCE_CHAIN,     # SourceChain(a)
    PredicateName.TRUSTED_EMITTER,  # TrustedEmitter(a)

    # Runtime layer
    PredicateName.UNIQUE,           # Unique(a)
]


def get_pipeline(names: Optional[Sequence[PredicateName]] = None) -> List[Predicate]:
    """
    Instantiate predicates in canonical order.

    `names` restricts the pipeline to a subset (used by tests and threat
    scenarios to isolate one check); order is always canonical.
    """
    try:
        wanted = set(CANONICAL_ORDER if names is None else [PredicateName(n) for n in names])
    except ValueError as exc:
        raise ValueError(f"Unknown predicate: {exc}") from exc
    unknown = wanted - set(REAL_PREDICATE_CLASSES)
    if unknown:
        raise ValueError(f"No implementation for predicates: {sorted(p.value for p in unknown)}")
    return [_make_pred(name) for name in CANONICAL_ORDER if name in wanted]
