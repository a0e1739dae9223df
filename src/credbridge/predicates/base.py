# src/credbridge/predicates/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from credbridge.core.attestation import Attestation
from credbridge.core.enums import PredicateName
from credbridge.core.state import StateManager
from credbridge.helper.crypto import VerificationReport


JsonDict = Dict[str, Any]


class PredicateLayer(str, Enum):
    """
    Logical layer of a predicate.

      * EVIDENCE:
          Predicates that only inspect the attestation and what is bound to
          it (signatures, emitter chain, emitter address).

      * RUNTIME:
          Predicates that additionally depend on mutable state σ on the
          destination ledger (the processed-digest set).

    This enum is purely for documentation / debugging. It does not
    enforce any behavior by itself.
    """

    EVIDENCE = "evidence"
    RUNTIME = "runtime"


class PredicateContext(BaseModel):
    """
    Unified input context passed to every predicate.

      * raw: attestation bytes exactly as submitted by a relayer.
      * report: what the trusted bridge verification primitive said about
        `raw`. It is computed once, before the pipeline runs.
      * expected_source_chain / trusted_emitter: the mirror's immutable
        provenance configuration.
      * state: destination-side state manager σ (replay set).

    The Authorizer is responsible for constructing this context before
    calling any predicates.
    """

    raw: bytes = Field(
        ...,
        description="Attestation bytes submitted for verification.",
    )

    report: VerificationReport = Field(
        ...,
        description="Verdict of the bridge verification primitive on `raw`.",
    )

    expected_source_chain: int = Field(
        ...,
        description="Guardian-network chain id the issuer lives on.",
    )

    trusted_emitter: str = Field(
        ...,
        description="32-byte padded address of the trusted issuer program (hex, no prefix).",
    )

    # May be None if a test runs evidence-layer predicates only.
    state: Optional[StateManager] = Field(
        default=None,
        description="Destination-side replay state σ, used by Unique.",
    )

    params: JsonDict = Field(
        default_factory=dict,
        description="Optional predicate configuration / debug flags.",
    )

    class Config:
        # Concrete StateManager implementations are plain Python objects.
        arbitrary_types_allowed = True

    @property
    def attestation(self) -> Optional[Attestation]:
        return self.report.attestation


class PredicateResult(BaseModel):
    """
    Result of evaluating a single predicate on a given context.

    Fields:
      * name:     which predicate was evaluated.
      * ok:       True iff the predicate holds under the current context.
      * reason:   human-readable explanation, mainly for logs and for the
                  revert reason of the mirror.
      * metadata: structured data for tests and threat reports (chain ids,
                  digests, ...).
    """

    name: PredicateName
    ok: bool
    reason: Optional[str] = None
    metadata: JsonDict = Field(default_factory=dict)


class Predicate(ABC):
    """
    Abstract base class for all concrete predicates
    (Authentic, SourceChain, TrustedEmitter, Unique).

    Each concrete predicate sets `name`, `layer` and `description`, and
    implements `evaluate(ctx) -> PredicateResult`.
    """

    name: PredicateName
    layer: PredicateLayer
    description: str = ""

    def __call__(self, ctx: PredicateContext) -> PredicateResult:
        return self.evaluate(ctx)

    def _fail(self, reason: str, **metadata: Any) -> PredicateResult:
        return PredicateResult(name=self.name, ok=False, reason=reason, metadata=metadata)

    def _pass(self, **metadata: Any) -> PredicateResult:
        return PredicateResult(name=self.name, ok=True, metadata=metadata)

    @abstractmethod
    def evaluate(self, ctx: PredicateContext) -> PredicateResult:
        """
        Core predicate logic.

        Evidence-layer predicates must not mutate anything. Runtime-layer
        predicates may update σ, and only once they have decided to pass.
        """
        raise NotImplementedError
