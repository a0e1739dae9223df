from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, Set


# ======================================================================
# 1. Abstract Interface: StateManager
#
#    σ = set of attestation digests already consumed on the destination
# ======================================================================

class StateManager(ABC):
    """
    Destination-side state σ used by runtime-layer predicates.

    The only runtime obligation of the mirror is replay protection, so σ is
    a grow-only set of attestation digests:

        Unseen(d) --mark_processed(d)--> Processed(d)     (terminal)

    Crucially:
        • StateManager stores and exposes information; it does not decide
          whether an attestation is valid. That is the job of predicates.
        • Mutations are only durable if the enclosing ledger transaction
          commits. Implementations therefore live inside program storage,
          which the ledger snapshots and restores on revert.
    """

    @abstractmethod
    def is_processed(self, digest: str) -> bool:
        """Return True iff `digest` has been consumed before."""
        raise NotImplementedError

    @abstractmethod
    def mark_processed(self, digest: str) -> None:
        """
        Record `digest` as consumed.

        Marking an already processed digest is a no-op: the set only grows.
        """
        raise NotImplementedError

    @abstractmethod
    def processed(self) -> Iterator[str]:
        raise NotImplementedError


# ======================================================================
# 2. In-memory implementation
# ======================================================================

class InMemoryStateManager(StateManager):
    def __init__(self) -> None:
        self._digests: Set[str] = set()

    def is_processed(self, digest: str) -> bool:
        return digest.lower() in self._digests

    def mark_processed(self, digest: str) -> None:
        self._digests.add(digest.lower())

    def processed(self) -> Iterator[str]:
        return iter(sorted(self._digests))

    def __len__(self) -> int:
        return len(self._digests)
