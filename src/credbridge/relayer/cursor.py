# src/credbridge/relayer/cursor.py
from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import structlog

log = structlog.get_logger(__name__)


class CursorStore(ABC):
    """
    Durable checkpoint of the relayer's discovery progress.

    The stored value is the highest source block whose emissions have all
    been handled (delivered, already processed, or given up on). A restarted
    relayer resumes scanning at `checkpoint + 1`, so emissions that were
    queued or in flight when the process died are discovered again. That
    is at-least-once delivery; the mirror's replay set makes it safe.
    """

    @abstractmethod
    def load(self) -> Optional[int]:
        """Last saved checkpoint, or None if nothing was ever saved."""
        raise NotImplementedError

    @abstractmethod
    def save(self, block: int) -> None:
        raise NotImplementedError


class InMemoryCursorStore(CursorStore):
    def __init__(self, initial: Optional[int] = None) -> None:
        self._value = initial

    def load(self) -> Optional[int]:
        return self._value

    def save(self, block: int) -> None:
        self._value = block


class JsonFileCursorStore(CursorStore):
    """
    Checkpoint kept in a small JSON file: {"block": <int>}.

    Writes go to a temporary file in the same directory followed by
    os.replace, so a crash never leaves a half-written checkpoint.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[int]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return int(data["block"])
        except (ValueError, KeyError, TypeError) as exc:
            log.warning("cursor.unreadable", path=str(self.path), error=str(exc))
            return None

    def save(self, block: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".cursor-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({"block": block}, fh)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


def cursor_store_for(path: Optional[Path]) -> CursorStore:
    return JsonFileCursorStore(path) if path is not None else InMemoryCursorStore()
