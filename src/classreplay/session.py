"""Session-scoped state shared by the class-load event pipelines.

One :class:`SessionState` belongs to exactly one pipeline. It holds the
retention table, the namer with its identifier cache, and the lock that
serializes every mutation of either.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass

from classreplay.classifier import NameClassifier
from classreplay.namer import DeterministicNamer, GeneratedClassRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadEvent:
    """Bytes of one class as first observed in this session."""
    logical_name: str
    data: bytes
    load_order: int


class RetentionTable:
    """Insertion-ordered mapping of logical names to original bytes.

    Order matters: a generated class may reference other generated classes,
    and their identifiers must be resolved before its own. The first bytes
    seen under a name are kept; later divergent bytes only log a warning.
    """

    def __init__(self) -> None:
        self._events: dict[str, LoadEvent] = {}
        self._counter = itertools.count()

    def retain(self, logical_name: str, data: bytes) -> LoadEvent:
        """Record ``data`` under ``logical_name`` unless already present.

        Returns:
            The retained event (the first-seen one on repeats)
        """
        existing = self._events.get(logical_name)
        if existing is not None:
            if existing.data != data:
                logger.warning(
                    "There exist two different classes with name %s; keeping the first",
                    logical_name,
                )
            return existing
        event = LoadEvent(logical_name, bytes(data), next(self._counter))
        self._events[logical_name] = event
        return event

    def get(self, logical_name: str) -> bytes | None:
        event = self._events.get(logical_name)
        return event.data if event else None

    def events(self) -> list[LoadEvent]:
        """Retained events in first-seen order."""
        return list(self._events.values())

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self._events

    def __len__(self) -> int:
        return len(self._events)


class SessionState:
    """Retention table plus identifier cache under a single lock."""

    def __init__(
        self,
        classifier: NameClassifier | None = None,
        canonicalize: bool = True,
    ):
        self.classifier = classifier or NameClassifier()
        self.lock = threading.RLock()
        self.retained = RetentionTable()
        self.namer = DeterministicNamer(self.classifier, canonicalize=canonicalize)

    def retain(self, logical_name: str, data: bytes) -> LoadEvent:
        """Insert-or-compare under the session lock."""
        with self.lock:
            return self.retained.retain(logical_name, data)

    def resolve(self, logical_name: str) -> GeneratedClassRecord:
        """Resolve a retained generated class under the session lock.

        Raises:
            KeyError: If ``logical_name`` was never retained
        """
        with self.lock:
            data = self.retained.get(logical_name)
            if data is None:
                raise KeyError(f"{logical_name} has not been retained in this session")
            return self.namer.resolve(logical_name, data)
