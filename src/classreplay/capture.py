"""Capture ("play-out") pipeline.

Records every class-load event in first-seen order while the host runs, and
on the host's exit notification writes the observed classes to an artifact
store. Generated classes are written under their content-derived identifier
with all generated names rewritten to identifiers; all other classes are
written unchanged under their literal name.

Lifecycle (one-way):
    RUNNING -> SHUTTING_DOWN -> DUMPED
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from classreplay.classfile import class_name as extract_class_name
from classreplay.classifier import NameClassifier
from classreplay.config import ReplayConfig
from classreplay.diagnostics import DUMPED, DiagnosticsSink, NullSink
from classreplay.errors import (
    ArtifactIOError,
    FormatViolation,
    LifecycleError,
    UnresolvedReference,
)
from classreplay.session import SessionState
from classreplay.store import ArtifactStore, SecurityError

logger = logging.getLogger(__name__)


class CaptureState(Enum):
    """Capture lifecycle states."""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    DUMPED = "dumped"


@dataclass
class DumpReport:
    """Outcome of writing the retained classes.

    Attributes:
        fresh: Artifacts that did not exist before
        overwritten: Artifacts that replaced an existing file
        resolved: Generated classes renamed to identifiers
        skipped: Entries not written (unresolved references, dry run)
        io_failures: Entries whose write failed
        artifacts: Names written, in dump order
        errors: Human-readable per-entry problems
    """
    fresh: int = 0
    overwritten: int = 0
    resolved: int = 0
    skipped: int = 0
    io_failures: int = 0
    artifacts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def written(self) -> int:
        return self.fresh + self.overwritten

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "written": self.written,
            "fresh": self.fresh,
            "overwritten": self.overwritten,
            "resolved": self.resolved,
            "skipped": self.skipped,
            "io_failures": self.io_failures,
            "artifacts": list(self.artifacts),
            "errors": list(self.errors),
        }


class CapturePipeline:
    """Observes class loads and dumps them once the host exits."""

    def __init__(
        self,
        config: ReplayConfig,
        store: ArtifactStore | None = None,
        session: SessionState | None = None,
        sink: DiagnosticsSink | None = None,
    ):
        self.config = config
        self.store = store or ArtifactStore(config.out_dir)
        self.session = session or SessionState(
            NameClassifier(config.generated_patterns),
            canonicalize=config.canonicalize,
        )
        self.sink = sink or NullSink()
        self._state = CaptureState.RUNNING
        self.ignored_events = 0

    @property
    def state(self) -> CaptureState:
        return self._state

    def is_excluded(self, class_name: str) -> bool:
        """Whether the class belongs to the capturing tooling itself."""
        return class_name.startswith(self.config.tooling_prefixes)

    def transform(self, class_name: str | None, data: bytes) -> None:
        """Class-load hook. Records the event; never replaces bytes."""
        with self.session.lock:
            if self._state is not CaptureState.RUNNING:
                self.ignored_events += 1
                return None
            if class_name is None:
                class_name = extract_class_name(data)
            if self.is_excluded(class_name):
                return None
            event = self.session.retained.retain(class_name, data)

        version = data[7] if len(data) > 7 else -1
        logger.debug("Recorded %s (class file v%d, load #%d)", class_name, version, event.load_order)
        return None

    def shutdown(self) -> None:
        """Host exit notification: stop accepting events.

        Raises:
            LifecycleError: If the pipeline is not running
        """
        with self.session.lock:
            if self._state is not CaptureState.RUNNING:
                raise LifecycleError(f"Cannot shut down capture in state {self._state.value}")
            self._state = CaptureState.SHUTTING_DOWN
        logger.info("Capture shutting down with %d retained classes", len(self.session.retained))

    def dump(self) -> DumpReport:
        """Write retained classes in recorded order.

        Returns:
            DumpReport with per-entry counts

        Raises:
            LifecycleError: If called outside SHUTTING_DOWN
            FormatViolation: If retained class data is malformed
        """
        with self.session.lock:
            if self._state is not CaptureState.SHUTTING_DOWN:
                raise LifecycleError(f"Cannot dump capture in state {self._state.value}")

        report = DumpReport()
        try:
            for event in self.session.retained.events():
                self._dump_one(event.logical_name, event.data, report)
        finally:
            with self.session.lock:
                self._state = CaptureState.DUMPED

        logger.info(
            "Dumped %d classes (%d new, %d overwritten, %d skipped, %d failed)",
            report.written, report.fresh, report.overwritten, report.skipped, report.io_failures,
        )
        return report

    def _dump_one(self, class_name: str, data: bytes, report: DumpReport) -> None:
        name = class_name
        try:
            if self.session.classifier.is_generated(class_name):
                record = self.session.resolve(class_name)
                name, data = record.identifier, record.rewritten_bytes
                report.resolved += 1

            if self.config.dry_run:
                report.skipped += 1
                return

            if self.store.put(name, data):
                report.fresh += 1
            else:
                report.overwritten += 1
            report.artifacts.append(name)
            self.sink.record(class_name, DUMPED, modified=name != class_name, reason=name)
        except UnresolvedReference as e:
            logger.warning("Skipping %s: %s", class_name, e)
            report.skipped += 1
            report.errors.append(str(e))
        except (ArtifactIOError, SecurityError) as e:
            logger.error("Could not write %s: %s", name, e)
            report.io_failures += 1
            report.errors.append(str(e))
        except FormatViolation:
            logger.exception("Malformed class data for %s", class_name)
            raise

    def finish(self) -> DumpReport:
        """Shut down and dump in one step."""
        self.shutdown()
        return self.dump()
