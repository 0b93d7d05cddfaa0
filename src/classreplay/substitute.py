"""Substitution ("play-in") pipeline.

For each class-load event, looks up the artifact captured for the same class
and hands it back to the runtime in place of the original bytes. Generated
classes are looked up by their content-derived identifier, and the stored
identifiers are rewritten back to the names the current run assigned.

A decline (``None``) means "keep the runtime's own bytes". Only format
violations propagate to the caller.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from classreplay.classfile import ClassFile
from classreplay.classfile import class_name as extract_class_name
from classreplay.classifier import NameClassifier
from classreplay.config import ReplayConfig
from classreplay.diagnostics import DECLINED, REPLACED, DiagnosticsSink, NullSink
from classreplay.errors import (
    ArtifactIOError,
    DeclineReason,
    FormatViolation,
    SubstitutionDeclined,
    UnresolvedReference,
)
from classreplay.namer import GeneratedClassRecord
from classreplay.rewriter import rewrite
from classreplay.session import SessionState
from classreplay.store import RestrictedLookup

logger = logging.getLogger(__name__)


@dataclass
class SubstitutionStats:
    """Counters over all class-load events seen by the pipeline."""
    invoked: int = 0
    java: int = 0
    sun: int = 0
    replaced: int = 0
    declined: int = 0
    tooling: int = 0
    library: int = 0
    by_reason: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "invoked": self.invoked,
            "java": self.java,
            "sun": self.sun,
            "replaced": self.replaced,
            "declined": self.declined,
            "tooling": self.tooling,
            "library": self.library,
            "by_reason": dict(sorted(self.by_reason.items())),
        }

    def summary(self) -> str:
        """Human-readable shutdown summary."""
        lines = [
            f"Total classes loaded = {self.invoked}",
            f"\tjava/* classes = {self.java}",
            f"\tsun/* classes = {self.sun}",
            f"Replaced classes = {self.replaced}",
            f"Unreplaced classes = {self.declined}",
            f"\tlibrary classes = {self.library}",
            f"\ttooling classes = {self.tooling}",
        ]
        for reason in DeclineReason:
            lines.append(f"\t{reason.value} = {self.by_reason.get(reason.value, 0)}")
        return "\n".join(lines)


class SubstitutionPipeline:
    """Replaces class bytes with artifacts from a restricted corpus."""

    def __init__(
        self,
        config: ReplayConfig,
        lookup: RestrictedLookup | None = None,
        session: SessionState | None = None,
        sink: DiagnosticsSink | None = None,
    ):
        """Initialize pipeline.

        Args:
            config: Startup configuration
            lookup: Artifact lookup (default: the configured corpus, which must exist)
            session: Session state (default: fresh state from config)
            sink: Diagnostics sink (default: config-driven, only when verbose)

        Raises:
            ConfigurationError: If the default corpus is missing
        """
        self.config = config
        self.lookup = lookup or RestrictedLookup(config.require_corpus())
        self.session = session or SessionState(
            NameClassifier(config.generated_patterns),
            canonicalize=config.canonicalize,
        )
        if sink is None:
            sink = DiagnosticsSink(config.diagnostics_path) if config.verbose else NullSink()
        self.sink = sink
        self.stats = SubstitutionStats()
        self._stats_lock = threading.Lock()

    def transform(self, class_name: str | None, data: bytes) -> bytes | None:
        """Class-load hook.

        Args:
            class_name: Internal name requested by the runtime, or None
            data: Original class bytes

        Returns:
            Replacement bytes, or None to keep ``data``

        Raises:
            FormatViolation: If original or stored class data is malformed
        """
        try:
            if class_name is None:
                class_name = extract_class_name(data)
            self._count_invocation(class_name)
            replacement = self._substitute(class_name, data)
        except SubstitutionDeclined as e:
            self._record_decline(class_name, e)
            return None
        except FormatViolation:
            logger.exception("Exception in class replacer for %s", class_name)
            raise

        modified = replacement != data
        with self._stats_lock:
            self.stats.replaced += 1
        self.sink.record(class_name, REPLACED, modified=modified)
        return replacement

    def _count_invocation(self, class_name: str) -> None:
        with self._stats_lock:
            self.stats.invoked += 1
            if class_name.startswith("java/"):
                self.stats.java += 1
            elif class_name.startswith("sun/"):
                self.stats.sun += 1

    def _record_decline(self, class_name: str | None, declined: SubstitutionDeclined) -> None:
        reason = declined.reason.value
        with self._stats_lock:
            self.stats.declined += 1
            self.stats.by_reason[reason] = self.stats.by_reason.get(reason, 0) + 1
        if self.config.verbose:
            logger.info("Not replacing %s: %s", class_name, declined,
                        extra={"decline": declined.to_dict()})
        self.sink.record(class_name or "", DECLINED, modified=False, reason=reason)

    def _check_excluded(self, class_name: str) -> None:
        if class_name.startswith(self.config.tooling_prefixes):
            with self._stats_lock:
                self.stats.tooling += 1
            raise SubstitutionDeclined(DeclineReason.FOREIGN_TOOLING, class_name)
        if class_name.startswith(self.config.library_prefixes):
            with self._stats_lock:
                self.stats.library += 1
            raise SubstitutionDeclined(DeclineReason.FOREIGN_TOOLING, class_name)

    def _fetch(self, name: str) -> bytes:
        try:
            data = self.lookup.get(name)
        except ArtifactIOError as e:
            raise SubstitutionDeclined(DeclineReason.IO_FAILURE, str(e)) from e
        if data is None:
            raise SubstitutionDeclined(DeclineReason.NOT_FOUND, name)
        return data

    def _substitute(self, class_name: str, data: bytes) -> bytes:
        self._check_excluded(class_name)

        if not self.session.classifier.is_generated(class_name):
            return self._fetch(class_name)

        self.session.retain(class_name, data)
        try:
            record = self.session.resolve(class_name)
        except UnresolvedReference as e:
            raise SubstitutionDeclined(DeclineReason.UNRESOLVED_REFERENCE, str(e)) from e

        stored = self._fetch(record.identifier)
        return rewrite(stored, self._reverse_mapping(record, stored))

    def _reverse_mapping(self, record: GeneratedClassRecord, stored: bytes) -> dict[str, str]:
        """Map stored identifiers back to this run's literal names."""
        classfile = ClassFile.parse(stored)
        if classfile.name != record.identifier:
            raise FormatViolation(
                f"stored artifact declares {classfile.name}", class_name=record.identifier
            )

        stored_refs = self.session.namer.referenced_names(classfile)
        if len(stored_refs) != len(record.references):
            raise FormatViolation(
                f"stored artifact references {len(stored_refs)} generated classes, "
                f"{record.logical_name} references {len(record.references)}",
                class_name=record.identifier,
            )

        mapping = {record.identifier: record.logical_name}
        for stored_ref, ref in zip(stored_refs, record.references):
            if self.session.namer.canonicalize and stored_ref != ref.identifier:
                raise FormatViolation(
                    f"stored reference {stored_ref} does not match {ref.logical_name} "
                    f"({ref.identifier})",
                    class_name=record.identifier,
                )
            mapping[stored_ref] = ref.logical_name
        return mapping
