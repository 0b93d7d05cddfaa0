"""Deterministic, content-derived names for generated classes.

A generated class such as ``com/example/App$Proxy7`` gets an identifier like
``com/example/App$Proxy$Hashed$<digest>``. The digest is computed over the
class bytes after canonicalization:

- the class's own name is replaced by a run-independent placeholder
- every referenced generated class is replaced by its resolved identifier

Referenced classes must therefore be resolved first. Load order guarantees
this in practice, since helper shapes are synthesized before the classes that
reference them.

Hash algorithm: blake2b with a 16-byte digest (32 hex chars).
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass

from classreplay.classfile import ClassFile
from classreplay.classifier import NameClassifier
from classreplay.errors import FormatViolation, UnresolvedReference
from classreplay.rewriter import rewrite, rewrite_classfile

logger = logging.getLogger(__name__)

HASHED_MARKER = "$Hashed$"
SELF_PLACEHOLDER = "$Self$"

_IDENTIFIER_PATTERN = re.compile(re.escape(HASHED_MARKER) + r"[0-9a-f]+$")


def content_hash(data: bytes, algorithm: str = "blake2b", digest_size: int = 16) -> str:
    """Compute a stable hex digest of raw bytes.

    Args:
        data: Bytes to hash
        algorithm: Hash algorithm (blake2b, sha256, sha3_256)
        digest_size: Digest size for blake2b

    Returns:
        Hex digest string
    """
    if algorithm == "blake2b":
        hasher = hashlib.blake2b(digest_size=digest_size)
    elif algorithm == "sha256":
        hasher = hashlib.sha256()
    elif algorithm == "sha3_256":
        hasher = hashlib.sha3_256()
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher.update(data)
    return hasher.hexdigest()


@dataclass(frozen=True)
class ReferencePair:
    """A referenced generated class: its name in this run and its identifier."""
    logical_name: str
    identifier: str


@dataclass(frozen=True)
class GeneratedClassRecord:
    """Resolution result for one generated class.

    Attributes:
        logical_name: Run-specific name the runtime used
        identifier: Content-derived, run-independent name
        rewritten_bytes: Class bytes with every generated name replaced by its identifier
        references: Referenced generated classes in constant-pool order
        source_digest: Digest of the original bytes, for divergence checks
    """
    logical_name: str
    identifier: str
    rewritten_bytes: bytes
    references: tuple[ReferencePair, ...]
    source_digest: str

    @property
    def referenced_identifier(self) -> str | None:
        """Identifier of the first referenced generated class, if any."""
        return self.references[0].identifier if self.references else None

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary."""
        return {
            "logical_name": self.logical_name,
            "identifier": self.identifier,
            "references": [
                {"logical_name": r.logical_name, "identifier": r.identifier}
                for r in self.references
            ],
            "source_digest": self.source_digest,
        }


class DeterministicNamer:
    """Resolves generated class names to content-derived identifiers.

    Records are cached for the lifetime of the namer and never replaced. Not
    thread-safe on its own; :class:`classreplay.session.SessionState`
    serializes access.
    """

    def __init__(
        self,
        classifier: NameClassifier | None = None,
        canonicalize: bool = True,
    ):
        """Initialize namer.

        Args:
            classifier: Generated-name classifier
            canonicalize: If False, identifiers are the logical names themselves
        """
        self.classifier = classifier or NameClassifier()
        self.canonicalize = canonicalize
        self._records: dict[str, GeneratedClassRecord] = {}

    @staticmethod
    def is_identifier(name: str) -> bool:
        """Return True if ``name`` is a resolved identifier."""
        return _IDENTIFIER_PATTERN.search(name) is not None

    def record_for(self, logical_name: str) -> GeneratedClassRecord | None:
        """Return the cached record for ``logical_name``, if resolved."""
        return self._records.get(logical_name)

    def identifier_for(self, logical_name: str) -> str | None:
        """Return the cached identifier for ``logical_name``, if resolved."""
        record = self._records.get(logical_name)
        return record.identifier if record else None

    def referenced_names(self, classfile: ClassFile) -> list[str]:
        """Generated names or identifiers referenced by a class, excluding itself."""
        own = classfile.name
        return [
            name for name in classfile.referenced_class_names()
            if name != own and (self.classifier.is_generated(name) or self.is_identifier(name))
        ]

    def resolve(self, logical_name: str, data: bytes) -> GeneratedClassRecord:
        """Resolve the identifier of a generated class.

        Args:
            logical_name: Run-specific internal name
            data: Original (pre-rewrite) class bytes

        Returns:
            The cached or newly created record

        Raises:
            FormatViolation: If the bytes do not declare ``logical_name``
            UnresolvedReference: If a referenced generated class is unresolved
        """
        source_digest = content_hash(data)
        existing = self._records.get(logical_name)
        if existing is not None:
            if existing.source_digest != source_digest:
                logger.warning(
                    "There exist two different classes with name %s; keeping identifier %s",
                    logical_name, existing.identifier,
                )
            return existing

        record = self._compute(logical_name, data, source_digest)
        self._records[logical_name] = record
        logger.debug("Resolved %s -> %s", logical_name, record.identifier)
        return record

    def _compute(self, logical_name: str, data: bytes, source_digest: str) -> GeneratedClassRecord:
        classfile = ClassFile.parse(data)
        if classfile.name != logical_name:
            raise FormatViolation(
                f"bytes declare {classfile.name}", class_name=logical_name
            )

        if not self.canonicalize:
            references = tuple(
                ReferencePair(name, self.identifier_for(name) or name)
                for name in self.referenced_names(classfile)
            )
            return GeneratedClassRecord(logical_name, logical_name, bytes(data),
                                        references, source_digest)

        references = []
        for name in self.referenced_names(classfile):
            record = self._records.get(name)
            if record is None:
                raise UnresolvedReference(logical_name, name)
            references.append(ReferencePair(name, record.identifier))

        stem = self.classifier.stem(logical_name)
        ref_mapping = {r.logical_name: r.identifier for r in references}
        rewrite_classfile(classfile, {logical_name: stem + SELF_PLACEHOLDER, **ref_mapping})
        identifier = stem + HASHED_MARKER + content_hash(classfile.to_bytes())

        rewritten = rewrite(data, {logical_name: identifier, **ref_mapping})
        return GeneratedClassRecord(logical_name, identifier, rewritten,
                                    tuple(references), source_digest)
