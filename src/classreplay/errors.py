"""Error taxonomy for capture and substitution.

Expected gaps (missing artifact, excluded class, unresolved reference, I/O
failure) are recovered locally by the pipelines and surface as declines.
Format violations signal a broken invariant and are escalated to the caller.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class DeclineReason(Enum):
    """Reasons for leaving the runtime's own bytes in place."""

    NOT_FOUND = "NotFound"
    FOREIGN_TOOLING = "ForeignTooling"
    IO_FAILURE = "IOFailure"
    UNRESOLVED_REFERENCE = "UnresolvedReference"


class ReplayError(Exception):
    """Base class for all classreplay errors."""
    pass


class ConfigurationError(ReplayError):
    """Startup configuration is missing or invalid."""
    pass


class FormatViolation(ReplayError):
    """Binary class data is malformed or lacks an expected name slot."""

    def __init__(self, message: str, class_name: str | None = None):
        self.class_name = class_name
        if class_name:
            message = f"{class_name}: {message}"
        super().__init__(message)


class ArtifactIOError(ReplayError):
    """Reading or writing a stored artifact failed."""

    def __init__(self, name: str, cause: Exception):
        self.name = name
        self.cause = cause
        super().__init__(f"I/O failure for {name}: {cause}")


class UnresolvedReference(ReplayError):
    """A referenced generated class has no identifier in this session yet."""

    def __init__(self, class_name: str, referenced: str):
        self.class_name = class_name
        self.referenced = referenced
        super().__init__(
            f"{class_name} references generated class {referenced}, "
            f"which has not been resolved in this session"
        )


class LifecycleError(ReplayError):
    """Illegal capture lifecycle transition."""
    pass


class SubstitutionDeclined(ReplayError):
    """The substitution pipeline keeps the runtime's original bytes."""

    def __init__(self, reason: DeclineReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"[{reason.value}] {detail}" if detail else reason.value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"reason": self.reason.value, "detail": self.detail}
