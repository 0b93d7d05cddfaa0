"""classreplay - capture and replay class files across runs.

Classes synthesized at runtime carry per-run ordinal names (``$Proxy7``,
``GeneratedMethodAccessor12``). classreplay names them by content instead, so
bytes captured in one run can be substituted into an equivalent later run.

Usage:
    from classreplay import CapturePipeline, ReplayConfig

    capture = CapturePipeline(ReplayConfig(out_dir="captured"))
    capture.transform("com/example/App", app_bytes)
    report = capture.finish()
"""

__version__ = "0.1.0"

from classreplay.capture import CapturePipeline, CaptureState, DumpReport
from classreplay.classifier import NameClassifier, is_generated
from classreplay.config import ReplayConfig
from classreplay.errors import (
    ArtifactIOError,
    ConfigurationError,
    DeclineReason,
    FormatViolation,
    LifecycleError,
    ReplayError,
    SubstitutionDeclined,
    UnresolvedReference,
)
from classreplay.namer import DeterministicNamer, GeneratedClassRecord
from classreplay.rewriter import rewrite
from classreplay.session import SessionState
from classreplay.store import ArtifactStore, RestrictedLookup
from classreplay.substitute import SubstitutionPipeline, SubstitutionStats

__all__ = [
    "__version__",
    "ArtifactIOError",
    "ArtifactStore",
    "CapturePipeline",
    "CaptureState",
    "ConfigurationError",
    "DeclineReason",
    "DeterministicNamer",
    "DumpReport",
    "FormatViolation",
    "GeneratedClassRecord",
    "LifecycleError",
    "NameClassifier",
    "ReplayConfig",
    "ReplayError",
    "RestrictedLookup",
    "SessionState",
    "SubstitutionDeclined",
    "SubstitutionPipeline",
    "SubstitutionStats",
    "UnresolvedReference",
    "is_generated",
    "rewrite",
]
