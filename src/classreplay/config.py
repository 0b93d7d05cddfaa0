"""
Configuration for the capture and substitution pipelines.

Supports:
- YAML file configuration (explicit path, ./classreplay.yaml, ~/.classreplay/config.yaml)
- Environment variable overrides
- A default user file written on first use

Configuration is read once at startup and immutable afterwards.
"""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from classreplay.classifier import DEFAULT_GENERATED_PATTERNS, NameClassifier
from classreplay.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "classreplay.yaml"
USER_CONFIG_PATH = Path("~/.classreplay/config.yaml")

# Class-name prefixes that must never be substituted
DEFAULT_TOOLING_PREFIXES = ("classreplay/",)
DEFAULT_LIBRARY_PREFIXES = ("org/objectweb/asm/",)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class ReplayConfig:
    """
    Configuration shared by both pipelines.

    Defaults:
    - verbose: False (no per-event diagnostics, no decline logging)
    - canonicalize: True (content-derived identifiers for generated classes)
    - corpus: ["out"] (where substitution looks for captured artifacts)
    - out_dir: "out" (where capture writes artifacts)
    """

    verbose: bool = False
    quiet: bool = False
    canonicalize: bool = True
    corpus: tuple[str, ...] = ("out",)
    out_dir: str = "out"
    dry_run: bool = False
    diagnostics_path: str | None = None
    generated_patterns: tuple[str, ...] = DEFAULT_GENERATED_PATTERNS
    tooling_prefixes: tuple[str, ...] = DEFAULT_TOOLING_PREFIXES
    library_prefixes: tuple[str, ...] = DEFAULT_LIBRARY_PREFIXES
    source: str | None = field(default=None, compare=False)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.corpus:
            raise ConfigurationError("corpus must name at least one source location")
        if not self.generated_patterns:
            raise ConfigurationError("generated_patterns must not be empty")
        try:
            NameClassifier(self.generated_patterns)
        except (re.error, ValueError) as e:
            raise ConfigurationError(f"Invalid generated_patterns entry: {e}")

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str | None = None) -> "ReplayConfig":
        """Create configuration from dictionary (e.g., YAML)."""
        corpus = data.get("corpus", ["out"])
        if isinstance(corpus, str):
            corpus = corpus.split(os.pathsep)
        patterns = data.get("generated_patterns", DEFAULT_GENERATED_PATTERNS)
        if isinstance(patterns, str):
            patterns = [patterns]

        return cls(
            verbose=_as_bool(data.get("verbose", False)),
            quiet=_as_bool(data.get("quiet", False)),
            canonicalize=not _as_bool(data.get("dont_normalize", False)),
            corpus=tuple(str(c) for c in corpus),
            out_dir=str(data.get("out_dir", "out")),
            dry_run=_as_bool(data.get("dry_run", False)),
            diagnostics_path=data.get("diagnostics_path"),
            generated_patterns=tuple(patterns),
            tooling_prefixes=tuple(data.get("tooling_prefixes", DEFAULT_TOOLING_PREFIXES)),
            library_prefixes=tuple(data.get("library_prefixes", DEFAULT_LIBRARY_PREFIXES)),
            source=source,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ReplayConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Error loading configuration file {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        return cls.from_dict(data, source=str(path))

    def with_env(self) -> "ReplayConfig":
        """
        Apply environment variable overrides.

        Environment variables:
            CLASSREPLAY_VERBOSE: Per-event diagnostics (true/false)
            CLASSREPLAY_DONT_NORMALIZE: Disable canonical naming (true/false)
            CLASSREPLAY_CORPUS: Source locations, os.pathsep-separated
            CLASSREPLAY_OUT: Capture output directory
            CLASSREPLAY_DRY_RUN: Resolve but do not write artifacts (true/false)
            CLASSREPLAY_DIAGNOSTICS: JSONL diagnostics file path
        """
        overrides: dict[str, Any] = {}
        if "CLASSREPLAY_VERBOSE" in os.environ:
            overrides["verbose"] = _as_bool(os.environ["CLASSREPLAY_VERBOSE"])
        if "CLASSREPLAY_DONT_NORMALIZE" in os.environ:
            overrides["canonicalize"] = not _as_bool(os.environ["CLASSREPLAY_DONT_NORMALIZE"])
        if os.environ.get("CLASSREPLAY_CORPUS"):
            overrides["corpus"] = tuple(os.environ["CLASSREPLAY_CORPUS"].split(os.pathsep))
        if os.environ.get("CLASSREPLAY_OUT"):
            overrides["out_dir"] = os.environ["CLASSREPLAY_OUT"]
        if "CLASSREPLAY_DRY_RUN" in os.environ:
            overrides["dry_run"] = _as_bool(os.environ["CLASSREPLAY_DRY_RUN"])
        if os.environ.get("CLASSREPLAY_DIAGNOSTICS"):
            overrides["diagnostics_path"] = os.environ["CLASSREPLAY_DIAGNOSTICS"]
        return replace(self, **overrides) if overrides else self

    @classmethod
    def load(cls, path: Path | None = None, create_user_file: bool = True) -> "ReplayConfig":
        """
        Locate and load configuration, then apply environment overrides.

        Search order: ``path`` (if given), ./classreplay.yaml, ~/.classreplay/config.yaml.

        Raises:
            ConfigurationError: If no configuration file can be found
        """
        if path is not None:
            if not Path(path).is_file():
                raise ConfigurationError(f"Configuration file not found: {path}")
            return cls.from_yaml(Path(path)).with_env()

        user_path = USER_CONFIG_PATH.expanduser()
        if create_user_file:
            try:
                write_default_config(user_path, overwrite=False)
            except OSError as e:
                logger.warning("Could not write default configuration to %s: %s", user_path, e)

        for candidate in (Path(CONFIG_FILE_NAME), user_path):
            if candidate.is_file():
                return cls.from_yaml(candidate).with_env()
        raise ConfigurationError("No configuration file found")

    def corpus_paths(self) -> list[Path]:
        """Corpus locations as paths."""
        return [Path(c).expanduser() for c in self.corpus]

    def require_corpus(self) -> list[Path]:
        """
        Return corpus paths, failing if any is missing.

        Raises:
            ConfigurationError: If a configured source location does not exist
        """
        paths = self.corpus_paths()
        missing = [str(p) for p in paths if not p.exists()]
        if missing:
            raise ConfigurationError(f"Corpus location(s) not found: {', '.join(missing)}")
        return paths

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (YAML layout)."""
        return {
            "verbose": self.verbose,
            "quiet": self.quiet,
            "dont_normalize": not self.canonicalize,
            "corpus": list(self.corpus),
            "out_dir": self.out_dir,
            "dry_run": self.dry_run,
            "diagnostics_path": self.diagnostics_path,
            "generated_patterns": list(self.generated_patterns),
            "tooling_prefixes": list(self.tooling_prefixes),
            "library_prefixes": list(self.library_prefixes),
        }


def write_default_config(path: Path, overwrite: bool = False) -> bool:
    """
    Write the default configuration to ``path``.

    Returns:
        True if a file was written
    """
    path = Path(path).expanduser()
    if path.exists() and not overwrite:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(ReplayConfig().to_dict(), f, sort_keys=False)
    return True
