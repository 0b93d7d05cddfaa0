"""Classification of runtime-synthesized class names."""

from __future__ import annotations

import re
from collections.abc import Iterable

# Each pattern marks the run-specific part of the name with an ``ordinal`` group.
DEFAULT_GENERATED_PATTERNS = (
    r"\$Proxy(?P<ordinal>\d+)$",
    r"Generated(?:Serialization)?(?:Method|Constructor)Accessor(?P<ordinal>\d+)$",
    r"\$\$(?:EnhancerBy|FastClassBy)CGLIB\$\$(?P<ordinal>[0-9a-f]+)",
    r"\$\$Lambda\$(?P<ordinal>\d+)",
    r"_\$\$_javassist_(?P<ordinal>\d+)",
)


class NameClassifier:
    """Decides whether a logical class name belongs to a synthesized shape.

    False negatives are safe (the class passes through unmodified); false
    positives only cost a hashing attempt on self-consistent bytes.
    """

    def __init__(self, patterns: Iterable[str] = DEFAULT_GENERATED_PATTERNS):
        self.patterns = tuple(patterns)
        self._compiled = []
        for pattern in self.patterns:
            compiled = re.compile(pattern)
            if "ordinal" not in compiled.groupindex:
                raise ValueError(f"Pattern lacks an 'ordinal' group: {pattern}")
            self._compiled.append(compiled)

    def _match(self, name: str) -> re.Match[str] | None:
        for compiled in self._compiled:
            match = compiled.search(name)
            if match:
                return match
        return None

    def is_generated(self, name: str) -> bool:
        """Return True if ``name`` carries a per-run ordinal."""
        return self._match(name) is not None

    def stem(self, name: str) -> str:
        """Return ``name`` with its run-specific ordinal removed.

        Non-generated names are returned unchanged.
        """
        match = self._match(name)
        if match is None:
            return name
        start, end = match.span("ordinal")
        return name[:start] + name[end:]


def is_generated(name: str) -> bool:
    """Classify ``name`` against the default pattern set."""
    return _default.is_generated(name)


_default = NameClassifier()
