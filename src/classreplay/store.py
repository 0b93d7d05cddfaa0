"""Persistent artifact storage and restricted lookup.

Artifacts are addressed by slash-delimited internal names, mapped onto a file
hierarchy: ``com/example/App`` lives at ``<root>/com/example/App.class``.
"""

from __future__ import annotations

import logging
import zipfile
from collections.abc import Iterable
from pathlib import Path

from classreplay.errors import ArtifactIOError, ReplayError

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".class"


class SecurityError(ReplayError):
    """An artifact name would resolve outside its root."""
    pass


def artifact_member(name: str) -> str:
    """Relative artifact path for an internal class name.

    Raises:
        SecurityError: If the name is absolute or contains traversal segments
    """
    parts = name.split("/")
    if not name or name.startswith("/") or "\\" in name or any(p in ("", ".", "..") for p in parts):
        raise SecurityError(f"Unsafe artifact name: {name!r}")
    return name + ARTIFACT_SUFFIX


def check_path_safety(path: Path, base_dir: Path) -> Path:
    """Verify ``path`` stays inside ``base_dir`` and return it resolved.

    Raises:
        SecurityError: If path traversal detected
    """
    resolved = path.resolve()
    try:
        resolved.relative_to(base_dir.resolve())
    except ValueError:
        raise SecurityError(f"Path traversal detected: {path} is outside {base_dir}")
    return resolved


class ArtifactStore:
    """Read/write store of class artifacts under one root directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()

    def path_for(self, name: str) -> Path:
        """File path of the artifact for ``name``."""
        return check_path_safety(self.root / artifact_member(name), self.root)

    def put(self, name: str, data: bytes) -> bool:
        """Write an artifact.

        Returns:
            True if the artifact did not exist before (fresh write)

        Raises:
            ArtifactIOError: If the write fails
        """
        path = self.path_for(name)
        fresh = not path.exists()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ArtifactIOError(name, e) from e
        return fresh

    def get(self, name: str) -> bytes | None:
        """Read an artifact, or None if absent.

        Raises:
            ArtifactIOError: If the artifact exists but cannot be read
        """
        path = self.path_for(name)
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise ArtifactIOError(name, e) from e


class RestrictedLookup:
    """Fetches artifacts only from a fixed, ordered set of source roots.

    A root is a directory or a zip/jar archive. There is no fallback to any
    other search path: an artifact missing from every root is absent.
    """

    def __init__(self, roots: Iterable[Path | str]):
        self.roots = [Path(root).expanduser().resolve() for root in roots]

    def get(self, name: str) -> bytes | None:
        """Return the artifact bytes for ``name`` from the first root holding it.

        Raises:
            ArtifactIOError: If a matching artifact cannot be read
        """
        try:
            member = artifact_member(name)
        except SecurityError as e:
            logger.warning("Refusing lookup: %s", e)
            return None

        for root in self.roots:
            data = self._read(root, name, member)
            if data is not None:
                return data
        return None

    def _read(self, root: Path, name: str, member: str) -> bytes | None:
        try:
            if root.is_dir():
                path = check_path_safety(root / member, root)
                return path.read_bytes() if path.is_file() else None
            if zipfile.is_zipfile(root):
                with zipfile.ZipFile(root, "r") as zf:
                    try:
                        return zf.read(member)
                    except KeyError:
                        return None
        except SecurityError as e:
            logger.warning("Refusing lookup: %s", e)
            return None
        except (OSError, zipfile.BadZipFile) as e:
            raise ArtifactIOError(name, e) from e
        return None

    def __repr__(self) -> str:
        return f"RestrictedLookup(roots={[str(r) for r in self.roots]})"
