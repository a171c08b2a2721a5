"""
fimtrace - Path filtering and directory scanning.

PathFilter decides which files are monitored at all; DirectoryScanner
walks the root once at startup to build the initial baseline.
"""

import fnmatch
import logging
from pathlib import Path
from typing import Iterable, Optional

from fimtrace.core.hashing import HashEngine

logger = logging.getLogger(__name__)

# Prefix of every artifact fimtrace writes next to the monitored files.
ARTIFACT_PREFIX = ".file_monitor"


class PathFilter:
    """
    Include/exclude rules relative to the monitored root.

    A path is monitored when its name matches one of include_patterns,
    none of its components is hidden, it is not one of the monitor's own
    artifacts and it matches no exclude pattern.
    """

    def __init__(
        self,
        root: Path,
        include_patterns: Optional[list[str]] = None,
        exclude_patterns: Optional[list[str]] = None,
        artifacts: Iterable[Path] = (),
    ) -> None:
        self.root = Path(root).resolve()
        self.include_patterns = include_patterns or ["*.txt"]
        self.exclude_patterns = exclude_patterns or []
        self._artifacts = {str(Path(a).resolve()) for a in artifacts}

    def relative(self, path: Path) -> Optional[str]:
        """POSIX path relative to root, or None when outside it."""
        try:
            return Path(path).relative_to(self.root).as_posix()
        except ValueError:
            return None

    def _should_exclude(self, path: Path, rel: str) -> bool:
        for pattern in self.exclude_patterns:
            if "/" in pattern:
                if fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(rel, "**/" + pattern):
                    return True
            elif fnmatch.fnmatch(path.name, pattern):
                return True
        return False

    def reason_rejected(self, path: Path) -> Optional[str]:
        """Return why path is not monitored, or None when it is."""
        path = Path(path)
        rel = self.relative(path)
        if rel is None or rel == ".":
            return "outside monitored root"
        if str(path) in self._artifacts or path.name.startswith(ARTIFACT_PREFIX):
            return "monitor artifact"
        if any(part.startswith(".") for part in Path(rel).parts):
            return "hidden path"
        if path.name.endswith("~") or path.name.endswith(".tmp"):
            return "temporary file"
        if not any(fnmatch.fnmatch(path.name, p) for p in self.include_patterns):
            return "file type not monitored"
        if self._should_exclude(path, rel):
            return "excluded by pattern"
        return None

    def accepts(self, path: Path) -> bool:
        return self.reason_rejected(path) is None


class DirectoryScanner:
    """Scans the root recursively and produces {relative_path: hash}."""

    def __init__(
        self,
        path_filter: PathFilter,
        hash_engine: Optional[HashEngine] = None,
    ) -> None:
        self.path_filter = path_filter
        self.hash_engine = hash_engine or HashEngine()

    def scan(self) -> dict[str, str]:
        root = self.path_filter.root
        if not root.is_dir():
            logger.warning("Not a directory: %s", root)
            return {}

        manifest: dict[str, str] = {}
        for path in sorted(root.rglob("*")):
            if not path.is_file() or not self.path_filter.accepts(path):
                continue
            file_hash = self.hash_engine.compute_file_hash(path)
            if file_hash is None:
                continue
            rel = self.path_filter.relative(path)
            if rel is not None:
                manifest[rel] = file_hash
        return manifest
