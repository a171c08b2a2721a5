"""
fimtrace - Hash baseline index.

In-memory map relative_path -> sha256, persisted as a sha256sum-style
text file ("<hash>  <relative-path>" per line). The in-memory map is
authoritative: a failed write is logged and retried on the next mutation.

Names holding a backslash, newline or carriage return are escaped the way
GNU sha256sum does it: the line starts with "\\" and the name carries
\\\\, \\n and \\r escapes. Every path therefore stays on exactly one line.
"""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from fimtrace.core.hashing import DIGEST_HEX_LEN

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(r"^([0-9a-fA-F]{%d}) [ *](.+)$" % DIGEST_HEX_LEN)

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r"}


def normalize_rel_path(rel_path: str) -> str:
    """Strip the './' prefix that `find . | sha256sum` baselines carry."""
    while rel_path.startswith("./"):
        rel_path = rel_path[2:]
    return rel_path


def _unescape_name(name: str) -> Optional[str]:
    out: list[str] = []
    chars = iter(name)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        decoded = _UNESCAPES.get(next(chars, ""))
        if decoded is None:
            return None
        out.append(decoded)
    return "".join(out)


def format_baseline_line(rel_path: str, file_hash: str) -> str:
    """One sha256sum line (without the trailing newline)."""
    if any(ch in rel_path for ch in _ESCAPES):
        escaped = "".join(_ESCAPES.get(ch, ch) for ch in rel_path)
        return "\\%s  %s" % (file_hash, escaped)
    return "%s  %s" % (file_hash, rel_path)


def parse_baseline_lines(lines: list[str]) -> list[tuple[str, str]]:
    """Parse baseline lines into (rel_path, hash) pairs in file order."""
    entries: list[tuple[str, str]] = []
    for lineno, line in enumerate(lines, start=1):
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        escaped = line.startswith("\\")
        m = _LINE_RE.match(line[1:] if escaped else line)
        name = m.group(2) if m else None
        if name is not None and escaped:
            name = _unescape_name(name)
        if name is None:
            logger.warning("Ignoring malformed baseline line %d: %r", lineno, line[:80])
            continue
        entries.append((normalize_rel_path(name), m.group(1).lower()))
    return entries


class HashIndex:
    """Baseline of content hashes keyed by path relative to the monitored root."""

    FILE_MODE = 0o600

    def __init__(self, baseline_path: Path) -> None:
        self.baseline_path = Path(baseline_path)
        self._hashes: dict[str, str] = {}
        self._dirty = False

    def __len__(self) -> int:
        return len(self._hashes)

    def __contains__(self, rel_path: str) -> bool:
        return normalize_rel_path(rel_path) in self._hashes

    def __iter__(self) -> Iterator[str]:
        return iter(self._hashes)

    @property
    def dirty(self) -> bool:
        """True while in-memory state has not been written to disk."""
        return self._dirty

    def items(self) -> list[tuple[str, str]]:
        return list(self._hashes.items())

    def exists(self) -> bool:
        return self.baseline_path.is_file()

    # -- queries / mutations ------------------------------------------------

    def lookup(self, rel_path: str) -> Optional[str]:
        return self._hashes.get(normalize_rel_path(rel_path))

    def upsert(self, rel_path: str, file_hash: str) -> None:
        rel_path = normalize_rel_path(rel_path)
        # Re-insert so the most recent write ends up last on disk.
        self._hashes.pop(rel_path, None)
        self._hashes[rel_path] = file_hash
        self._dirty = True
        self.flush()

    def remove(self, rel_path: str) -> bool:
        """Drop rel_path; returns True when an entry existed."""
        existed = self._hashes.pop(normalize_rel_path(rel_path), None) is not None
        if existed:
            self._dirty = True
            self.flush()
        return existed

    def replace_all(self, manifest: dict[str, str]) -> None:
        """Reset the index to manifest (initial baseline)."""
        self._hashes = {normalize_rel_path(p): h for p, h in manifest.items()}
        self._dirty = True
        self.flush()

    # -- persistence --------------------------------------------------------

    def _read_disk_entries(self) -> list[tuple[str, str]]:
        try:
            with open(
                self.baseline_path, encoding="utf-8", errors="surrogateescape", newline="\n",
            ) as f:
                return parse_baseline_lines(f.readlines())
        except FileNotFoundError:
            return []

    def load(self) -> int:
        """
        Load the baseline from disk, replacing in-memory state.

        When a path occurs on several lines the most recently appended one
        wins. Returns the number of duplicate lines collapsed.
        """
        entries = self._read_disk_entries()
        hashes: dict[str, str] = {}
        for rel_path, file_hash in entries:
            hashes.pop(rel_path, None)
            hashes[rel_path] = file_hash
        self._hashes = hashes
        self._dirty = False
        duplicates = len(entries) - len(hashes)
        if duplicates:
            logger.info("Baseline %s has %d duplicate entries", self.baseline_path, duplicates)
        return duplicates

    def compact(self) -> int:
        """
        Rewrite the baseline so every path appears exactly once.

        Lines on disk the index does not know about yet (appended by an
        external writer) are merged first, newest line winning. A dirty index
        holds mutations the disk has not seen, so nothing is merged then:
        a path removed in memory must not come back. Returns the number of
        lines removed. Calling it twice is the same as once.
        """
        entries = self._read_disk_entries()
        merged = dict(self._hashes)
        if not self._dirty:
            known = set(merged)
            for rel_path, file_hash in entries:
                if rel_path not in known:
                    merged.pop(rel_path, None)
                    merged[rel_path] = file_hash
        self._hashes = merged
        if entries != list(merged.items()):
            self._dirty = True
        self.flush()
        return max(0, len(entries) - len(merged))

    def flush(self) -> bool:
        """
        Atomically write the in-memory index to disk.

        Returns False (and keeps the index dirty) on I/O failure.
        """
        if not self._dirty:
            return True
        path = self.baseline_path
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=path.name + ".", suffix=".tmp", dir=str(path.parent),
            )
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as f:
                for rel_path, file_hash in self._hashes.items():
                    f.write(format_baseline_line(rel_path, file_hash) + "\n")
            os.chmod(tmp_name, self.FILE_MODE)
            os.replace(tmp_name, path)
            tmp_name = None
            self._dirty = False
            return True
        except OSError as e:
            logger.warning("Failed to persist baseline %s (will retry): %s", path, e)
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
