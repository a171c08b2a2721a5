"""
fimtrace - Content hashing.

SHA256 digests of monitored files. The file is opened first and checked
with fstat(), so a path swapped for a directory or a fifo between the
filesystem event and the read is never hashed.
"""

import hashlib
import logging
import os
import stat
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

ALGORITHM = "sha256"
DIGEST_HEX_LEN = 64


def hash_stream(stream: BinaryIO, chunk_size: int = 65536) -> str:
    """Hex digest of everything left in stream."""
    hasher = hashlib.new(ALGORITHM)
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        hasher.update(chunk)
    return hasher.hexdigest()


class HashEngine:
    """Hashes regular files; anything else yields None."""

    def __init__(self, chunk_size: int = 65536) -> None:
        self.chunk_size = chunk_size

    def compute_file_hash(self, file_path: Path) -> Optional[str]:
        """
        SHA256 of file_path.

        Args:
            file_path: Absolute or root-relative path of the file.

        Returns:
            Lowercase hex SHA256, or None when the path is gone, is not a
            regular file, or cannot be read.
        """
        try:
            # O_NONBLOCK keeps a fifo from blocking the open; no effect on regular files.
            fd = os.open(file_path, os.O_RDONLY | os.O_NONBLOCK)
        except (FileNotFoundError, IsADirectoryError):
            logger.debug("Vanished before hashing: %s", file_path)
            return None
        except OSError as e:
            logger.warning("Failed to hash %s: %s", file_path, e)
            return None
        try:
            with os.fdopen(fd, "rb") as f:
                if not stat.S_ISREG(os.fstat(f.fileno()).st_mode):
                    logger.debug("Not a regular file: %s", file_path)
                    return None
                return hash_stream(f, self.chunk_size)
        except OSError as e:
            logger.warning("Failed to hash %s: %s", file_path, e)
            return None
