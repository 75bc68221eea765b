"""Content hashing used for deduplication and migration checks."""

from __future__ import annotations

import hashlib
from pathlib import Path

DEFAULT_CHUNK_SIZE = 1024 * 1024


class HashComputer:
    """Compute SHA-256 content hashes by streaming files in chunks."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def compute(self, path: Path) -> str:
        """Return a hex digest representing the file contents.

        Args:
            path: File to hash.

        Returns:
            str: Lowercase hexadecimal SHA-256 digest.

        Raises:
            OSError: If the file cannot be read.
        """
        digest = hashlib.sha256()
        with Path(path).open("rb") as fh:
            for chunk in iter(lambda: fh.read(self.chunk_size), b""):
                digest.update(chunk)
        return digest.hexdigest()
