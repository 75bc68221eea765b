"""Filesystem access used by the metadata store and member manager."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


class LocalFileSystem:
    """Thin wrapper over the local filesystem.

    The store talks to disk only through this class, so tests can substitute a
    subclass that fails on selected paths.
    """

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def is_file(self, path: Path) -> bool:
        return Path(path).is_file()

    def stat(self, path: Path) -> os.stat_result:
        return Path(path).stat()

    def read_text(self, path: Path) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_text_atomic(self, path: Path, text: str) -> None:
        """Write ``text`` to a sibling temp file, then rename it over ``path``.

        A crash mid-write leaves the previous content of ``path`` intact.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)

    def copy(self, source: Path, destination: Path) -> None:
        Path(destination).parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)

    def delete(self, path: Path) -> None:
        Path(path).unlink()

    def mkdir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def remove_tree(self, path: Path) -> None:
        shutil.rmtree(path)


__all__ = ["LocalFileSystem"]
