"""Relocate a collection to a new base directory as a single transaction."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import StateError
from .filesystem import LocalFileSystem
from .hashing import HashComputer
from .models import MetadataDocument, TrackedItem
from .schema import dump_document, load_document

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MigrationResult:
    """Outcome of a storage migration.

    Attributes:
        success: Whether the collection now lives at the destination.
        errors: Per-file failures that aborted the migration.
        migrated: Number of items moved from the old location.
        absorbed: Number of items adopted from metadata already at the destination.
        warnings: Cleanup problems that did not affect the outcome.
    """

    success: bool
    errors: list[str] = field(default_factory=list)
    migrated: int = 0
    absorbed: int = 0
    warnings: list[str] = field(default_factory=list)


class StorageRelocator:
    """Copy a collection to a new directory with verification and rollback.

    Every file is copied and hash-verified before any source file is removed. If
    anything fails, files created at the destination are deleted again and the
    source collection is left exactly as it was.
    """

    def __init__(
        self,
        *,
        metadata_filename: str,
        filesystem: LocalFileSystem,
        hasher: HashComputer,
    ) -> None:
        self._metadata_filename = metadata_filename
        self._fs = filesystem
        self._hasher = hasher

    def run(
        self,
        document: MetadataDocument,
        source_base: Path,
        destination_base: Path,
        *,
        now: datetime,
    ) -> tuple[MigrationResult, MetadataDocument | None]:
        """Relocate ``document`` from ``source_base`` to ``destination_base``.

        Args:
            document: Current in-memory document; it is never mutated.
            source_base: Current base directory.
            destination_base: New base directory.
            now: Reference time used when upgrading destination metadata.

        Returns:
            tuple[MigrationResult, MetadataDocument | None]: The result and, on
                success, the merged document now persisted at the destination.
        """
        if destination_base == source_base:
            return MigrationResult(False, ["Destination is the current storage location."]), None

        try:
            self._fs.mkdir(destination_base)
        except OSError as exc:
            return MigrationResult(False, [f"Cannot create {destination_base}: {exc}"]), None

        destination_metadata = destination_base / self._metadata_filename
        metadata_existed = self._fs.exists(destination_metadata)

        absorbed: dict[str, TrackedItem] = {}
        if metadata_existed:
            try:
                absorbed = self._stage_absorbed(
                    document, destination_metadata, destination_base, now=now
                )
            except StateError as exc:
                return MigrationResult(False, [str(exc)]), None

        errors: list[str] = []
        created: list[Path] = []
        for item in document.files.values():
            error = self._copy_item(item, source_base, destination_base, created)
            if error:
                errors.append(error)

        if errors:
            self._rollback(created, None if metadata_existed else destination_metadata)
            LOGGER.error(
                "Migration to %s aborted; %d file(s) failed.", destination_base, len(errors)
            )
            return MigrationResult(False, errors), None

        merged = MetadataDocument(
            version=document.version,
            base_dir=str(destination_base),
            files={**document.model_copy(deep=True).files, **absorbed},
        )
        try:
            self._fs.write_text_atomic(destination_metadata, dump_document(merged))
        except OSError as exc:
            self._rollback(created, None if metadata_existed else destination_metadata)
            return MigrationResult(False, [f"Cannot write {destination_metadata}: {exc}"]), None

        result = MigrationResult(True, migrated=len(document.files), absorbed=len(absorbed))
        for item in document.files.values():
            source = source_base / item.relative_path
            try:
                self._fs.delete(source)
            except OSError as exc:
                result.warnings.append(f"Could not remove {source}: {exc}")

        old_metadata = source_base / self._metadata_filename
        if self._fs.exists(old_metadata):
            try:
                self._fs.delete(old_metadata)
            except OSError as exc:
                result.warnings.append(f"Could not remove {old_metadata}: {exc}")

        for warning in result.warnings:
            LOGGER.warning(warning)
        LOGGER.info(
            "Migrated %d item(s) to %s (absorbed %d).",
            result.migrated,
            destination_base,
            result.absorbed,
        )
        return result, merged

    def _copy_item(
        self,
        item: TrackedItem,
        source_base: Path,
        destination_base: Path,
        created: list[Path],
    ) -> str | None:
        source = source_base / item.relative_path
        destination = destination_base / item.relative_path
        try:
            if self._fs.exists(destination):
                if self._hasher.compute(destination) != self._hasher.compute(source):
                    return f"{item.relative_path}: destination already holds different content."
                return None
            self._fs.copy(source, destination)
            created.append(destination)
            if self._hasher.compute(source) != self._hasher.compute(destination):
                return f"{item.relative_path}: content hash mismatch after copy."
        except OSError as exc:
            return f"{item.relative_path}: {exc}"
        return None

    def _stage_absorbed(
        self,
        document: MetadataDocument,
        metadata_path: Path,
        destination_base: Path,
        *,
        now: datetime,
    ) -> dict[str, TrackedItem]:
        existing, _ = load_document(self._fs, metadata_path, destination_base, now=now)
        known_hashes = {
            item.content_hash for item in document.files.values() if item.content_hash
        }
        absorbed: dict[str, TrackedItem] = {}
        for item in existing.files.values():
            if not self._fs.is_file(destination_base / item.relative_path):
                LOGGER.info("Skipping %s: file missing at destination.", item.relative_path)
                continue
            if item.content_hash and item.content_hash in known_hashes:
                LOGGER.info("Skipping %s: content already tracked.", item.relative_path)
                continue
            if item.id in document.files or item.id in absorbed:
                item = item.model_copy(update={"id": str(uuid.uuid4())})
            absorbed[item.id] = item
            if item.content_hash:
                known_hashes.add(item.content_hash)
        return absorbed

    def _rollback(self, created: list[Path], metadata_path: Path | None) -> None:
        for path in reversed(created):
            try:
                self._fs.delete(path)
            except OSError as exc:
                LOGGER.warning("Rollback could not remove %s: %s", path, exc)
        if metadata_path is not None and self._fs.exists(metadata_path):
            try:
                self._fs.delete(metadata_path)
            except OSError as exc:
                LOGGER.warning("Rollback could not remove %s: %s", metadata_path, exc)


__all__ = ["MigrationResult", "StorageRelocator"]
