"""Metadata persistence for tracked mistake collections."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from pydantic import ValidationError

from mistakebook.timeutils import Clock, utcnow

from .errors import (
    DuplicateContentError,
    ItemNotFoundError,
    MissingStateError,
    PairingError,
    StateError,
)
from .filesystem import LocalFileSystem
from .hashing import HashComputer
from .models import (
    DEFAULT_ANSWER_TIME_LIMIT,
    ItemPatch,
    ItemType,
    MetadataDocument,
    TrackedItem,
    TrainingRecord,
)
from .relocation import MigrationResult, StorageRelocator
from .schema import dump_document, load_document

LOGGER = logging.getLogger(__name__)

METADATA_FILENAME = ".metadata.json"


class MetadataStore:
    """Own the durable record of every tracked item in one collection.

    The whole document is rewritten on each save. There is no locking: two
    callers mutating the same store concurrently will lose updates (last writer
    wins), so mutations are expected to run sequentially.
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        metadata_filename: str = METADATA_FILENAME,
        filesystem: LocalFileSystem | None = None,
        hasher: HashComputer | None = None,
        clock: Clock = utcnow,
        answer_time_limit: int = DEFAULT_ANSWER_TIME_LIMIT,
    ) -> None:
        """Load (or start) the collection rooted at ``base_dir``.

        Args:
            base_dir: Directory that item paths are relative to.
            metadata_filename: Name of the metadata file inside ``base_dir``.
            filesystem: Filesystem collaborator.
            hasher: Content hasher used for deduplication.
            clock: Source of the current time.
            answer_time_limit: Seconds per question given to new items.

        Raises:
            StateError: If an existing metadata file cannot be parsed.
        """
        self._metadata_filename = metadata_filename
        self._fs = filesystem or LocalFileSystem()
        self._hasher = hasher or HashComputer()
        self._clock = clock
        self._answer_time_limit = answer_time_limit
        self._base_dir = Path(base_dir).expanduser().resolve()
        self._hash_index: dict[str, str] = {}
        self._pair_index: dict[str, set[str]] = defaultdict(set)
        self._document = self._load()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def metadata_path(self) -> Path:
        return self._base_dir / self._metadata_filename

    @property
    def version(self) -> str:
        return self._document.version

    def __len__(self) -> int:
        return len(self._document.files)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._document.files

    # Loading and saving ---------------------------------------------------

    def _load(self) -> MetadataDocument:
        path = self.metadata_path
        if not self._fs.exists(path):
            document = MetadataDocument(base_dir=str(self._base_dir))
            self._reindex(document)
            return document

        document, upgraded = load_document(self._fs, path, self._base_dir, now=self._clock())
        self._reindex(document)
        if upgraded:
            self._document = document
            self.save_metadata()
        return document

    def save_metadata(self) -> None:
        """Persist the full document atomically.

        Raises:
            StateError: If the metadata file cannot be written.
        """
        try:
            self._fs.write_text_atomic(self.metadata_path, dump_document(self._document))
        except OSError as exc:
            raise StateError(f"Unable to save metadata to {self.metadata_path}: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Apply in-memory changes and save; restore the previous files on failure."""
        snapshot = dict(self._document.files)
        try:
            yield
            self.save_metadata()
        except Exception:
            self._document.files = snapshot
            self._reindex(self._document)
            raise
        self._reindex(self._document)

    def _reindex(self, document: MetadataDocument) -> None:
        self._hash_index = {}
        self._pair_index = defaultdict(set)
        for item_id, item in document.files.items():
            if item.content_hash:
                if item.content_hash in self._hash_index:
                    LOGGER.warning(
                        "Items %s and %s share content hash %s.",
                        self._hash_index[item.content_hash],
                        item_id,
                        item.content_hash,
                    )
                else:
                    self._hash_index[item.content_hash] = item_id
            if item.pair_id:
                self._pair_index[item.pair_id].add(item_id)

    # Reading ----------------------------------------------------------------

    def get_metadata(self) -> MetadataDocument:
        """Return a copy of the document after pruning items whose file vanished.

        Not side-effect free: pruned items are removed from disk metadata too.
        """
        self.validate_metadata()
        return self._document.model_copy(deep=True)

    def validate_metadata(self) -> list[str]:
        """Drop items whose backing file no longer exists and persist the result.

        Returns:
            list[str]: Ids of pruned items.
        """
        missing: list[str] = []
        for item_id, item in self._document.files.items():
            full_path = self._base_dir / item.relative_path
            if not self._fs.is_file(full_path):
                LOGGER.warning("File missing: %s (item %s); dropping metadata.", full_path, item_id)
                missing.append(item_id)

        if missing:
            with self._transaction():
                for item_id in missing:
                    del self._document.files[item_id]
        return missing

    def get_item(self, item_id: str) -> TrackedItem:
        """Return the item with ``item_id``.

        Raises:
            ItemNotFoundError: If the id is unknown.
        """
        try:
            return self._document.files[item_id]
        except KeyError:
            raise ItemNotFoundError(item_id) from None

    def items(self) -> list[TrackedItem]:
        """Return every tracked item in insertion order."""
        return list(self._document.files.values())

    def find_by_hash(self, content_hash: str) -> TrackedItem | None:
        """Return the item whose content hash is ``content_hash``, if any.

        Args:
            content_hash: Hex SHA-256 digest of the file content.

        Returns:
            TrackedItem | None: Matching item, or None when the content is new.
        """
        item_id = self._hash_index.get(content_hash)
        return self._document.files.get(item_id) if item_id else None

    def partners(self, item_id: str) -> list[TrackedItem]:
        """Return the other items sharing ``item_id``'s pairId."""
        item = self.get_item(item_id)
        if not item.pair_id:
            return []
        return [
            self._document.files[other]
            for other in sorted(self._pair_index.get(item.pair_id, ()))
            if other != item_id
        ]

    def resolve_path(self, item_id: str) -> Path:
        """Return the absolute location of an item's image.

        Raises:
            ItemNotFoundError: If the id is unknown.
        """
        return self._base_dir / self.get_item(item_id).relative_path

    # Adding -----------------------------------------------------------------

    def add_file(self, source_path: Path, stored_path: Path) -> str:
        """Track ``stored_path`` as a new item described by ``source_path``.

        Args:
            source_path: Original file the upload came from.
            stored_path: Copy of the file inside the base directory.

        Returns:
            str: Id of the new item.

        Raises:
            DuplicateContentError: If identical content is already tracked.
            StateError: If the source cannot be read or the store cannot be saved.
        """
        source = Path(source_path).expanduser()
        content_hash = self._hash_source(source)
        self._ensure_unique(content_hash, source)
        return self._register(source, Path(stored_path), content_hash)

    def import_file(self, source_path: Path, *, dest_name: str | None = None) -> str:
        """Copy ``source_path`` into the base directory and track it.

        Duplicates are rejected before anything is copied.

        Args:
            source_path: File to import.
            dest_name: Optional file name for the stored copy.

        Returns:
            str: Id of the new item.
        """
        source = Path(source_path).expanduser()
        content_hash = self._hash_source(source)
        self._ensure_unique(content_hash, source)

        destination = self._free_destination(dest_name or source.name)
        try:
            self._fs.copy(source, destination)
        except OSError as exc:
            raise StateError(f"Unable to copy {source} to {destination}: {exc}") from exc

        try:
            return self._register(source, destination, content_hash)
        except StateError:
            if self._fs.exists(destination):
                self._fs.delete(destination)
            raise

    def _hash_source(self, source: Path) -> str:
        if not self._fs.is_file(source):
            raise MissingStateError(f"Source file does not exist: {source}")
        try:
            return self._hasher.compute(source)
        except OSError as exc:
            raise StateError(f"Unable to hash {source}: {exc}") from exc

    def _ensure_unique(self, content_hash: str, source: Path) -> None:
        existing = self._hash_index.get(content_hash)
        if existing is not None:
            raise DuplicateContentError(str(source), existing)

    def _free_destination(self, name: str) -> Path:
        candidate = self._base_dir / Path(name).name
        counter = 1
        while self._fs.exists(candidate):
            candidate = candidate.with_name(f"{Path(name).stem}-{counter}{Path(name).suffix}")
            counter += 1
        return candidate

    def _relative_path(self, stored_path: Path) -> str:
        resolved = stored_path.expanduser().resolve()
        try:
            return resolved.relative_to(self._base_dir).as_posix()
        except ValueError:
            raise StateError(
                f"Stored file {resolved} is outside the collection directory {self._base_dir}"
            ) from None

    def _register(self, source: Path, stored_path: Path, content_hash: str) -> str:
        try:
            stats = self._fs.stat(source)
        except OSError as exc:
            raise StateError(f"Unable to stat {source}: {exc}") from exc

        birth = getattr(stats, "st_birthtime", stats.st_ctime)
        item = TrackedItem.create(
            item_id=str(uuid.uuid4()),
            relative_path=self._relative_path(stored_path),
            original_file_name=source.name,
            now=self._clock(),
            original_date=datetime.fromtimestamp(birth, tz=timezone.utc),
            file_size=stats.st_size,
            last_modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
            content_hash=content_hash,
            answer_time_limit=self._answer_time_limit,
        )
        with self._transaction():
            self._document.files[item.id] = item
        LOGGER.info("Tracking %s as %s.", item.relative_path, item.id)
        return item.id

    # Updating ---------------------------------------------------------------

    def update_file(self, item_id: str, patch: ItemPatch | Mapping[str, object]) -> TrackedItem:
        """Merge ``patch`` into an item and persist.

        Args:
            item_id: Item to update.
            patch: Typed patch, or a mapping validated into one.

        Returns:
            TrackedItem: The updated item.

        Raises:
            ItemNotFoundError: If the id is unknown.
            StateError: If the patch or the merged item is invalid.
        """
        return self._update_many({item_id: patch})[item_id]

    def _update_many(
        self, patches: Mapping[str, ItemPatch | Mapping[str, object]]
    ) -> dict[str, TrackedItem]:
        updated: dict[str, TrackedItem] = {}
        for item_id, patch in patches.items():
            item = self.get_item(item_id)
            try:
                typed = patch if isinstance(patch, ItemPatch) else ItemPatch.model_validate(patch)
                updated[item_id] = typed.apply_to(item)
            except ValidationError as exc:
                raise StateError(f"Invalid update for item {item_id}: {exc}") from exc

        with self._transaction():
            self._document.files.update(updated)
        return updated

    def set_type(self, item_id: str, item_type: ItemType) -> TrackedItem:
        """Mark an item as a mistake or an answer."""
        return self.update_file(item_id, {"item_type": item_type})

    def set_frozen(self, item_id: str, frozen: bool = True) -> TrackedItem:
        """Freeze or unfreeze an item. Frozen items leave the due queue by default."""
        return self.update_file(item_id, {"is_frozen": frozen})

    def set_next_training_date(self, item_id: str, when: datetime | str) -> TrackedItem:
        """Override when an item is next due.

        Args:
            item_id: Item to reschedule.
            when: New due time; ISO strings are accepted.

        Returns:
            TrackedItem: The updated item.

        Raises:
            ItemNotFoundError: If the id is unknown.
            StateError: If ``when`` is not a valid date.
        """
        return self.update_file(item_id, {"next_training_date": when})

    def set_answer_time_limit(self, item_id: str, seconds: int) -> TrackedItem:
        """Set the per-item answer limit used by exams, in seconds."""
        return self.update_file(item_id, {"answer_time_limit": seconds})

    def update_details(
        self,
        item_id: str,
        *,
        subject: str | None = None,
        tags: Sequence[str] | None = None,
        notes: str | None = None,
    ) -> TrackedItem:
        """Update free-form classification fields; arguments left as None are kept."""
        changes: dict[str, object] = {}
        if subject is not None:
            changes["subject"] = subject
        if tags is not None:
            changes["tags"] = list(dict.fromkeys(tags))
        if notes is not None:
            changes["notes"] = notes
        return self.update_file(item_id, changes)

    def record_training(self, item_id: str, patch: ItemPatch) -> TrackedItem:
        """Persist a scheduling patch, refusing one that rewrites history."""
        item = self.get_item(item_id)
        records: list[TrainingRecord] = patch.training_records or []
        if records[: len(item.training_records)] != item.training_records:
            raise StateError(f"Training history of item {item_id} is append-only.")
        return self.update_file(item_id, patch)

    # Pairing ----------------------------------------------------------------

    def pair(self, first_id: str, second_id: str) -> str:
        """Pair two items, reusing an existing pairId when either side has one.

        The first item's pairId wins over the second's.

        Returns:
            str: The shared pairId.

        Raises:
            PairingError: If both ids refer to the same item.
        """
        if first_id == second_id:
            raise PairingError("An item cannot be paired with itself.")
        first = self.get_item(first_id)
        second = self.get_item(second_id)
        pair_id = first.pair_id or second.pair_id or str(uuid.uuid4())
        patch = ItemPatch(pair_id=pair_id, is_paired=True)
        self._update_many({first_id: patch, second_id: patch})
        LOGGER.info("Paired %s and %s (%s).", first_id, second_id, pair_id)
        return pair_id

    def unpair(self, first_id: str, second_id: str) -> None:
        """Clear pairing fields on both items."""
        patch = ItemPatch(pair_id=None, is_paired=False)
        self._update_many({first_id: patch, second_id: patch})
        LOGGER.info("Unpaired %s and %s.", first_id, second_id)

    # Deleting ---------------------------------------------------------------

    def delete_file(
        self,
        item_id: str,
        *,
        cascade: bool = False,
        remove_files: bool = True,
    ) -> list[str]:
        """Delete an item and, with ``cascade``, every item sharing its pairId.

        Metadata is saved before backing files are removed; a file that cannot be
        removed is logged and left behind.

        Returns:
            list[str]: Ids of deleted items.
        """
        item = self.get_item(item_id)
        doomed = [item_id]
        if cascade and item.pair_id:
            doomed.extend(sorted(self._pair_index[item.pair_id] - {item_id}))

        removed: list[TrackedItem] = []
        with self._transaction():
            for doomed_id in doomed:
                removed.append(self._document.files.pop(doomed_id))

        if remove_files:
            for entry in removed:
                path = self._base_dir / entry.relative_path
                try:
                    if self._fs.exists(path):
                        self._fs.delete(path)
                except OSError as exc:
                    LOGGER.warning("Could not remove %s: %s", path, exc)
        LOGGER.info("Deleted item(s): %s", ", ".join(doomed))
        return doomed

    # Relocation -------------------------------------------------------------

    def migrate_storage(self, new_base_dir: Path) -> MigrationResult:
        """Move the whole collection to ``new_base_dir``; all or nothing.

        On failure the store keeps its current location and contents.
        """
        destination = Path(new_base_dir).expanduser().resolve()
        relocator = StorageRelocator(
            metadata_filename=self._metadata_filename,
            filesystem=self._fs,
            hasher=self._hasher,
        )
        result, merged = relocator.run(
            self._document, self._base_dir, destination, now=self._clock()
        )
        if result.success and merged is not None:
            self._base_dir = destination
            self._document = merged
            self._reindex(merged)
        return result


__all__ = [
    "MetadataStore",
    "METADATA_FILENAME",
    "MetadataDocument",
    "TrackedItem",
    "TrainingRecord",
    "ItemPatch",
    "MigrationResult",
    "HashComputer",
    "LocalFileSystem",
    "StateError",
    "MissingStateError",
    "DuplicateContentError",
    "ItemNotFoundError",
    "PairingError",
]
