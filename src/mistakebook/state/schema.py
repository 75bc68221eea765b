"""Schema upgrades and (de)serialization for metadata documents."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from mistakebook.timeutils import ensure_utc

from .errors import StateError
from .models import (
    CURRENT_VERSION,
    DEFAULT_ANSWER_TIME_LIMIT,
    DEFAULT_TAGS,
    DEFAULT_TRAINING_INTERVAL,
    MetadataDocument,
)

if TYPE_CHECKING:
    from .filesystem import LocalFileSystem

LOGGER = logging.getLogger(__name__)

LEGACY_TAG_ALIASES = {"未分类": "uncategorized"}


def _version_tuple(version: Any) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in str(version).split("."))
    except ValueError:
        return (0,)


def upgrade_document(data: dict[str, Any], *, now: datetime) -> bool:
    """Backfill missing item fields and bump the schema version in place.

    Safe to run repeatedly: a document already at the current version with every
    field present is left untouched.

    Args:
        data: Raw metadata mapping as read from disk.
        now: Reference time for the backfilled due date.

    Returns:
        bool: True when the document was modified and should be saved.
    """
    changed = False
    files = data.get("files")
    if not isinstance(files, dict):
        data["files"] = {}
        files = data["files"]
        changed = True

    next_due = ensure_utc(now) + timedelta(days=DEFAULT_TRAINING_INTERVAL)
    for item_id, item in files.items():
        if not isinstance(item, dict):
            continue
        changed |= _backfill_item(item_id, item, next_due)

    if _version_tuple(data.get("version")) < _version_tuple(CURRENT_VERSION):
        LOGGER.info("Upgrading metadata from %s to %s.", data.get("version"), CURRENT_VERSION)
        data["version"] = CURRENT_VERSION
        changed = True
    return changed


def _backfill_item(item_id: str, item: dict[str, Any], next_due: datetime) -> bool:
    defaults: dict[str, Any] = {
        "id": item_id,
        "proficiency": 0,
        "trainingInterval": DEFAULT_TRAINING_INTERVAL,
        "lastTrainingDate": item.get("uploadDate") or next_due.isoformat(),
        "nextTrainingDate": next_due.isoformat(),
        "subject": "",
        "tags": list(DEFAULT_TAGS),
        "notes": "",
        "trainingRecords": [],
        "type": "mistake",
        "answerTimeLimit": DEFAULT_ANSWER_TIME_LIMIT,
        "isFrozen": False,
    }
    changed = False
    for key, value in defaults.items():
        if item.get(key) is None:
            item[key] = value
            changed = True

    if "pairId" not in item:
        item["pairId"] = None
        changed = True
    is_paired = item["pairId"] is not None
    if item.get("isPaired") is not is_paired:
        item["isPaired"] = is_paired
        changed = True

    tags = item.get("tags")
    if isinstance(tags, list):
        renamed = [LEGACY_TAG_ALIASES.get(tag, tag) for tag in tags]
        if renamed != tags:
            item["tags"] = renamed
            changed = True
    return changed


def load_document(
    filesystem: "LocalFileSystem",
    path: Path,
    base_dir: Path,
    *,
    now: datetime,
) -> tuple[MetadataDocument, bool]:
    """Read a metadata file and upgrade it to the current schema.

    ``baseDir`` is always rewritten to ``base_dir``; the persisted value is never
    trusted.

    Args:
        filesystem: Filesystem used to read the file.
        path: Metadata file path.
        base_dir: Runtime base directory of the collection.
        now: Reference time for backfilled fields.

    Returns:
        tuple[MetadataDocument, bool]: Parsed document and whether the upgrade
            changed it.

    Raises:
        StateError: If the file cannot be read or parsed.
    """
    try:
        raw = json.loads(filesystem.read_text(path))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise StateError(f"Invalid metadata data in {path}: {exc}") from exc
    except OSError as exc:
        raise StateError(f"Unable to read metadata file {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise StateError(f"Metadata file {path} must contain a JSON object.")

    raw["baseDir"] = str(base_dir)
    changed = upgrade_document(raw, now=now)
    try:
        document = MetadataDocument.model_validate(raw)
    except ValidationError as exc:
        raise StateError(f"Invalid metadata structure in {path}: {exc}") from exc
    return document, changed


def dump_document(document: MetadataDocument) -> str:
    """Serialize a document for the metadata file."""
    return json.dumps(document.to_json_dict(), indent=2, ensure_ascii=False)


__all__ = ["upgrade_document", "load_document", "dump_document", "LEGACY_TAG_ALIASES"]
