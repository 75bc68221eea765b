"""State data models for tracked mistake collections."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from mistakebook.timeutils import ensure_utc

CURRENT_VERSION = "1.1"
DEFAULT_TAGS = ("uncategorized",)
DEFAULT_TRAINING_INTERVAL = 1
DEFAULT_ANSWER_TIME_LIMIT = 300

ItemType = Literal["mistake", "answer"]
TrainingResult = Literal["success", "fail"]
UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


class StateModel(BaseModel):
    """Shared configuration for persisted models (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """Return the JSON-ready mapping used in the metadata file."""
        return self.model_dump(mode="json", by_alias=True)


class TrainingRecord(StateModel):
    """One review event. Records are immutable once appended.

    Attributes:
        date: When the review happened.
        result: Outcome of the review.
        proficiency_before: Proficiency prior to the review.
        proficiency_after: Proficiency computed by the review.
        interval_after: Interval in days scheduled by the review.
        is_on_time: Whether the review happened on or before the due date.
        answer_time: Optional milliseconds spent answering.
    """

    model_config = ConfigDict(frozen=True)

    date: UTCDateTime
    result: TrainingResult
    proficiency_before: int
    proficiency_after: int
    interval_after: int
    is_on_time: bool
    answer_time: Optional[int] = None


class TrackedItem(StateModel):
    """A tracked mistake or answer image together with its scheduling state."""

    id: str
    relative_path: str
    original_file_name: str
    upload_date: UTCDateTime
    original_date: Optional[UTCDateTime] = None
    file_size: int = 0
    last_modified: Optional[UTCDateTime] = None
    content_hash: Optional[str] = Field(default=None, alias="hash")

    proficiency: int = Field(default=0, ge=0, le=100)
    training_interval: int = Field(default=DEFAULT_TRAINING_INTERVAL, ge=1)
    last_training_date: UTCDateTime
    next_training_date: UTCDateTime
    training_records: List[TrainingRecord] = Field(default_factory=list)

    subject: str = ""
    tags: List[str] = Field(default_factory=lambda: list(DEFAULT_TAGS))
    notes: str = ""

    item_type: ItemType = Field(default="mistake", alias="type")
    pair_id: Optional[str] = None
    is_paired: bool = False
    answer_time_limit: int = Field(default=DEFAULT_ANSWER_TIME_LIMIT, ge=1)
    is_frozen: bool = False

    @model_validator(mode="after")
    def _pairing_fields_agree(self) -> "TrackedItem":
        if self.is_paired != (self.pair_id is not None):
            raise ValueError("isPaired must be true exactly when pairId is set")
        return self

    @classmethod
    def create(
        cls,
        *,
        item_id: str,
        relative_path: str,
        original_file_name: str,
        now: datetime,
        original_date: datetime | None = None,
        file_size: int = 0,
        last_modified: datetime | None = None,
        content_hash: str | None = None,
        answer_time_limit: int = DEFAULT_ANSWER_TIME_LIMIT,
    ) -> "TrackedItem":
        """Build a new item with default scheduling fields.

        The item is due one default interval after ``now``.
        """
        now = ensure_utc(now)
        return cls(
            id=item_id,
            relative_path=relative_path,
            original_file_name=original_file_name,
            upload_date=now,
            original_date=original_date,
            file_size=file_size,
            last_modified=last_modified,
            content_hash=content_hash,
            answer_time_limit=answer_time_limit,
            last_training_date=now,
            next_training_date=now + timedelta(days=DEFAULT_TRAINING_INTERVAL),
        )

    def is_due(self, now: datetime) -> bool:
        return self.next_training_date <= ensure_utc(now)


class ItemPatch(StateModel):
    """Partial update for a tracked item.

    Only fields explicitly set are merged. Identity, file and hash fields are not
    patchable.
    """

    model_config = ConfigDict(extra="forbid")

    proficiency: Optional[int] = Field(default=None, ge=0, le=100)
    training_interval: Optional[int] = Field(default=None, ge=1)
    last_training_date: Optional[UTCDateTime] = None
    next_training_date: Optional[UTCDateTime] = None
    training_records: Optional[List[TrainingRecord]] = None
    subject: Optional[str] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    item_type: Optional[ItemType] = Field(default=None, alias="type")
    pair_id: Optional[str] = None
    is_paired: Optional[bool] = None
    answer_time_limit: Optional[int] = Field(default=None, ge=1)
    is_frozen: Optional[bool] = None

    @model_validator(mode="after")
    def _derive_is_paired(self) -> "ItemPatch":
        if "pair_id" in self.model_fields_set and "is_paired" not in self.model_fields_set:
            self.is_paired = self.pair_id is not None
        return self

    def changes(self) -> dict[str, Any]:
        """Return the explicitly set fields keyed by field name."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def apply_to(self, item: TrackedItem) -> TrackedItem:
        """Return a new, re-validated item with this patch merged in.

        Raises:
            pydantic.ValidationError: If the merged item is invalid.
        """
        data = item.model_dump()
        for name, value in self.changes().items():
            if name == "training_records" and value is not None:
                value = [record.model_dump() for record in value]
            data[name] = value
        return TrackedItem.model_validate(data)


class MetadataDocument(StateModel):
    """Aggregate metadata persisted for one collection."""

    version: str = CURRENT_VERSION
    base_dir: str
    files: Dict[str, TrackedItem] = Field(default_factory=dict)


__all__ = [
    "CURRENT_VERSION",
    "DEFAULT_TAGS",
    "DEFAULT_TRAINING_INTERVAL",
    "DEFAULT_ANSWER_TIME_LIMIT",
    "ItemType",
    "TrainingResult",
    "TrainingRecord",
    "TrackedItem",
    "ItemPatch",
    "MetadataDocument",
]
