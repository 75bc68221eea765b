"""Settings models for the mistakebook application."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from mistakebook.state import METADATA_FILENAME
from mistakebook.state.hashing import DEFAULT_CHUNK_SIZE
from mistakebook.state.models import DEFAULT_ANSWER_TIME_LIMIT


class SettingsModel(BaseModel):
    """Base for settings sections; unknown keys are errors."""

    model_config = ConfigDict(extra="forbid")


class StorageSettings(SettingsModel):
    """Where member collections live on disk.

    Attributes:
        root: Directory holding every member.
        default_member: Member created and selected on first run.
        metadata_filename: Name of each collection's metadata file.
        hash_chunk_size: Bytes read per chunk while hashing.
    """

    root: str = "~/.mistakebook/members"
    default_member: str = "default"
    metadata_filename: str = METADATA_FILENAME
    hash_chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)


class TrainingSettings(SettingsModel):
    """Location of the scheduling configuration.

    Attributes:
        config_path: JSON file read by the training engine.
    """

    config_path: str = "~/.mistakebook/training.json"


class ReviewSettings(SettingsModel):
    """Defaults for due queues and exams.

    Attributes:
        include_frozen: Whether frozen items appear in due queues.
        answer_time_limit: Seconds allowed per question when an item sets none.
    """

    include_frozen: bool = False
    answer_time_limit: int = Field(default=DEFAULT_ANSWER_TIME_LIMIT, ge=1)


class LoggingSettings(SettingsModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
        file: Log file path; ``None`` disables file logging.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    max_size_mb: int = Field(default=10, gt=0)
    backup_count: int = Field(default=5, ge=0)
    file: Optional[str] = "~/.mistakebook/mistakebook.log"


class CLIOptions(SettingsModel):
    """CLI presentation defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        history_limit: Default number of entries shown by ``history``.
    """

    quiet_default: bool = False
    history_limit: int = Field(default=20, ge=0)


class MistakebookConfig(SettingsModel):
    """Top-level application settings."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    training: TrainingSettings = Field(default_factory=TrainingSettings)
    review: ReviewSettings = Field(default_factory=ReviewSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "SettingsModel",
    "StorageSettings",
    "TrainingSettings",
    "ReviewSettings",
    "LoggingSettings",
    "CLIOptions",
    "MistakebookConfig",
]
