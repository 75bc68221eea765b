"""Training engine: configuration lifecycle and review processing."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from mistakebook.state.filesystem import LocalFileSystem
from mistakebook.state.models import ItemPatch, TrackedItem
from mistakebook.timeutils import Clock, resolve_datetime, utcnow

from .errors import TrainingConfigError
from .models import TrainingConfig
from .policies import SchedulingPolicy, get_policy

LOGGER = logging.getLogger(__name__)


class TrainingEngine:
    """Compute scheduling updates for reviewed items.

    The engine is pure with respect to items: it never persists anything and
    returns patches for the caller to merge into the metadata store.
    """

    def __init__(self, config: TrainingConfig | None = None, *, clock: Clock = utcnow) -> None:
        self._config = config or self.get_default_config()
        self._clock = clock

    @classmethod
    def from_file(cls, path: Path, *, clock: Clock = utcnow) -> "TrainingEngine":
        """Create an engine from a JSON config file, falling back to defaults.

        A missing, unreadable, or invalid file is logged and the default
        configuration is used instead.
        """
        path = Path(path).expanduser()
        if not path.exists():
            LOGGER.info("Training config %s not found; using defaults.", path)
            return cls(clock=clock)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            config = cls.validate_config(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.error("Training config %s is not valid UTF-8 JSON: %s", path, exc)
            return cls(clock=clock)
        except OSError as exc:
            LOGGER.error("Unable to read training config %s: %s", path, exc)
            return cls(clock=clock)
        except TrainingConfigError as exc:
            LOGGER.warning("Training config %s is invalid; using defaults. %s", path, exc)
            return cls(clock=clock)
        return cls(config, clock=clock)

    @property
    def config(self) -> TrainingConfig:
        """Copy of the active configuration."""
        return self._config.model_copy(deep=True)

    @property
    def policy(self) -> SchedulingPolicy:
        return get_policy(self._config.policy)

    @staticmethod
    def get_default_config() -> TrainingConfig:
        """Return the built-in scheduling configuration."""
        return TrainingConfig()

    @staticmethod
    def validate_config(data: TrainingConfig | Mapping[str, Any]) -> TrainingConfig:
        """Validate raw config data.

        Args:
            data: Mapping in the on-disk JSON shape, or an existing config.

        Returns:
            TrainingConfig: Validated configuration.

        Raises:
            TrainingConfigError: If the data is not a valid configuration.
        """
        if isinstance(data, TrainingConfig):
            data = data.model_dump()
        if not isinstance(data, Mapping):
            raise TrainingConfigError("Training config must be a mapping.")
        try:
            return TrainingConfig.model_validate(dict(data))
        except ValidationError as exc:
            raise TrainingConfigError(f"Invalid training config: {exc}") from exc

    def update_config(self, data: TrainingConfig | Mapping[str, Any]) -> TrainingConfig:
        """Replace the active config; the previous one stays on validation failure."""
        self._config = self.validate_config(data)
        return self.config

    def save_config(self, path: Path) -> None:
        """Write the active configuration to ``path`` as camelCase JSON.

        Args:
            path: Destination file; written atomically.
        """
        text = json.dumps(self._config.to_json_dict(), indent=2, ensure_ascii=False)
        LocalFileSystem().write_text_atomic(Path(path).expanduser(), text)

    def process_training(
        self,
        item: TrackedItem,
        success: bool,
        training_date: datetime | date | str | None = None,
        *,
        answer_time: int | None = None,
    ) -> ItemPatch:
        """Return the scheduling patch for one review of ``item``.

        Args:
            item: Reviewed item; left unmodified.
            success: Whether the learner answered correctly.
            training_date: When the review happened; missing or unparseable
                values fall back to the current time.
            answer_time: Optional milliseconds spent answering.

        Returns:
            ItemPatch: Proficiency, interval, dates, and the extended history.
        """
        when = self._schedulable(resolve_datetime(training_date, self._clock))
        patch = self.policy.process(item, success, when, self._config, answer_time=answer_time)
        LOGGER.debug(
            "Item %s: proficiency %s -> %s, interval %s day(s) (%s policy).",
            item.id,
            item.proficiency,
            patch.proficiency,
            patch.training_interval,
            self._config.policy,
        )
        return patch

    def _schedulable(self, when: datetime) -> datetime:
        """Return ``when``, or the clock time when no interval could be added to it.

        Args:
            when: Resolved review time.

        Returns:
            datetime: A review time whose next due date is representable under
                every interval the active config can produce.
        """
        longest = max(
            self._config.intervals.max,
            *(band.interval for band in self._config.proficiency_intervals),
        )
        try:
            when + timedelta(days=longest)
        except OverflowError:
            LOGGER.warning("Review date %s is too late to schedule; using the current time.", when)
            return resolve_datetime(None, self._clock)
        return when


__all__ = ["TrainingEngine"]
