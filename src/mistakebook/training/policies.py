"""Scheduling policies that turn a review outcome into the next due date."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import ClassVar

from mistakebook.state.models import ItemPatch, TrackedItem, TrainingRecord
from mistakebook.timeutils import calendar_days_between

from .models import PolicyName, ProficiencyThresholds, TrainingConfig

MIN_PROFICIENCY = 0
MAX_PROFICIENCY = 100


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(frozen=True, slots=True)
class ScheduleDecision:
    """Policy output for one review."""

    proficiency: int
    interval: int
    is_on_time: bool


class SchedulingPolicy(ABC):
    """Strategy interface shared by all scheduling policies.

    Subclasses only decide the new proficiency, interval, and punctuality;
    :meth:`process` turns that decision into an item patch.
    """

    name: ClassVar[PolicyName]

    @abstractmethod
    def decide(
        self,
        item: TrackedItem,
        success: bool,
        training_date: datetime,
        config: TrainingConfig,
    ) -> ScheduleDecision:
        """Return the scheduling decision for a review of ``item``."""

    def process(
        self,
        item: TrackedItem,
        success: bool,
        training_date: datetime,
        config: TrainingConfig,
        *,
        answer_time: int | None = None,
    ) -> ItemPatch:
        """Build the patch produced by reviewing ``item`` at ``training_date``.

        The item is not modified; its history is copied and extended by one record.
        """
        decision = self.decide(item, success, training_date, config)
        record = TrainingRecord(
            date=training_date,
            result="success" if success else "fail",
            proficiency_before=item.proficiency,
            proficiency_after=decision.proficiency,
            interval_after=decision.interval,
            is_on_time=decision.is_on_time,
            answer_time=answer_time,
        )
        return ItemPatch(
            proficiency=decision.proficiency,
            training_interval=decision.interval,
            last_training_date=training_date,
            next_training_date=training_date + timedelta(days=decision.interval),
            training_records=[*item.training_records, record],
        )


class BandTablePolicy(SchedulingPolicy):
    """Fixed proficiency steps with intervals looked up in a band table.

    Reviews are always treated as on time.
    """

    name: ClassVar[PolicyName] = "band"
    step = 10

    def calculate_new_proficiency(self, current: int, success: bool) -> int:
        adjustment = self.step if success else -self.step
        return int(clamp(current + adjustment, MIN_PROFICIENCY, MAX_PROFICIENCY))

    def calculate_next_interval(self, proficiency: int, config: TrainingConfig) -> int:
        for band in config.proficiency_intervals:
            if band.contains(proficiency):
                return band.interval
        return config.proficiency_intervals[0].interval

    def decide(
        self,
        item: TrackedItem,
        success: bool,
        training_date: datetime,
        config: TrainingConfig,
    ) -> ScheduleDecision:
        proficiency = self.calculate_new_proficiency(item.proficiency, success)
        return ScheduleDecision(
            proficiency=proficiency,
            interval=self.calculate_next_interval(proficiency, config),
            is_on_time=True,
        )


class DeviationAwarePolicy(SchedulingPolicy):
    """Continuous policy driven by punctuality and the realized review gap.

    The next interval grows from the number of days the learner actually waited
    since the previous review, not from the previously planned interval.
    """

    name: ClassVar[PolicyName] = "deviation"

    def time_deviation(self, training_date: datetime, due_date: datetime) -> int:
        """Calendar days between the due date and the review; positive means late."""
        return calendar_days_between(due_date, training_date)

    def time_bonus(self, deviation: int, config: TrainingConfig) -> int:
        for rule in config.time_rules:
            if rule.matches(deviation):
                return rule.bonus
        return config.time_rules[-1].bonus

    def calculate_new_proficiency(
        self, current: int, success: bool, bonus: int, config: TrainingConfig
    ) -> int:
        base = config.base_adjustment.success if success else config.base_adjustment.fail
        return int(clamp(current + base + bonus, MIN_PROFICIENCY, MAX_PROFICIENCY))

    def proficiency_factor(self, proficiency: int, thresholds: ProficiencyThresholds) -> float:
        """Piecewise multiplier; the slope changes at each threshold."""
        remaining = 1 - proficiency / 100
        if proficiency < thresholds.low:
            return 1 + remaining * 0.2
        if proficiency < thresholds.medium:
            return 1 + remaining * 0.3
        if proficiency < thresholds.high:
            return 1 + remaining * 0.4
        return 1 + remaining**2 * 0.5

    def actual_interval_days(self, training_date: datetime, last_training_date: datetime) -> int:
        return calendar_days_between(last_training_date, training_date)

    def calculate_next_interval(
        self,
        actual_days: int,
        success: bool,
        proficiency: int,
        config: TrainingConfig,
    ) -> int:
        multiplier = (
            config.interval_multiplier.success if success else config.interval_multiplier.fail
        )
        factor = self.proficiency_factor(proficiency, config.proficiency_thresholds)
        raw = round_half_up(actual_days * multiplier * factor)
        return int(clamp(raw, config.intervals.min, config.intervals.max))

    def decide(
        self,
        item: TrackedItem,
        success: bool,
        training_date: datetime,
        config: TrainingConfig,
    ) -> ScheduleDecision:
        deviation = self.time_deviation(training_date, item.next_training_date)
        bonus = self.time_bonus(deviation, config)
        proficiency = self.calculate_new_proficiency(item.proficiency, success, bonus, config)
        actual_days = self.actual_interval_days(training_date, item.last_training_date)
        return ScheduleDecision(
            proficiency=proficiency,
            interval=self.calculate_next_interval(actual_days, success, proficiency, config),
            is_on_time=deviation <= 0,
        )


POLICIES: dict[str, SchedulingPolicy] = {
    BandTablePolicy.name: BandTablePolicy(),
    DeviationAwarePolicy.name: DeviationAwarePolicy(),
}


def get_policy(name: str) -> SchedulingPolicy:
    """Return the registered policy called ``name``.

    Raises:
        KeyError: If no such policy exists.
    """
    return POLICIES[name]


__all__ = [
    "ScheduleDecision",
    "SchedulingPolicy",
    "BandTablePolicy",
    "DeviationAwarePolicy",
    "POLICIES",
    "get_policy",
    "clamp",
    "round_half_up",
]
