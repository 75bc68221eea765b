"""Configuration models for the scheduling engine."""

from __future__ import annotations

from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

PolicyName = Literal["band", "deviation"]


class TrainingBaseModel(BaseModel):
    """Shared configuration for training config models."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ProficiencyBand(TrainingBaseModel):
    """Interval assigned to an inclusive proficiency range (band policy).

    Attributes:
        range: Inclusive ``[low, high]`` proficiency bounds.
        interval: Days until the next review.
        description: Human-readable label.
    """

    range: Tuple[int, int]
    interval: int = Field(gt=0)
    description: str = ""

    @model_validator(mode="after")
    def _ordered(self) -> "ProficiencyBand":
        if self.range[0] > self.range[1]:
            raise ValueError(f"band range {list(self.range)} has low > high")
        return self

    def contains(self, proficiency: int) -> bool:
        return self.range[0] <= proficiency <= self.range[1]


class TimeRule(TrainingBaseModel):
    """Proficiency bonus for reviews whose day deviation falls in ``range``.

    A ``None`` bound is open-ended.
    """

    range: Tuple[Optional[int], Optional[int]]
    bonus: int
    description: str = ""

    @model_validator(mode="after")
    def _ordered(self) -> "TimeRule":
        low, high = self.range
        if low is not None and high is not None and low > high:
            raise ValueError(f"time rule range {list(self.range)} has low > high")
        return self

    def matches(self, deviation: int) -> bool:
        low, high = self.range
        return (low is None or deviation >= low) and (high is None or deviation <= high)


class BaseAdjustment(TrainingBaseModel):
    success: int = 5
    fail: int = -10


class IntervalMultiplier(TrainingBaseModel):
    success: float = Field(default=1.2, gt=0)
    fail: float = Field(default=0.8, gt=0)


class ProficiencyThresholds(TrainingBaseModel):
    low: int = Field(default=30, ge=0, le=100)
    medium: int = Field(default=70, ge=0, le=100)
    high: int = Field(default=90, ge=0, le=100)

    @model_validator(mode="after")
    def _ordered(self) -> "ProficiencyThresholds":
        if not self.low <= self.medium <= self.high:
            raise ValueError("proficiency thresholds must satisfy low <= medium <= high")
        return self


class IntervalBounds(TrainingBaseModel):
    min: int = Field(default=1, ge=1)
    max: int = Field(default=21, ge=1)

    @model_validator(mode="after")
    def _ordered(self) -> "IntervalBounds":
        if self.min > self.max:
            raise ValueError("intervals.min must not exceed intervals.max")
        return self


def _default_bands() -> list[ProficiencyBand]:
    return [
        ProficiencyBand(range=(0, 9), interval=1, description="beginner"),
        ProficiencyBand(range=(10, 19), interval=3, description="basic"),
        ProficiencyBand(range=(20, 39), interval=7, description="intermediate"),
        ProficiencyBand(range=(40, 69), interval=14, description="proficient"),
        ProficiencyBand(range=(70, 89), interval=21, description="advanced"),
        ProficiencyBand(range=(90, 100), interval=30, description="expert"),
    ]


def _default_time_rules() -> list[TimeRule]:
    return [
        TimeRule(range=(-1, 0), bonus=2, description="on time or one day early"),
        TimeRule(range=(-3, -2), bonus=0, description="a few days early"),
        TimeRule(range=(-7, -4), bonus=-1, description="up to a week early"),
        TimeRule(range=(1, 2), bonus=-1, description="slightly late"),
        TimeRule(range=(3, 7), bonus=-2, description="up to a week late"),
        TimeRule(range=(8, None), bonus=-3, description="more than a week late"),
    ]


class TrainingConfig(TrainingBaseModel):
    """Complete scheduling configuration.

    Attributes:
        policy: Active scheduling policy.
        proficiency_intervals: Band table used by the ``band`` policy.
        base_adjustment: Proficiency change per outcome (``deviation`` policy).
        interval_multiplier: Interval growth per outcome (``deviation`` policy).
        time_rules: Ordered bonus rules keyed by day deviation (``deviation`` policy).
        proficiency_thresholds: Breakpoints of the proficiency factor.
        intervals: Clamp applied to computed intervals (``deviation`` policy).
    """

    policy: PolicyName = "deviation"
    proficiency_intervals: List[ProficiencyBand] = Field(
        default_factory=_default_bands, min_length=1
    )
    base_adjustment: BaseAdjustment = Field(default_factory=BaseAdjustment)
    interval_multiplier: IntervalMultiplier = Field(default_factory=IntervalMultiplier)
    time_rules: List[TimeRule] = Field(default_factory=_default_time_rules, min_length=1)
    proficiency_thresholds: ProficiencyThresholds = Field(default_factory=ProficiencyThresholds)
    intervals: IntervalBounds = Field(default_factory=IntervalBounds)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


__all__ = [
    "PolicyName",
    "ProficiencyBand",
    "TimeRule",
    "BaseAdjustment",
    "IntervalMultiplier",
    "ProficiencyThresholds",
    "IntervalBounds",
    "TrainingConfig",
]
