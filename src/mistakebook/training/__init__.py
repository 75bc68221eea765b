"""Spaced-repetition scheduling for tracked items."""

from .engine import TrainingEngine
from .errors import TrainingConfigError
from .models import (
    BaseAdjustment,
    IntervalBounds,
    IntervalMultiplier,
    ProficiencyBand,
    ProficiencyThresholds,
    TimeRule,
    TrainingConfig,
)
from .policies import (
    BandTablePolicy,
    DeviationAwarePolicy,
    ScheduleDecision,
    SchedulingPolicy,
    get_policy,
)

__all__ = [
    "TrainingEngine",
    "TrainingConfigError",
    "TrainingConfig",
    "ProficiencyBand",
    "TimeRule",
    "BaseAdjustment",
    "IntervalMultiplier",
    "ProficiencyThresholds",
    "IntervalBounds",
    "SchedulingPolicy",
    "ScheduleDecision",
    "BandTablePolicy",
    "DeviationAwarePolicy",
    "get_policy",
]
