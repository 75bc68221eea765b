"""Scheduling policy tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mistakebook.state.models import TrackedItem, TrainingRecord
from mistakebook.timeutils import parse_datetime
from mistakebook.training import (
    BandTablePolicy,
    DeviationAwarePolicy,
    ProficiencyBand,
    ProficiencyThresholds,
    TimeRule,
    TrainingConfig,
    TrainingEngine,
    get_policy,
)

TODAY = datetime(2024, 5, 20, 18, 0, tzinfo=timezone.utc)


def _item(**updates) -> TrackedItem:
    item = TrackedItem.create(
        item_id="item-1",
        relative_path="a.png",
        original_file_name="a.png",
        now=TODAY - timedelta(days=10),
    )
    return item.model_copy(update=updates)


def test_band_policy_scenario() -> None:
    engine = TrainingEngine(TrainingConfig(policy="band"))

    patch = engine.process_training(_item(proficiency=5), True, TODAY)

    assert patch.proficiency == 15
    assert patch.training_interval == 3
    assert patch.last_training_date == TODAY
    assert patch.next_training_date == TODAY + timedelta(days=3)
    assert patch.training_records[-1].is_on_time is True


def test_band_policy_ignores_lateness() -> None:
    engine = TrainingEngine(TrainingConfig(policy="band"))
    late = _item(proficiency=40, next_training_date=TODAY - timedelta(days=30))

    patch = engine.process_training(late, False, TODAY)

    assert patch.proficiency == 30
    assert patch.training_interval == 7
    assert patch.training_records[-1].is_on_time is True


@pytest.mark.parametrize(
    ("current", "success", "expected"),
    [(95, True, 100), (100, True, 100), (3, False, 0), (0, False, 0)],
)
def test_band_policy_clamps_proficiency(current: int, success: bool, expected: int) -> None:
    assert BandTablePolicy().calculate_new_proficiency(current, success) == expected


def test_band_policy_falls_back_to_first_band() -> None:
    config = TrainingConfig(
        policy="band",
        proficiency_intervals=[
            ProficiencyBand(range=(0, 50), interval=2),
            ProficiencyBand(range=(60, 100), interval=9),
        ],
    )

    assert BandTablePolicy().calculate_next_interval(55, config) == 2
    assert BandTablePolicy().calculate_next_interval(75, config) == 9


def test_deviation_policy_scenario() -> None:
    engine = TrainingEngine()
    item = _item(
        proficiency=50,
        last_training_date=TODAY - timedelta(days=10),
        next_training_date=TODAY,
    )

    patch = engine.process_training(item, True, TODAY)

    assert patch.proficiency == 57
    assert patch.training_interval == 14
    assert patch.next_training_date == TODAY + timedelta(days=14)
    record = patch.training_records[-1]
    assert record.is_on_time is True
    assert record.proficiency_before == 50
    assert record.proficiency_after == 57
    assert record.interval_after == 14
    assert record.result == "success"


def test_deviation_policy_penalizes_late_reviews() -> None:
    engine = TrainingEngine()
    item = _item(proficiency=50, next_training_date=TODAY - timedelta(days=5))

    patch = engine.process_training(item, True, TODAY)

    assert patch.proficiency == 53
    assert patch.training_records[-1].is_on_time is False


def test_deviation_policy_failure_shrinks_interval() -> None:
    engine = TrainingEngine()
    item = _item(proficiency=50, next_training_date=TODAY)

    patch = engine.process_training(item, False, TODAY)

    assert patch.proficiency == 42
    assert patch.training_interval == 9
    assert patch.training_records[-1].result == "fail"


def test_time_deviation_compares_calendar_days() -> None:
    policy = DeviationAwarePolicy()
    due = datetime(2024, 5, 19, 23, 30, tzinfo=timezone.utc)

    assert policy.time_deviation(datetime(2024, 5, 20, 0, 30, tzinfo=timezone.utc), due) == 1
    assert policy.time_deviation(datetime(2024, 5, 19, 0, 5, tzinfo=timezone.utc), due) == 0
    assert policy.time_deviation(datetime(2024, 5, 16, 12, 0, tzinfo=timezone.utc), due) == -3


def test_time_bonus_uses_last_rule_when_nothing_matches() -> None:
    config = TrainingConfig(
        time_rules=[
            TimeRule(range=(-1, 0), bonus=2),
            TimeRule(range=(1, 2), bonus=-1),
        ]
    )
    policy = DeviationAwarePolicy()

    assert policy.time_bonus(0, config) == 2
    assert policy.time_bonus(30, config) == -1
    assert policy.time_bonus(-20, config) == -1


def test_default_time_rules_cover_open_ended_lateness() -> None:
    config = TrainingConfig()
    policy = DeviationAwarePolicy()

    assert policy.time_bonus(-5, config) == -1
    assert policy.time_bonus(4, config) == -2
    assert policy.time_bonus(365, config) == -3


def test_proficiency_factor_keeps_piecewise_shape() -> None:
    policy = DeviationAwarePolicy()
    thresholds = ProficiencyThresholds()

    assert policy.proficiency_factor(29, thresholds) == pytest.approx(1.142)
    assert policy.proficiency_factor(30, thresholds) == pytest.approx(1.21)
    assert policy.proficiency_factor(70, thresholds) == pytest.approx(1.12)
    assert policy.proficiency_factor(90, thresholds) == pytest.approx(1.005)
    assert policy.proficiency_factor(100, thresholds) == pytest.approx(1.0)
    assert policy.proficiency_factor(30, thresholds) > policy.proficiency_factor(29, thresholds)


def test_next_interval_is_clamped() -> None:
    policy = DeviationAwarePolicy()
    config = TrainingConfig()

    assert policy.calculate_next_interval(100, True, 50, config) == 21
    assert policy.calculate_next_interval(0, True, 50, config) == 1
    assert policy.calculate_next_interval(0, False, 0, config) == 1


@pytest.mark.parametrize(
    ("current", "success", "deviation_days", "expected"),
    [(99, True, 0, 100), (3, False, 20, 0), (100, True, -1, 100)],
)
def test_deviation_policy_keeps_proficiency_in_bounds(
    current: int, success: bool, deviation_days: int, expected: int
) -> None:
    item = _item(proficiency=current, next_training_date=TODAY - timedelta(days=deviation_days))

    patch = TrainingEngine().process_training(item, success, TODAY)

    assert patch.proficiency == expected


def test_processing_appends_one_record_without_touching_history() -> None:
    earlier = TrainingRecord(
        date=TODAY - timedelta(days=10),
        result="fail",
        proficiency_before=10,
        proficiency_after=0,
        interval_after=1,
        is_on_time=True,
    )
    item = _item(proficiency=0, training_records=[earlier])
    snapshot = item.model_copy(deep=True)

    patch = TrainingEngine().process_training(item, True, TODAY, answer_time=42_000)

    assert len(patch.training_records) == 2
    assert patch.training_records[0] == earlier
    assert patch.training_records[1].answer_time == 42_000
    assert item == snapshot


def test_processing_is_deterministic() -> None:
    engine = TrainingEngine()
    item = _item(proficiency=64, next_training_date=TODAY - timedelta(days=2))

    first = engine.process_training(item, True, TODAY)
    second = engine.process_training(item, True, TODAY)

    assert first == second


@pytest.mark.parametrize("raw_date", [None, "", "not-a-date"])
def test_missing_or_invalid_date_falls_back_to_now(raw_date: str | None) -> None:
    engine = TrainingEngine(clock=lambda: TODAY)

    patch = engine.process_training(_item(proficiency=20), True, raw_date)

    assert patch.last_training_date == TODAY
    assert patch.training_records[-1].date == TODAY


@pytest.mark.parametrize(
    "raw_date",
    ["0001-01-01T00:00:00+05:00", "9999-12-31T00:00:00+00:00", datetime.max],
)
def test_unschedulable_dates_fall_back_to_now(raw_date: datetime | str) -> None:
    engine = TrainingEngine(clock=lambda: TODAY)

    patch = engine.process_training(_item(proficiency=20), True, raw_date)

    assert patch.last_training_date == TODAY
    assert patch.next_training_date == TODAY + timedelta(days=patch.training_interval)


def test_parse_datetime_rejects_offsets_outside_utc_range() -> None:
    assert parse_datetime("0001-01-01T00:00:00+05:00") is None
    assert parse_datetime("9999-12-31T23:00:00-05:00") is None
    assert parse_datetime("0001-01-01T00:00:00Z") == datetime.min.replace(tzinfo=timezone.utc)


def test_iso_date_strings_are_accepted() -> None:
    engine = TrainingEngine(clock=lambda: TODAY)

    patch = engine.process_training(_item(), True, "2024-05-18T07:00:00Z")

    assert patch.last_training_date == datetime(2024, 5, 18, 7, tzinfo=timezone.utc)


def test_policies_are_registered_by_name() -> None:
    assert isinstance(get_policy("band"), BandTablePolicy)
    assert isinstance(get_policy("deviation"), DeviationAwarePolicy)
    with pytest.raises(KeyError):
        get_policy("unknown")
