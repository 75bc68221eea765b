"""Training engine configuration lifecycle tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mistakebook.training import TrainingConfig, TrainingConfigError, TrainingEngine


def test_default_config_matches_documented_values() -> None:
    config = TrainingEngine.get_default_config()

    assert config.policy == "deviation"
    assert config.base_adjustment.success == 5
    assert config.base_adjustment.fail == -10
    assert config.interval_multiplier.success == pytest.approx(1.2)
    assert (config.intervals.min, config.intervals.max) == (1, 21)
    assert [band.interval for band in config.proficiency_intervals] == [1, 3, 7, 14, 21, 30]
    assert config.time_rules[-1].range == (8, None)


def test_validate_config_accepts_camel_case_json() -> None:
    data = {
        "baseAdjustment": {"success": 4, "fail": -8},
        "intervalMultiplier": {"success": 1.5, "fail": 0.5},
        "timeRules": [{"range": [-1, 0], "bonus": 1, "description": "on time"}],
        "proficiencyThresholds": {"low": 20, "medium": 60, "high": 80},
        "intervals": {"min": 2, "max": 40},
    }

    config = TrainingEngine.validate_config(data)

    assert config.base_adjustment.fail == -8
    assert config.time_rules[0].range == (-1, 0)
    assert config.intervals.max == 40
    assert config.policy == "deviation"


@pytest.mark.parametrize(
    "data",
    [
        {"intervals": {"min": 10, "max": 5}},
        {"proficiencyThresholds": {"low": 80, "medium": 60, "high": 90}},
        {"timeRules": []},
        {"intervalMultiplier": {"success": 0}},
        {"policy": "fibonacci"},
        {"unexpected": True},
    ],
)
def test_validate_config_rejects_invalid_data(data: dict) -> None:
    with pytest.raises(TrainingConfigError):
        TrainingEngine.validate_config(data)


def test_validate_config_rejects_non_mapping() -> None:
    with pytest.raises(TrainingConfigError):
        TrainingEngine.validate_config(["not", "a", "mapping"])  # type: ignore[arg-type]


def test_failed_update_keeps_previous_config() -> None:
    engine = TrainingEngine()
    engine.update_config({"intervals": {"min": 2, "max": 30}})

    with pytest.raises(TrainingConfigError):
        engine.update_config({"intervals": {"min": 50, "max": 30}})

    assert engine.config.intervals.min == 2
    assert engine.config.intervals.max == 30


def test_config_property_returns_a_copy() -> None:
    engine = TrainingEngine()

    engine.config.intervals.max = 99

    assert engine.config.intervals.max == 21


def test_policy_follows_config() -> None:
    engine = TrainingEngine(TrainingConfig(policy="band"))

    assert engine.policy.name == "band"


def test_save_and_load_config_file(tmp_path: Path) -> None:
    path = tmp_path / "training.json"
    engine = TrainingEngine()
    engine.update_config({"policy": "band", "intervals": {"min": 3, "max": 10}})

    engine.save_config(path)
    loaded = TrainingEngine.from_file(path)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["policy"] == "band"
    assert "proficiencyIntervals" in raw
    assert loaded.config == engine.config


def test_from_file_falls_back_to_defaults(tmp_path: Path) -> None:
    missing = TrainingEngine.from_file(tmp_path / "missing.json")
    broken_path = tmp_path / "broken.json"
    broken_path.write_text("{oops", encoding="utf-8")
    invalid_path = tmp_path / "invalid.json"
    invalid_path.write_text(json.dumps({"intervals": {"min": 0}}), encoding="utf-8")
    binary_path = tmp_path / "binary.json"
    binary_path.write_bytes(b'{"policy": "\xff"}')

    for engine in (
        missing,
        TrainingEngine.from_file(broken_path),
        TrainingEngine.from_file(invalid_path),
        TrainingEngine.from_file(binary_path),
    ):
        assert engine.config == TrainingEngine.get_default_config()
