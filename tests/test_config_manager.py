"""Unit tests for settings management."""

from pathlib import Path

import pytest

from mistakebook.config import (
    ConfigError,
    ConfigManager,
    MistakebookConfig,
    flatten_for_env,
    resolve_with_precedence,
)


def _fresh_manager(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigManager:
    monkeypatch.setenv("HOME", str(tmp_path))
    return ConfigManager(env={})


def test_ensure_exists_creates_default_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)

    path = manager.ensure_exists()

    assert path == tmp_path / ".mistakebook" / "config.yaml"
    text = path.read_text(encoding="utf-8")
    assert "mistakebook configuration file" in text
    assert "Last updated:" in text

    config = manager.load(include_env=False)
    assert isinstance(config, MistakebookConfig)
    assert config.storage.default_member == "default"
    assert config.review.include_frozen is False


def test_resolve_with_precedence_respects_order(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.save({"storage": {"default_member": "family"}, "cli": {"history_limit": 5}})

    env = {
        "MISTAKEBOOK__CLI__HISTORY_LIMIT": "8",
        "MISTAKEBOOK__REVIEW__INCLUDE_FROZEN": "true",
        "UNRELATED": "ignored",
    }
    cli = {"cli.history_limit": 3}

    config = manager.load(cli_overrides=cli, env_overrides=env)

    assert config.storage.default_member == "family"
    assert config.review.include_frozen is True
    # CLI overrides take precedence over environment
    assert config.cli.history_limit == 3


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    manager = ConfigManager(env={"MISTAKEBOOK__LOGGING__LEVEL": "DEBUG"})
    manager.save({"logging": {"level": "ERROR"}})

    assert manager.load().logging.level == "DEBUG"
    assert manager.load(include_env=False).logging.level == "ERROR"


def test_invalid_yaml_raises_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.config_path.write_text("- not-a-mapping", encoding="utf-8")

    with pytest.raises(ConfigError):
        manager.load()


def test_non_utf8_file_raises_config_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.config_path.write_bytes(b"review:\n  answer_time_limit: \xff\n")

    with pytest.raises(ConfigError):
        manager.load()


def test_flatten_for_env_renders_defaults() -> None:
    flat = flatten_for_env(MistakebookConfig())

    assert flat["MISTAKEBOOK__STORAGE__DEFAULT_MEMBER"] == "default"
    assert flat["MISTAKEBOOK__REVIEW__ANSWER_TIME_LIMIT"] == "300"


@pytest.mark.parametrize(
    "overrides",
    [
        {"review": {"answer_time_limit": "not-an-int"}},
        {"storage": {"hash_chunk_size": 0}},
        {"logging": {"level": "LOUD"}},
        {"unknown_section": {"key": 1}},
    ],
)
def test_resolve_with_precedence_invalid_value_raises(overrides: dict) -> None:
    with pytest.raises(ConfigError):
        resolve_with_precedence(defaults=MistakebookConfig(), file_overrides=overrides)


def test_sources_report_the_winning_layer(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "config.yaml", env={})
    manager.save({"review": {"include_frozen": True}, "cli": {"history_limit": 5}})

    sources = manager.sources(env_overrides={"MISTAKEBOOK__CLI__HISTORY_LIMIT": "9"})

    assert sources == {"cli.history_limit": "environment", "review.include_frozen": "file"}
    assert manager.sources(include_env=False)["cli.history_limit"] == "file"
