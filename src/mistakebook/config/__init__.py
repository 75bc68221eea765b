"""Application settings backed by a YAML file and environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from mistakebook.state.filesystem import LocalFileSystem
from mistakebook.timeutils import utcnow

from .exceptions import ConfigError
from .models import MistakebookConfig
from .resolver import (
    ENV_PREFIX,
    assign_nested,
    flatten_for_env,
    override_sources,
    resolve_with_precedence,
)

DEFAULT_CONFIG_PATH = Path("~/.mistakebook/config.yaml")
_HEADER_LINES = (
    "# mistakebook configuration file",
    "# Written by mistakebook; change it with `mistakebook config set` or `config edit`.",
)


class ConfigManager:
    """Load and persist the settings file.

    Effective settings are layered: built-in defaults, then the YAML file,
    then ``MISTAKEBOOK__SECTION__KEY`` variables, then CLI overrides.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = os.environ if env is None else env

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> MistakebookConfig:
        """Return the effective settings.

        Args:
            cli_overrides: Dotted-key overrides from the command line.
            include_env: Whether ``MISTAKEBOOK__`` variables apply.
            ensure_file: Whether to write a default file when none exists.
            env_overrides: Environment mapping used instead of the process environment.

        Raises:
            ConfigError: If the file cannot be parsed or values are invalid.
        """
        if ensure_file:
            self.ensure_exists()
        return resolve_with_precedence(
            defaults=MistakebookConfig(),
            file_overrides=self._read_file(),
            env_overrides=self._env_layer(include_env, env_overrides),
            cli_overrides=cli_overrides,
        )

    def sources(
        self,
        *,
        include_env: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> Dict[str, str]:
        """Map each key set by the file or environment to the layer that decided it."""
        return override_sources(
            file_overrides=self._read_file(),
            env_overrides=self._env_layer(include_env, env_overrides),
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def save(self, config: MistakebookConfig | Mapping[str, Any]) -> None:
        """Replace the settings file with ``config`` under a fresh header.

        Args:
            config: Full settings model, or a nested mapping of file overrides.
        """
        if isinstance(config, MistakebookConfig):
            config = config.model_dump(mode="python")
        self._write_file(config)

    def ensure_exists(self) -> Path:
        """Write a settings file holding the defaults unless one exists."""
        if not self._config_path.exists():
            self.save(MistakebookConfig())
        return self._config_path

    def read_text(self) -> str:
        """Return the settings file as written, or an empty string when absent.

        Raises:
            ConfigError: If the file is not UTF-8 text.
        """
        if not self._config_path.exists():
            return ""
        try:
            return self._config_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigError(f"{self._config_path} is not valid UTF-8: {exc}") from exc

    # Internal helpers -------------------------------------------------

    def _env_layer(
        self, include_env: bool, env_overrides: Mapping[str, str] | None
    ) -> dict[str, Any] | None:
        if not include_env:
            return None
        return self._extract_env(self._env if env_overrides is None else env_overrides)

    def _read_file(self) -> dict[str, Any]:
        text = self.read_text()
        if not text:
            return {}
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse {self._config_path}: {exc}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{self._config_path} must contain a mapping at the top level.")
        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        stamp = utcnow().isoformat().replace("+00:00", "Z")
        body = yaml.safe_dump(dict(data), sort_keys=False, allow_unicode=True)
        text = "\n".join((*_HEADER_LINES, f"# Last updated: {stamp}", body))
        LocalFileSystem().write_text_atomic(self._config_path, text)

    def _extract_env(self, env: Mapping[str, str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for key, raw_value in env.items():
            if not key.startswith(ENV_PREFIX):
                continue
            path = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
            if not path:
                continue
            try:
                value: Any = yaml.safe_load(raw_value)
            except yaml.YAMLError:
                value = raw_value
            assign_nested(overrides, path, value, source_name="environment")
        return overrides


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "MistakebookConfig",
    "resolve_with_precedence",
    "override_sources",
    "flatten_for_env",
    "assign_nested",
    "ConfigError",
]
