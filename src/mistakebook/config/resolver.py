"""Merge settings sources in precedence order."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterator, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import MistakebookConfig

ENV_PREFIX = "MISTAKEBOOK__"
SOURCE_ORDER = ("file", "environment", "cli")


def _layers(
    file_overrides: Mapping[str, Any] | None,
    env_overrides: Mapping[str, Any] | None,
    cli_overrides: Mapping[str, Any] | None,
) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield each non-empty source as a nested mapping, lowest precedence first."""
    for name, source in zip(SOURCE_ORDER, (file_overrides, env_overrides, cli_overrides)):
        if source is not None:
            yield name, expand_dotted(source, source_name=name)


def resolve_with_precedence(
    *,
    defaults: MistakebookConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> MistakebookConfig:
    """Merge sources so later ones win: defaults, file, environment, CLI.

    Args:
        defaults: Baseline settings.
        file_overrides: Values read from the YAML file.
        env_overrides: Values parsed from ``MISTAKEBOOK__`` variables.
        cli_overrides: Values given on the command line; keys may be dotted.

    Returns:
        MistakebookConfig: Validated, merged settings.

    Raises:
        ConfigError: If a source is malformed or the result fails validation.
    """
    merged = defaults.model_dump(mode="python")
    for _, layer in _layers(file_overrides, env_overrides, cli_overrides):
        merged = _deep_merge(merged, layer)

    try:
        return MistakebookConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def override_sources(
    *,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> Dict[str, str]:
    """Map each overridden dotted key to the source that decided its value."""
    winners: Dict[str, str] = {}
    for name, layer in _layers(file_overrides, env_overrides, cli_overrides):
        for key in _leaf_keys(layer):
            winners[key] = name
    return dict(sorted(winners.items()))


def flatten_for_env(config: MistakebookConfig) -> Dict[str, str]:
    """Render settings as ``MISTAKEBOOK__SECTION__KEY`` variables."""
    data = config.model_dump(mode="python")
    flat: Dict[str, str] = {}
    for dotted in _leaf_keys(data):
        value: Any = data
        for segment in dotted.split("."):
            value = value[segment]
        if isinstance(value, list):
            rendered = yaml.safe_dump(value, default_flow_style=True).strip()
        else:
            rendered = "null" if value is None else str(value)
        flat[ENV_PREFIX + dotted.replace(".", "__").upper()] = rendered
    return flat


def expand_dotted(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    """Turn ``{"a.b": 1}`` style keys into nested mappings.

    Raises:
        ConfigError: If the source is not a mapping or has non-string keys.
    """
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    nested: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        assign_nested(nested, key.split("."), value, source_name=source_name)
    return nested


def assign_nested(
    target: dict[str, Any], path: list[str], value: Any, *, source_name: str = "config"
) -> None:
    """Set ``value`` at ``path`` inside ``target``, creating sections as needed.

    Raises:
        ConfigError: If a non-mapping value sits on the path.
    """
    *parents, leaf = path
    node = target
    for segment in parents:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} "
                f"conflicts with the non-mapping value at '{segment}'."
            )
        node = child

    if isinstance(value, MappingABC):
        current = node.get(leaf)
        base = current if isinstance(current, MappingABC) else {}
        node[leaf] = _deep_merge(base, expand_dotted(value, source_name=source_name))
    else:
        node[leaf] = value


def _leaf_keys(data: Mapping[str, Any], prefix: str = "") -> Iterator[str]:
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, MappingABC) and value:
            yield from _leaf_keys(value, f"{dotted}.")
        else:
            yield dotted


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "SOURCE_ORDER",
    "resolve_with_precedence",
    "override_sources",
    "flatten_for_env",
    "expand_dotted",
    "assign_nested",
]
