"""Exceptions raised while loading or resolving settings."""


class ConfigError(Exception):
    """Raised when configuration data cannot be read or validated."""
