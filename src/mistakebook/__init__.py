"""Mistakebook: a spaced-repetition tracker for photographed mistakes."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mistakebook")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__"]
