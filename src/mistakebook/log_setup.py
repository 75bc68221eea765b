"""Logging configuration for the command line entry point."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from mistakebook.config.models import LoggingSettings

PACKAGE_LOGGER = "mistakebook"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_MANAGED_ATTR = "_mistakebook_managed"


def configure_logging(
    settings: LoggingSettings,
    *,
    console: Console | None = None,
    log_path: Path | None = None,
) -> logging.Logger:
    """Attach a rotating file handler and a rich console handler.

    Calling this again replaces the handlers installed by a previous call, so
    repeated CLI invocations in one process do not duplicate output.

    Args:
        settings: Level and rotation settings.
        console: Console used for warnings; defaults to stderr.
        log_path: Overrides ``settings.file`` when given.

    Returns:
        logging.Logger: The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_ATTR, False):
            logger.removeHandler(handler)
            handler.close()

    level = logging.getLevelName(settings.level)
    logger.setLevel(min(level, logging.WARNING))

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
    )
    console_handler.setLevel(max(level, logging.WARNING))
    _install(logger, console_handler)

    target = log_path or (Path(settings.file).expanduser() if settings.file else None)
    if target is not None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                target,
                maxBytes=settings.max_size_mb * 1024 * 1024,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Unable to open log file %s: %s", target, exc)
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
            _install(logger, file_handler)

    return logger


def _install(logger: logging.Logger, handler: logging.Handler) -> None:
    setattr(handler, _MANAGED_ATTR, True)
    logger.addHandler(handler)


__all__ = ["configure_logging", "PACKAGE_LOGGER"]
