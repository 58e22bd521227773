"""Logging setup for the grainup command line."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from rich.console import Console
from rich.logging import RichHandler

from grainup.config.models import LoggingSettings

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(message)s"


def configure_logging(
    settings: LoggingSettings,
    *,
    verbose: bool = False,
    quiet: bool = False,
    console: Console | None = None,
) -> logging.Logger:
    """Install console and optional rotating-file handlers on the package logger.

    Args:
        settings: Logging configuration section.
        verbose: Force DEBUG level regardless of the configured level.
        quiet: Only show errors on the console; the log file keeps the configured level.
        console: Rich console used for terminal output.

    Returns:
        logging.Logger: The configured ``grainup`` logger.
    """
    level_name = "DEBUG" if verbose else settings.level.upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger("grainup")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    if quiet:
        console_handler.setLevel(logging.ERROR)
    logger.addHandler(console_handler)

    if settings.file is not None:
        log_path = settings.file.expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging"]
