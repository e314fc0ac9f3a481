"""Logging configuration for the ledger synchronization application."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


def resolve_level(level: Union[int, str]) -> int:
    """Turn a level name from configuration ("info", "DEBUG") into its number."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``ledger_sync`` logger.

    Module loggers (``logging.getLogger(__name__)``) propagate to it, so one
    call covers the engine, the stores and the CLI. Calling it again replaces
    the previous handlers.

    Args:
        level: Level number or name for the console handler
        log_file: Optional rotating log file, always written at DEBUG
        log_format: Console format string

    Returns:
        The configured ``ledger_sync`` logger
    """
    level = resolve_level(level)

    logger = logging.getLogger("ledger_sync")
    logger.setLevel(logging.DEBUG if log_file else level)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger
