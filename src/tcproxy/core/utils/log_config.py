"""Logging configuration for the proxy server.

This module provides centralized logging configuration using Loguru. The
proxy's verbosity level picks the console log level; an optional log file
gets everything at DEBUG with rotation.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

# verbosity: 0 = none, 1 = verbose, 2 = very verbose (per-chunk transfers)
VERBOSITY_LEVELS = {0: "WARNING", 1: "INFO", 2: "DEBUG"}


def level_for(verbosity: int) -> str:
    """Map a verbosity value to a Loguru level name, clamping out of range values."""
    return VERBOSITY_LEVELS[max(0, min(verbosity, 2))]


def configure_logging(verbosity: int = 1, log_file: Path | None = None) -> None:
    """Replace Loguru's default handler with the proxy's handlers.

    Args:
        verbosity: Console verbosity, 0 to 2
        log_file: Optional path of a rotating log file
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level_for(verbosity),
        backtrace=True,
        diagnose=verbosity > 1,
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="10 MB",
            retention="1 week",
            compression="zip",
            format=FILE_FORMAT,
            level="DEBUG",
            backtrace=True,
            diagnose=True,
        )


__all__ = ["configure_logging", "level_for", "logger"]
