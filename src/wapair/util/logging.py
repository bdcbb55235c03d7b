"""Logging configuration."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(log_level: str = "INFO", log_file: Path | None = None) -> None:
    """Configure loguru sinks for the server.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional rotating file sink in addition to stdout
    """
    logger.remove()

    logger.add(sys.stdout, format=_CONSOLE_FORMAT, level=log_level, colorize=True)

    if log_file is not None:
        logger.add(
            log_file,
            format=_FILE_FORMAT,
            level=log_level,
            rotation="10 MB",
            retention="1 week",
            compression="zip",
        )

    logger.info(f"Logging configured with level: {log_level}")
