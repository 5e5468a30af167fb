"""
Logging Setup

Configures loguru sinks from settings: a stderr sink at the configured level
and an optional rotating file sink.
"""

import sys
from typing import Optional

from loguru import logger

from ..config.settings import ModelKeeperSettings

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time} | {level} | {name}:{function}:{line} | {message}"


def setup_logging(settings: ModelKeeperSettings, level: Optional[str] = None) -> None:
    """
    Replace loguru's default handler with the configured sinks.

    Args:
        settings: Source of level, file path and JSON flag
        level: Overrides ``settings.log_level`` for the console sink
    """
    console_level = level or settings.log_level.value
    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level,
        format=CONSOLE_FORMAT,
        serialize=settings.log_json,
    )
    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(settings.log_file),
            rotation="10 MB",
            retention="7 days",
            level="DEBUG",
            format=FILE_FORMAT,
            serialize=settings.log_json,
        )
    logger.debug(f"Logging configured at {console_level}")
