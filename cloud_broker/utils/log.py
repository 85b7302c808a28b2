"""Loguru sink configuration."""

import sys
from pathlib import Path
from typing import Optional
from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    rotation: str = "1 day",
    retention: str = "7 days",
) -> None:
    """Replace loguru's default sink with a stderr sink and an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file is not None:
        logger.add(
            str(log_file),
            rotation=rotation,
            retention=retention,
            level=level,
            format=LOG_FORMAT,
        )
    logger.debug(f"Logging configured at {level}")
