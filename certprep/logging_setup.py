"""Loguru sink configuration for CLI and daemon entry points."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Replace loguru's default sink with stderr plus an optional rotating file.

    Args:
        level: Minimum level for the stderr sink
        log_file: Path of the file sink (None disables it)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="14 days",
            enqueue=True,
        )
