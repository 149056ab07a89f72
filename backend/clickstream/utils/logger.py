"""Logging setup for the server, the workers and the tracker client."""
import logging
import sys
from typing import Optional

from clickstream.config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("clickstream")


def resolve_level(settings: Settings) -> int:
    """Explicit ``log_level`` wins; otherwise DEBUG in development, INFO elsewhere."""
    if settings.log_level:
        level = logging.getLevelName(settings.log_level.upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if settings.environment == "development" else logging.INFO


def configure_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """
    Attach one stdout handler to the ``clickstream`` logger.

    Safe to call repeatedly; later calls only adjust the level.

    Args:
        settings: Settings to read the level from; defaults to the environment

    Returns:
        The configured package logger
    """
    level = resolve_level(settings or get_settings())
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setLevel(level)

    # Own handler only, no duplicates through the root logger
    logger.propagate = False
    return logger


configure_logging()

__all__ = ["logger", "configure_logging"]
