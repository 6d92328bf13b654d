"""
Logging configuration for the bridge.
"""
import logging
import sys
from typing import Optional

from .config import settings


LOGGER_NAME = "cdbridge"

# httpx logs every request at INFO; sqlalchemy echoes statements when enabled
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def setup_logging(debug: Optional[bool] = None) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        debug: Log at DEBUG instead of INFO; defaults to settings.debug

    Returns:
        The "cdbridge" logger, with a single stdout handler
    """
    if debug is None:
        debug = settings.debug
    level = logging.DEBUG if debug else logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child logger, e.g. get_logger("publisher") -> cdbridge.publisher."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


logger = setup_logging()
