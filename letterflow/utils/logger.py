"""
Logging configuration

Each module logs through ``get_logger(__name__)``. Loggers write to stdout
and do not propagate, so uvicorn's own handlers never duplicate lines.
"""
import logging
import sys
from letterflow.config import get_settings

settings = get_settings()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level() -> int:
    return getattr(logging, settings.log_level.upper(), logging.INFO)


def setup_logger(name: str) -> logging.Logger:
    """
    Attach the stdout handler to the named logger

    Args:
        name: Logger name (usually __name__)

    Returns:
        The configured logger; calling this again does not add a second handler
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level())
    if not any(getattr(h, "_letterflow", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._letterflow = True
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    return setup_logger(name)
