"""Process-wide logging setup."""

import logging
import sys
from typing import Optional

from config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("pika", "httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def setup_logging(config: Optional[Config] = None, log_level: Optional[str] = None) -> None:
    """Log to stdout at ``log_level``, else LOG_LEVEL from config, else INFO.

    Unknown level names fall back to INFO.
    """
    name = (log_level or (config.log_level if config else "INFO")).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S", stream=sys.stdout)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
