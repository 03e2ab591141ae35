"""Logging configuration for ClearPath.

Every module gets its logger from get_logger() so that all output lands under
the "clearpath" namespace and shares one handler and format.
"""

import logging
import sys
import os
from typing import Optional

DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "clearpath"


def setup_logging(log_level: Optional[str] = None) -> logging.Logger:
    """Set up logging configuration.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). If None, uses DEFAULT_LOG_LEVEL.

    Returns:
        The package root logger
    """
    level = (log_level or DEFAULT_LOG_LEVEL).upper()

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(ROOT_LOGGER_NAME)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name.

    Args:
        name: Logger name, usually the component ("review.ledger", "api")

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


logger = setup_logging()
