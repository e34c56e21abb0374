"""
Logging setup shared by the API process and the reconcile command.

Usage:
    from retail_ledger.core.logging import setup_logging
    setup_logging()
    logger = logging.getLogger(__name__)
"""

import logging
import sys

from retail_ledger.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that emit per-statement or per-request noise at INFO.
NOISY_LOGGERS = [
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "uvicorn.access",
]


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """Configure the root logger once with a console handler.

    Args:
        level: log level name or number, defaults to ``LOG_LEVEL``.

    Returns:
        The root logger.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level or settings.log_level)

    # uvicorn and pytest may already have attached handlers
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
