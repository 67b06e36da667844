"""
Logging configuration for the Flowers client.
All modules log through ``logging.getLogger(__name__)``; this installs the
shared console handler on the package logger.
"""

import logging
from typing import Optional

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a console handler to the ``flowers`` logger (idempotent)."""
    logger = logging.getLogger("flowers")

    if level is None:
        from .config import settings
        level = settings.LOG_LEVEL
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    return logger
