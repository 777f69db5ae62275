# bidpool/utils/logging.py
from __future__ import annotations

import sys

from loguru import logger

from bidpool.config import LOG_LEVEL

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
    "| <level>{level:<8}</level> | <level>{message}</level>"
)


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Configure Loguru once, honouring --log-level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_FORMAT)
