"""Logging configuration."""

import sys

from loguru import logger

LOG_FORMAT = ' | '.join(
    (
        '<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</>',
        '<lvl>{level:<8}</>',
        '<c>{name}:{function}:{line}</>',
        '{message}',
    )
)

_configured = False


def setup_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        return
    logger.remove()  # drop the default handler, use our format
    logger.add(sys.stderr, format=LOG_FORMAT, level=level, enqueue=False)
    _configured = True
