import sys

from loguru import logger

from .config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level> | {extra}"
)


def setup_logging():
    """
    Configure the process-wide loguru sink.

    Structured context passed as keyword arguments (logger.info("...", provider=...))
    lands in record["extra"] and is printed after the message, or serialized
    as JSON when LOG_JSON is enabled.
    """
    logger.remove()
    if settings.log_json:
        logger.add(sys.stderr, level=settings.log_level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=settings.log_level.upper(), format=LOG_FORMAT)
    return logger
