import sys
from loguru import logger

from config.settings import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logger():
    """
    Configures the Loguru logger for the broker.

    Removes the default handler and installs a colourised stderr sink at the
    level named by 'LOG_LEVEL'. When 'LOG_FILE' is set, a rotating file sink
    is added as well so saga and sweep outcomes survive restarts.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL.upper(),
        format=LOG_FORMAT,
        colorize=True,
        backtrace=True,  # Show full stack trace on exceptions
        diagnose=False,  # Never dump local variables; they can hold API keys
    )

    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            level=settings.LOG_LEVEL.upper(),
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            format="{time} {level} {name}:{function} - {message}",
            enqueue=True,
        )

    return logger


# Other modules import 'app_logger' to log messages.
app_logger = setup_logger()
