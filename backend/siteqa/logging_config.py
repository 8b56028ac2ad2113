import sys
from typing import Optional

from loguru import logger

from siteqa.settings import get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan> | "
    "{message}"
)


def configure_logging() -> None:
    """Install the single stderr sink used by the API process."""
    logger.remove()
    logger.configure(extra={"module": "siteqa"})
    logger.add(
        sys.stderr,
        level=get_settings().LOG_LEVEL,
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )


def get_logger(name: Optional[str] = None, **kwargs):
    if name:
        return logger.bind(module=name, **kwargs)
    return logger.bind(**kwargs)
