"""Process-wide logging setup for the docchat service."""

import logging

from core.config import settings

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_NOISY = ("httpx", "openai", "aiohttp.access")


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_FORMAT)
    # Provider SDKs log every HTTP round trip at INFO
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_logging()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
