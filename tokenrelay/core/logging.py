"""
Logging setup shared by the API process and the background refresh loop.

Log records name providers and accounts; token values are never logged.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# These log full request URLs at INFO, and callback URLs carry OAuth codes.
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Route records to stdout at ``level`` and quiet the HTTP client loggers."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stdout)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["LOG_FORMAT", "configure_logging"]
