"""
Logging utilities for the mail vault API and its operational scripts.

Provides a consistent logging format and configuration. Loggers for the HTTP
client stack are capped at WARNING so request URLs carrying OAuth codes do
not end up in the log stream.
"""

import logging
import sys

_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["configure_logging"]
