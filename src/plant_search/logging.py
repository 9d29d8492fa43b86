"""Structlog-based logging for the plant search federation.

Library code logs through structlog with dotted event names; no print().
Events go to stderr so CLI output on stdout stays machine-readable.
"""
from __future__ import annotations

import logging
import sys
from typing import Literal

import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# httpx logs full request URLs at INFO, query-string API keys included
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: LogLevel | str = "INFO", json: bool = True) -> None:
    """Set up structlog at ``level``; ``json=False`` renders for a terminal."""
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
