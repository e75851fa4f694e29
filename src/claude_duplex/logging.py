"""Structured logging helpers.

The library never configures logging on import; applications call
``setup_logging()`` once (or configure structlog themselves).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

LOG_LEVEL_ENV = "CLAUDE_DUPLEX_LOG_LEVEL"


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def setup_logging(level: str | None = None, *, json: bool = False) -> None:
    level_name = (level or os.environ.get(LOG_LEVEL_ENV, "INFO")).upper()
    numeric = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=numeric, format="%(message)s", stream=sys.stderr)

    renderer: Any
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_pipeline(logger: Any, event: str, **fields: Any) -> None:
    """Wire-level trace; kept at debug so it is free when filtered."""
    logger.debug(event, **fields)
