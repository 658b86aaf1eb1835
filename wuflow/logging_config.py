"""wuflow logging configuration.

wuflow logs through structlog on top of the stdlib `logging` module. Modules
create loggers with `structlog.get_logger(__name__)` and log printf-style
messages; `setup_logging()` decides how those records are rendered.

Defaults come from `WUFLOW_LOG_LEVEL` (default `INFO`) and `WUFLOW_LOG_FORMAT`
(`console` or `json`, default `console`).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog

from wuflow.constants import LOG_FORMAT_ENV, LOG_LEVEL_ENV


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure wuflow logging.

    Args:
        level: Optional override for `WUFLOW_LOG_LEVEL`.
        fmt: Optional override for `WUFLOW_LOG_FORMAT` ("console" or "json").
    """
    resolved_level = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    resolved_format = (fmt or os.environ.get(LOG_FORMAT_ENV) or "console").lower()
    numeric_level = getattr(logging, resolved_level, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if resolved_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
