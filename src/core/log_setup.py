"""Structured logging for the loader.

Standard output carries the config value and nothing else, so every log
line goes to standard error.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

from src.core.settings import LoaderSettings


def _resolve_log_level(level: str | None) -> int:
    candidate = (level or "warning").upper()
    if candidate == "TRACE":
        return logging.DEBUG
    value = logging.getLevelName(candidate)
    return value if isinstance(value, int) else logging.WARNING


def configure_logging(settings: LoaderSettings, stream: TextIO | None = None) -> logging.Handler:
    min_level = _resolve_log_level(settings.log_level)

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
        processors=[
            structlog.processors.add_log_level,
            timestamper,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
    )

    if settings.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(min_level)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer))

    # modconf loggers write only to our handler; the root logger is left alone
    # so config modules that configure logging keep their own setup.
    for name in ("modconf.core", "modconf.engine", "modconf.cli"):
        package_logger = logging.getLogger(name)
        package_logger.setLevel(min_level)
        package_logger.propagate = False
        for existing in package_logger.handlers[:]:
            package_logger.removeHandler(existing)
        package_logger.addHandler(handler)

    return handler
