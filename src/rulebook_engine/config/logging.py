"""Structured logging for generation runs.

Run summaries are printed as JSON on stdout, so log records always go to a
separate stream (stderr unless told otherwise).
"""

import logging
import sys
from typing import IO, Any, Literal

import structlog

from rulebook_engine.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

# Per-request lines from the PostgREST client drown out generation events
NOISY_LOGGERS = ("httpx", "httpcore")


def _renderer(log_format: LogFormat, stream: IO[str]) -> list[structlog.types.Processor]:
    if log_format == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(
            colors=stream.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ),
    ]


def configure_logging(
    level: LogLevel | None = None,
    format: LogFormat | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog on top of the standard library.

    Args:
        level: Log level. Defaults to ``LOG_LEVEL``.
        format: ``json`` for log shippers, ``console`` for humans. Defaults
            to ``LOG_FORMAT``.
        stream: Destination for log lines. Defaults to stderr.
    """
    settings = get_settings()
    log_level = level or settings.log_level
    log_format = format or settings.log_format
    stream = stream or sys.stderr

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, log_level),
        force=True,
    )
    library_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(log_format, stream),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, component: str | None = None, **context: Any) -> Any:
    """Logger for ``name``, optionally pre-bound to a component."""
    logger = structlog.get_logger(name)
    if component is not None:
        context["component"] = component
    return logger.bind(**context) if context else logger
