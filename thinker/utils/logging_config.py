"""Centralized logging configuration for thinker."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, TextIO

import structlog

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Third-party loggers that are chatty at INFO (reconnects, slow callbacks)
QUIET_LOGGERS = ("rethinkdb", "asyncio")

CALLSITE = [
    structlog.processors.CallsiteParameter.FILENAME,
    structlog.processors.CallsiteParameter.LINENO,
    structlog.processors.CallsiteParameter.FUNC_NAME,
]


def _renderer(json_logs: bool, stream: TextIO) -> Any:
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=stream.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def _add_file_handler(path: str, level: int) -> None:
    handler = RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
    handler.setLevel(level)
    logging.root.addHandler(handler)


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    log_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging for the command line tool.

    Log output goes to stderr by default so it never mixes with the summary
    printed on stdout. Calling this again replaces the previous setup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON logs. If False, use console format.
        log_file: Optional path to a rotating log file, in addition to the stream.
        stream: Stream for log output (default: sys.stderr)

    Example:
        >>> configure_logging(log_level="DEBUG")
        >>> log = structlog.stdlib.get_logger()
        >>> log.info("sync_table_started", table="users")
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    out = stream or sys.stderr

    logging.basicConfig(format="%(message)s", level=level, stream=out, force=True)
    if log_file:
        _add_file_handler(log_file, level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(parameters=CALLSITE),
            _renderer(json_logs, out),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
