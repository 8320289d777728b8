"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Optional, TextIO

import structlog

# Third-party loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ("git", "httpx", "httpcore", "openai", "urllib3")


def configure_logging(log_level: str = "warning", json_output: bool = False,
                      stream: Optional[TextIO] = None) -> None:
    """Configure structlog for structured logging.

    Module loggers stay plain ``logging.getLogger(__name__)``; their records
    are rendered through structlog's ProcessorFormatter.

    Args:
        log_level: Logging level string (debug/info/warning/error).
        json_output: If True, one JSON object per line. If False, colored console.
        stream: Where records go. Defaults to stderr so command output on
            stdout stays machine-readable.
    """
    level = getattr(logging, log_level.upper(), logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None and sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_run_context(source: str, framework: str) -> None:
    """Tag every log record of the current run with its source and framework."""
    structlog.contextvars.bind_contextvars(source=source, framework=framework)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()
