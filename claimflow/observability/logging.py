# ==== STRUCTURED LOGGING WITH LOGURU ==== #

"""
Structured logging with loguru for claimflow.

This module provides JSON-serialized logging, optional rotating file sinks,
interception of standard library logging, and a contextual logger that binds
structured fields plus the active OpenTelemetry trace and span ids.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace
from opentelemetry.instrumentation.logging import LoggingInstrumentor


# ==== STDLIB INTERCEPTION ==== #


class InterceptHandler(logging.Handler):
    """Route standard library log records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def init_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    to_files: bool = False
) -> None:
    """Initialize structured logging with loguru.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for rotating file sinks
        to_files: Whether to add the rotating file sinks
    """
    # Remove default loguru handler
    logger.remove()

    # Console handler with JSON formatting for production
    logger.add(
        sys.stdout,
        format="{message}",
        serialize=True,
        level=level.upper(),
        enqueue=True,
        colorize=False,
        backtrace=True,
        diagnose=False,
    )

    if to_files:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        logger.add(
            logs_dir / "claimflow_{time:YYYY-MM-DD}.log",
            rotation="100 MB",
            retention="30 days",
            compression="gz",
            serialize=True,
            level="DEBUG",
            enqueue=True,
        )

        # Rejections and storage faults kept longer
        logger.add(
            logs_dir / "claimflow_errors_{time:YYYY-MM-DD}.log",
            rotation="50 MB",
            retention="90 days",
            compression="gz",
            serialize=True,
            level="ERROR",
            enqueue=True,
        )

    # Replace standard logging handlers
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    try:
        LoggingInstrumentor().instrument(set_logging_format=False)
    except Exception as e:
        logger.warning(f"Failed to setup OpenTelemetry logging: {e}")

    logger.info("Structured logging initialized", level=level, to_files=to_files)


class ContextualLogger:
    """Logger bound to a module name with automatic trace context injection."""

    def __init__(self, name: str):
        """Initialize contextual logger.

        Args:
            name: Logger name (typically __name__)
        """
        self.name = name
        self.logger = logger.bind(logger_name=name)

    def _add_context(self, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """Merge caller fields with the active span's trace and span ids."""
        context = {"logger_name": self.name}

        if extra:
            context.update(extra)

        span = trace.get_current_span()
        span_context = span.get_span_context()
        if span_context.is_valid:
            context['trace_id'] = format(span_context.trace_id, '032x')
            context['span_id'] = format(span_context.span_id, '016x')

        return context

    def debug(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).debug(msg)

    def info(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).info(msg)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).warning(msg)

    def error(self, msg: str, **kwargs: Any) -> None:
        self.logger.bind(**self._add_context(kwargs)).error(msg)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log exception with full traceback and context."""
        self.logger.bind(**self._add_context(kwargs)).exception(msg)


# ==== LOGGING UTILITIES ==== #

def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLogger instance
    """
    return ContextualLogger(name)


def log_business_event(event_type: str, claim_id: int | None, **context: Any) -> None:
    """Log business events with structured data.

    Args:
        event_type: Type of business event (audit action kind)
        claim_id: Claim the event belongs to
        **context: Additional business context
    """
    logger.bind(
        event_type=event_type,
        claim_id=claim_id,
        business_event=True,
        **context
    ).info(f"Business event: {event_type}")
