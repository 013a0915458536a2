"""Logging configuration using structlog."""

import logging
import sys
import time
from typing import Any, Dict, Optional

import structlog

from .config import settings


def configure_logging(level: Optional[str] = None):
    """Configure structured logging with JSON renderer."""
    level_name = (level or settings.LOG_LEVEL).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a configured logger instance."""
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(name)


class LoggerMixin:
    """Gives pipeline components a class-named logger and timed operation logs."""

    @property
    def logger(self) -> structlog.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger

    def log_start(self, event: str, **kwargs: Any) -> Dict[str, Any]:
        """Log the start of a pipeline step and return its timing context."""
        context = {"event": event, "start_time": time.monotonic(), **kwargs}
        self.logger.info(f"{event} started", **_without_event(context))
        return context

    def log_success(self, context: Dict[str, Any], **kwargs: Any):
        """Log step completion with its duration."""
        kwargs["duration_ms"] = _elapsed_ms(context)
        self.logger.info(
            f"{context.get('event', 'operation')} completed",
            **_without_event(context),
            **kwargs,
        )

    def log_error(self, context: Dict[str, Any], error: Exception, **kwargs: Any):
        """Log step failure with its duration and the error type."""
        kwargs["duration_ms"] = _elapsed_ms(context)
        self.logger.error(
            f"{context.get('event', 'operation')} failed",
            **_without_event(context),
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        )


def _without_event(context: Dict[str, Any]) -> Dict[str, Any]:
    # structlog reserves "event" for the message itself
    return {k: v for k, v in context.items() if k not in ("event", "start_time")}


def _elapsed_ms(context: Dict[str, Any]) -> Optional[int]:
    if "start_time" not in context:
        return None
    return int((time.monotonic() - context["start_time"]) * 1000)
