import logging
import sys

import structlog

from reliable_queue.core.config import settings


def setup_logging():
    """
    Configure structured logging for the queue components.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.LOG_JSON
        else structlog.dev.ConsoleRenderer()
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
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ContextLogger:
    """
    Logger with context support for tracing queue operations.
    """

    def __init__(self, name: str, **context):
        self.logger = structlog.get_logger(name).bind(**context)

    def with_context(self, **kwargs) -> "ContextLogger":
        """Return a logger carrying additional context."""
        bound = ContextLogger.__new__(ContextLogger)
        bound.logger = self.logger.bind(**kwargs)
        return bound

    def info(self, message: str, **kwargs):
        """Log info message with context."""
        self.logger.info(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with context."""
        self.logger.error(message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with context."""
        self.logger.warning(message, **kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message with context."""
        self.logger.debug(message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log error message with the active exception attached."""
        self.logger.exception(message, **kwargs)


def get_logger(name: str, **context) -> ContextLogger:
    """
    Get a context-aware logger instance.
    """
    return ContextLogger(name, **context)
