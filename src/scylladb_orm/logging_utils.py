"""
Structured logging utilities.

Provides:
- Structured JSON logging
- Operation tracking through context variables
- Performance logging for queries
"""

import json
import logging
import time
from contextvars import ContextVar
from typing import Any

# Context variable for the repository operation being served
operation_var: ContextVar[str] = ContextVar("operation", default="")

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format with consistent fields:
    - timestamp
    - level
    - logger
    - message
    - operation (if set)
    - extra fields passed through ``extra=``
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """
    Performance logging context manager.

    Logs operation duration and outcome at DEBUG level, failures at WARNING.

    Example:
        async with PerformanceLogger("find_by", logger=logger, table="employees"):
            rows = await data_source.execute_query(query, params)
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        **context: Any
    ):
        """
        Initialize performance logger.

        Args:
            operation: Operation name
            logger: Logger instance
            **context: Additional context fields
        """
        self.operation = operation
        self.logger = logger
        self.context = context
        self.start_time: float | None = None
        self.duration_ms: float | None = None
        self._token = None

    async def __aenter__(self):
        """Start timing."""
        self.start_time = time.perf_counter()
        self._token = operation_var.set(self.operation)

        self.logger.debug(
            f"Starting operation: {self.operation}",
            extra={"event": "operation_start", **self.context}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Log duration and outcome."""
        self.duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type:
            self.logger.warning(
                f"Operation failed: {self.operation}",
                extra={
                    "event": "operation_failed",
                    "duration_ms": self.duration_ms,
                    "error_type": exc_type.__name__,
                    "error": str(exc_val),
                    **self.context
                }
            )
        else:
            self.logger.debug(
                f"Operation completed: {self.operation}",
                extra={
                    "event": "operation_completed",
                    "duration_ms": self.duration_ms,
                    **self.context
                }
            )

        operation_var.reset(self._token)


def setup_logging(
    level: str = "INFO",
    format: str = "json"
) -> None:
    """
    Configure the ``scylladb_orm`` logger hierarchy.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Format type ("json" or "text")

    Example:
        setup_logging(level="DEBUG", format="text")
    """
    package_logger = logging.getLogger("scylladb_orm")
    package_logger.setLevel(getattr(logging, level.upper()))

    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if format.lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        )

    package_logger.addHandler(handler)
