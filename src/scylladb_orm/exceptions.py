"""
Exception hierarchy for scylladb-orm.

Driver exceptions are wrapped with additional context; the original
exception is kept on ``original_error`` so callers can still inspect it.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class OrmError(Exception):
    """
    Base exception for everything the mapper raises.

    Raised for bad entity declarations, rejected conditions or row values,
    and failed statements. When a driver exception is the cause it is kept
    on ``original_error`` and appended to ``str(error)``.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        """
        Args:
            message: What the repository or data source was doing
            original_error: Driver or conversion error that caused it
        """
        super().__init__(message)
        self.original_error = original_error
        self.message = message

        cause = {}
        if original_error is not None:
            cause = {"cause_type": type(original_error).__name__, "cause": str(original_error)}
        logger.debug(f"{type(self).__name__}: {message}", extra=cause)

    def __str__(self) -> str:
        if self.original_error is None:
            return self.message
        return f"{self.message} (caused by {type(self.original_error).__name__}: {self.original_error})"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, original_error={self.original_error!r})"


class OrmConfigurationError(OrmError):
    """
    Raised when an entity or data source is misconfigured.

    For example, an entity without a table name or a duplicated column.
    """


class OrmValidationError(OrmError):
    """
    Raised when caller input is rejected before anything is sent to the cluster.

    This includes:
    - Malformed condition trees and unsupported operators
    - Missing named parameters in raw queries
    - Values that cannot be converted to the declared column type

    Never retried.
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None, original_error: Exception | None = None):
        self.field = field
        self.value = value
        if field:
            message = f"Validation error for '{field}': {message}"
        super().__init__(message, original_error)


class OrmConnectionError(OrmError):
    """
    Raised by ``DataSource`` when no session can be opened or the open one
    stopped answering (``NoHostAvailable``, ``ConnectionException``).

    ``execute_query`` retries on it, reconnecting first, and only lets it
    reach the repository once every attempt failed.
    """

    def __init__(self, message: str = "Could not open a ScyllaDB session", original_error: Exception | None = None):
        super().__init__(message, original_error)


class OrmQueryError(OrmError):
    """Raised when a query fails on the server or is rejected by it."""

    def __init__(self, message: str, original_error: Exception | None = None, query: str | None = None):
        self.query = query
        if query:
            message = f"{message} [Query: {query[:100]}]"
        super().__init__(message, original_error)


class OrmTimeoutError(OrmQueryError):
    """
    Raised when replicas or the client time out.

    Not retried by the data source; the driver's own retry policy applies.
    """

    def __init__(
        self,
        message: str = "Operation timed out",
        original_error: Exception | None = None,
        query: str | None = None,
        operation_type: str | None = None
    ):
        self.operation_type = operation_type
        if operation_type:
            message = f"{message} (operation={operation_type})"
        super().__init__(message, original_error, query)


class OrmUnavailableError(OrmQueryError):
    """
    Raised when not enough live replicas exist for the consistency level.
    """

    def __init__(
        self,
        message: str = "Required replicas unavailable",
        original_error: Exception | None = None,
        query: str | None = None,
        required_replicas: int | None = None,
        alive_replicas: int | None = None
    ):
        self.required_replicas = required_replicas
        self.alive_replicas = alive_replicas
        if required_replicas is not None and alive_replicas is not None:
            message = f"{message} (required={required_replicas}, alive={alive_replicas})"
        super().__init__(message, original_error, query)


class OrmAuthenticationError(OrmError):
    """
    Raised when authentication or authorization fails.

    This is a fatal error that requires checking credentials and permissions.
    """

    def __init__(
        self,
        message: str = "Authentication or authorization failed",
        original_error: Exception | None = None,
        username: str | None = None
    ):
        self.username = username
        if username:
            message = f"{message} for user '{username}'"
        super().__init__(message, original_error)
