"""
Connection gateway.

``DataSource`` owns the single driver session and exposes
``execute_query``. Transient connectivity failures mark the session as
disconnected; the next attempt reconnects (shutdown, then initialize) before
executing again, up to ``RetryConfig.max_attempts`` attempts in total.

Example:
    async with DataSource.from_contact_points(["127.0.0.1"], keyspace="hr") as data_source:
        rows = await data_source.execute_query(
            "SELECT * FROM employees WHERE id = ?", [1]
        )
"""

import asyncio
import functools
import logging
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from cassandra import (
    AuthenticationFailed,
    OperationTimedOut,
    ReadTimeout,
    RequestExecutionException,
    RequestValidationException,
    Unauthorized,
    Unavailable,
    WriteTimeout,
)
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, ExecutionProfile, EXEC_PROFILE_DEFAULT, NoHostAvailable
from cassandra.connection import ConnectionException
from cassandra.io.asyncioreactor import AsyncioConnection
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra.query import SimpleStatement, dict_factory
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from scylladb_orm.config import ConnectionConfig
from scylladb_orm.exceptions import (
    OrmAuthenticationError,
    OrmConnectionError,
    OrmError,
    OrmQueryError,
    OrmTimeoutError,
    OrmUnavailableError,
)
from scylladb_orm.observability import QueryMetrics, Tracer

logger = logging.getLogger(__name__)

# Driver errors meaning the session is unusable but a fresh one may work
TRANSIENT_ERRORS = (NoHostAvailable, ConnectionException)

# Quoted string literals, quoted identifiers, bare placeholders and bare percent signs
_UNPREPARED_TOKENS = re.compile(r"""'(?:[^']|'')*'|"(?:[^"]|"")*"|\?|%""")


def to_driver_placeholders(query: str) -> str:
    """
    Rewrite ``?`` placeholders to the driver's ``%s`` for simple statements.

    The driver binds simple statements with ``%`` formatting, so every other
    ``%`` (including inside literals) is doubled. ``?`` inside quoted
    literals and identifiers is not a placeholder and is kept.
    """
    def replace(match: re.Match) -> str:
        token = match.group(0)
        if token == "?":
            return "%s"
        return token.replace("%", "%%")

    return _UNPREPARED_TOKENS.sub(replace, query)


class ConnectionState(str, Enum):
    """Lifecycle of the data source session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class QueryOptions:
    """Per-query execution options."""
    prepare: bool = True


DEFAULT_QUERY_OPTIONS = QueryOptions()


def build_cluster(config: ConnectionConfig) -> Cluster:
    """
    Create a driver ``Cluster`` from configuration.

    Rows are returned as dicts so the marshaller receives plain mappings.
    """
    auth_provider = None
    if config.auth.enabled:
        auth_provider = PlainTextAuthProvider(
            username=config.auth.username,
            password=config.auth.password,
        )

    default_profile = ExecutionProfile(
        load_balancing_policy=TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=config.local_datacenter)
        ),
        request_timeout=config.pool.request_timeout,
        row_factory=dict_factory,
    )

    return Cluster(
        contact_points=config.contact_points,
        port=config.port,
        auth_provider=auth_provider,
        protocol_version=config.pool.protocol_version,
        connect_timeout=config.pool.connect_timeout,
        connection_class=AsyncioConnection,
        execution_profiles={EXEC_PROFILE_DEFAULT: default_profile},
    )


class DataSource:
    """
    Owns the database session and executes queries with reconnect-and-retry.

    The session is shared by every repository created from this data source.
    Connects are serialized, reconnect cycles are not: concurrent failing
    calls may each shut the session down and open a new one.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        cluster_factory: Callable[[ConnectionConfig], Any] | None = None,
        enable_tracing: bool = False,
    ) -> None:
        """
        Args:
            config: Connection configuration
            cluster_factory: Builds the driver cluster (default: ``build_cluster``)
            enable_tracing: Record OpenTelemetry spans for each attempt
        """
        self.config = config
        self._cluster_factory = cluster_factory or build_cluster
        self._cluster = None
        self._session = None
        self._state = ConnectionState.DISCONNECTED
        self._prepared_statements: dict[str, Any] = {}
        self._connect_lock = asyncio.Lock()
        self.metrics = QueryMetrics()
        self.tracer = Tracer(service_name="scylladb-orm", enabled=enable_tracing)

    @classmethod
    def from_contact_points(
        cls,
        contact_points: list[str],
        keyspace: str | None = None,
        **kwargs: Any,
    ) -> "DataSource":
        """Build a data source from contact points with default settings."""
        return cls(ConnectionConfig(contact_points=contact_points, keyspace=keyspace), **kwargs)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def initialize(self) -> None:
        """
        Open the session. No-op when already connected.

        Concurrent callers wait for the connect in progress instead of
        building a second cluster.

        Raises:
            OrmConnectionError: If the cluster cannot be reached; the data
                source stays disconnected
        """
        async with self._connect_lock:
            if self._state == ConnectionState.CONNECTED:
                return

            self._state = ConnectionState.CONNECTING
            loop = asyncio.get_running_loop()

            try:
                self._cluster = self._cluster_factory(self.config)
                # connect() blocks, so run it in the default executor
                self._session = await loop.run_in_executor(
                    None, functools.partial(self._cluster.connect, self.config.keyspace)
                )
            except Exception as e:
                logger.error(f"Failed to connect to ScyllaDB at {self.config.contact_points}: {e}")
                await self.shutdown()
                raise OrmConnectionError(
                    f"Failed to connect to ScyllaDB cluster at {self.config.contact_points}",
                    original_error=e,
                )

            self._state = ConnectionState.CONNECTED
            logger.info(f"Connected to ScyllaDB at {self.config.contact_points}")

    async def shutdown(self) -> None:
        """Close the session and cluster. Safe to call in any state."""
        session, cluster = self._session, self._cluster
        self._session = None
        self._cluster = None
        self._state = ConnectionState.DISCONNECTED
        self._prepared_statements.clear()

        loop = asyncio.get_running_loop()
        for resource in (session, cluster):
            if resource is None:
                continue
            try:
                await loop.run_in_executor(None, resource.shutdown)
            except Exception as e:
                logger.warning(f"Error while shutting down {type(resource).__name__}: {e}")

    async def _reconnect(self) -> None:
        logger.info("Reconnecting to ScyllaDB...")
        self.metrics.record_reconnect()
        await self.shutdown()
        await self.initialize()

    async def execute_query(
        self,
        query: str,
        params: Sequence[Any] | None = None,
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """
        Execute a CQL query with ``?`` placeholders.

        Args:
            query: CQL text
            params: Positional parameters aligned with the placeholders
            options: ``QueryOptions`` or a mapping such as ``{"prepare": True}``

        Returns:
            List of result rows (dicts with the default cluster factory)

        Raises:
            OrmConnectionError: When every attempt failed on connectivity
            OrmTimeoutError: If the request timed out
            OrmUnavailableError: If required replicas are unavailable
            OrmAuthenticationError: If authentication/authorization fails
            OrmQueryError: For any other execution failure
        """
        if options is None:
            options = DEFAULT_QUERY_OPTIONS
        elif isinstance(options, Mapping):
            options = QueryOptions(**options)
        params = list(params or [])

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.retry.initial_delay,
                exp_base=self.config.retry.backoff_factor,
                max=self.config.retry.max_delay,
            ),
            retry=retry_if_exception_type(OrmConnectionError),
            before_sleep=self._before_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                if not self.is_connected():
                    logger.warning("ScyllaDB is not connected. Attempting to reconnect...")
                    await self._reconnect()
                rows = await self._execute_once(query, params, options)
        return rows

    def _before_retry(self, retry_state: RetryCallState) -> None:
        self.metrics.record_retry()
        logger.warning(
            f"Connection lost. Retrying query attempt "
            f"{retry_state.attempt_number + 1}/{self.config.retry.max_attempts}",
            extra={"error": str(retry_state.outcome.exception())},
        )

    async def _execute_once(self, query: str, params: list[Any], options: QueryOptions) -> list[Any]:
        operation = query.strip().split(None, 1)[0].lower() if query.strip() else "unknown"
        start_time = time.perf_counter()

        try:
            with self.tracer.span("scylladb_orm.execute", {"db.statement": query, "db.operation": operation}):
                statement = await self._statement(query, bool(params), options)
                result = await self._run(statement, params)
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.record_query(operation, latency_ms, success=False, error_type=type(e).__name__)
            if isinstance(e, TRANSIENT_ERRORS):
                self._state = ConnectionState.DISCONNECTED
            raise self._wrap_error(e, query)

        latency_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record_query(operation, latency_ms, success=True)
        return result

    async def _statement(self, query: str, has_params: bool, options: QueryOptions) -> Any:
        if options.prepare:
            prepared = self._prepared_statements.get(query)
            if prepared is None:
                # prepare() is synchronous in the driver
                loop = asyncio.get_running_loop()
                prepared = await loop.run_in_executor(None, self._session.prepare, query)
                self._prepared_statements[query] = prepared
            return prepared

        # Simple statements use the driver's %s placeholders
        return SimpleStatement(to_driver_placeholders(query) if has_params else query)

    async def _run(self, statement: Any, params: list[Any]) -> list[Any]:
        """Bridge the driver's ResponseFuture to an asyncio future."""
        loop = asyncio.get_running_loop()
        asyncio_future = loop.create_future()

        response_future = self._session.execute_async(statement, params or None)

        def on_success(result):
            loop.call_soon_threadsafe(asyncio_future.set_result, result)

        def on_error(error):
            loop.call_soon_threadsafe(asyncio_future.set_exception, error)

        response_future.add_callbacks(on_success, on_error)

        result = await asyncio_future
        return list(result) if result is not None else []

    def _wrap_error(self, error: Exception, query: str) -> OrmError:
        """Translate a driver exception into the ORM error hierarchy."""
        if isinstance(error, OrmError):
            return error
        if isinstance(error, TRANSIENT_ERRORS):
            return OrmConnectionError("No hosts available for query execution", original_error=error)
        if isinstance(error, (ReadTimeout, WriteTimeout)):
            operation = "read" if isinstance(error, ReadTimeout) else "write"
            return OrmTimeoutError(
                f"{operation.capitalize()} operation timed out",
                original_error=error,
                query=query,
                operation_type=operation,
            )
        if isinstance(error, OperationTimedOut):
            return OrmTimeoutError("Client-side operation timeout", original_error=error, query=query)
        if isinstance(error, Unavailable):
            return OrmUnavailableError(
                original_error=error,
                query=query,
                required_replicas=getattr(error, "required_replicas", None),
                alive_replicas=getattr(error, "alive_replicas", None),
            )
        if isinstance(error, (Unauthorized, AuthenticationFailed)):
            return OrmAuthenticationError(original_error=error, username=self.config.auth.username)
        if isinstance(error, RequestValidationException):
            return OrmQueryError(f"Invalid query: {error}", original_error=error, query=query)
        if isinstance(error, RequestExecutionException):
            return OrmQueryError(f"Query execution failed: {error}", original_error=error, query=query)
        return OrmQueryError(f"Query failed: {error}", original_error=error, query=query)

    def get_repository(self, entity_cls):
        """Return a ``Repository`` for ``entity_cls`` bound to this data source."""
        from scylladb_orm.repository import Repository

        return Repository(self, entity_cls)

    def get_metrics(self) -> dict[str, Any]:
        return self.metrics.get_stats()

    async def health_check(self) -> dict[str, Any]:
        """
        Run a trivial query against the cluster.

        Returns:
            {"status": "healthy", "latency_ms": ...} or
            {"status": "unhealthy", "error": ...}
        """
        try:
            start = time.perf_counter()
            await self.execute_query("SELECT now() FROM system.local", options=QueryOptions(prepare=False))
            latency_ms = (time.perf_counter() - start) * 1000
            return {"status": "healthy", "state": self._state.value, "latency_ms": round(latency_ms, 2)}
        except OrmError as e:
            return {"status": "unhealthy", "state": self._state.value, "error": str(e)}

    async def __aenter__(self) -> "DataSource":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()
