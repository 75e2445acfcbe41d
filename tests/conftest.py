"""
Pytest configuration and fixtures for scylladb-orm tests.

Provides:
- An in-memory fake cluster/session standing in for the driver
- Data source and repository fixtures wired to the fake
- A live ScyllaDB data source for integration tests
"""

import socket
from collections import deque

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from scylladb_orm import (
    BaseModel,
    ColumnType,
    ConnectionConfig,
    DataSource,
    EntityBuilder,
    Repository,
    RetryConfig,
    utcnow,
)

# Load environment variables for tests
load_dotenv()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require ScyllaDB)"
    )


# ============================================================================
# Test Entities
# ============================================================================

EMPLOYEES = (
    EntityBuilder("employees")
    .primary_key("id", ColumnType.INT, partition_key=True)
    .column("name", ColumnType.TEXT)
    .column("age", ColumnType.INT)
    .column("active", ColumnType.BOOLEAN, default=True)
    .column("hired_at", ColumnType.TIMESTAMP, default=utcnow)
    .index("employees_name_idx", "name")
    .build()
)


class Employee(BaseModel):
    __descriptor__ = EMPLOYEES


@pytest.fixture
def employee_model():
    """The Employee entity class."""
    return Employee


@pytest.fixture
def employee_row():
    """A result row as returned by the driver with dict_factory."""
    from datetime import datetime, timezone

    return {
        "id": 1,
        "name": "Alice",
        "age": 42,
        "active": True,
        "hired_at": datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
    }


# ============================================================================
# Fake Driver
# ============================================================================

class FakePreparedStatement:
    def __init__(self, query_string: str):
        self.query_string = query_string


class FakeResponseFuture:
    """Resolves immediately with the queued outcome."""

    def __init__(self, outcome):
        self.outcome = outcome

    def add_callbacks(self, callback, errback):
        if isinstance(self.outcome, BaseException):
            errback(self.outcome)
        else:
            callback(self.outcome)


class FakeSession:
    """
    Records every statement and replays queued outcomes.

    Queue a list of rows for a successful execution or an exception
    instance for a failure. An empty queue yields no rows.
    """

    def __init__(self):
        self.executed: list[tuple[str, list]] = []
        self.prepared: list[str] = []
        self.outcomes: deque = deque()
        self.shutdown_calls = 0

    def queue(self, *outcomes):
        self.outcomes.extend(outcomes)

    def prepare(self, query):
        self.prepared.append(query)
        return FakePreparedStatement(query)

    def execute_async(self, statement, parameters=None):
        self.executed.append((statement.query_string, list(parameters or [])))
        outcome = self.outcomes.popleft() if self.outcomes else []
        return FakeResponseFuture(outcome)

    def shutdown(self):
        self.shutdown_calls += 1

    @property
    def queries(self) -> list[str]:
        return [query for query, _ in self.executed]


class FakeCluster:
    """Hands out the same FakeSession; connect can be made to fail."""

    def __init__(self, session: FakeSession):
        self.session = session
        self.connect_calls = 0
        self.connect_errors: deque = deque()
        self.keyspace = None
        self.shutdown_calls = 0

    def connect(self, keyspace=None):
        self.connect_calls += 1
        if self.connect_errors:
            raise self.connect_errors.popleft()
        self.keyspace = keyspace
        return self.session

    def shutdown(self):
        self.shutdown_calls += 1


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_cluster(fake_session):
    return FakeCluster(fake_session)


@pytest.fixture
def connection_config():
    return ConnectionConfig(
        contact_points=["127.0.0.1"],
        keyspace="test_orm",
        retry=RetryConfig(max_attempts=3, initial_delay=0.0),
    )


@pytest.fixture
def data_source(connection_config, fake_cluster):
    """Data source over the fake cluster, not yet connected."""
    return DataSource(connection_config, cluster_factory=lambda config: fake_cluster)


@pytest_asyncio.fixture
async def connected_data_source(data_source):
    await data_source.initialize()
    yield data_source
    await data_source.shutdown()


@pytest_asyncio.fixture
async def employee_repository(connected_data_source):
    return Repository(connected_data_source, Employee)


# ============================================================================
# Live ScyllaDB
# ============================================================================

def _scylla_reachable(host: str = "127.0.0.1", port: int = 9042) -> bool:
    try:
        with socket.create_connection((host, port), timeout=1.0):
            return True
    except OSError:
        return False


@pytest_asyncio.fixture
async def scylla_data_source():
    """
    Data source connected to ScyllaDB on localhost:9042.

    Creates a scratch keyspace with the employees table and drops it after
    the test.
    """
    if not _scylla_reachable():
        pytest.skip("ScyllaDB is not reachable on 127.0.0.1:9042")

    keyspace = "test_scylladb_orm"
    data_source = DataSource.from_contact_points(["127.0.0.1"])
    await data_source.initialize()

    await data_source.execute_query(f"""
        CREATE KEYSPACE IF NOT EXISTS {keyspace}
        WITH replication = {{'class': 'SimpleStrategy', 'replication_factor': 1}}
    """, options={"prepare": False})
    await data_source.execute_query(f"""
        CREATE TABLE IF NOT EXISTS {keyspace}.employees (
            id int PRIMARY KEY,
            name text,
            age int,
            active boolean,
            hired_at timestamp
        )
    """, options={"prepare": False})
    await data_source.execute_query(
        f"CREATE INDEX IF NOT EXISTS employees_name_idx ON {keyspace}.employees (name)",
        options={"prepare": False},
    )
    await data_source.shutdown()

    data_source.config.keyspace = keyspace
    await data_source.initialize()

    yield data_source

    await data_source.execute_query(f"DROP KEYSPACE IF EXISTS {keyspace}", options={"prepare": False})
    await data_source.shutdown()
