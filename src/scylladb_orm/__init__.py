"""
scylladb-orm - a lightweight object mapper for ScyllaDB / Cassandra.

Entities declare their table, columns, primary key and indexes through an
``EntityBuilder``; a ``Repository`` compiles condition mappings into
parameterized CQL and maps result rows back onto entities, executing through
a ``DataSource`` that reconnects and retries on connectivity failures.
"""

from scylladb_orm.conditions import (
    Condition,
    CompiledConditions,
    FindOptions,
    In,
    Equal,
    LessThan,
    LessThanOrEqual,
    MoreThan,
    MoreThanOrEqual,
    GreaterThan,
    GreaterThanOrEqual,
    compile_conditions,
    compile_equality,
    compile_order_by,
)

from scylladb_orm.config import (
    ConnectionConfig,
    AuthConfig,
    RetryConfig,
    PoolConfig,
    load_config_from_env,
)

from scylladb_orm.datasource import (
    DataSource,
    ConnectionState,
    QueryOptions,
    build_cluster,
)

from scylladb_orm.entity import (
    BaseModel,
    ColumnDefinition,
    ColumnType,
    EntityBuilder,
    EntityDescriptor,
    IndexDefinition,
    PrimaryKeyDefinition,
    utcnow,
)

from scylladb_orm.exceptions import (
    OrmError,
    OrmConfigurationError,
    OrmValidationError,
    OrmConnectionError,
    OrmQueryError,
    OrmTimeoutError,
    OrmUnavailableError,
    OrmAuthenticationError,
)

from scylladb_orm.logging_utils import (
    StructuredFormatter,
    PerformanceLogger,
    setup_logging,
)

from scylladb_orm.marshalling import (
    from_row_value,
    to_parameter,
    row_to_entity,
)

from scylladb_orm.observability import (
    QueryMetrics,
    Tracer,
    configure_tracing,
)

from scylladb_orm.repository import Repository

__version__ = "1.0.0"

__all__ = [
    # Entities
    "BaseModel",
    "ColumnDefinition",
    "ColumnType",
    "EntityBuilder",
    "EntityDescriptor",
    "IndexDefinition",
    "PrimaryKeyDefinition",
    "utcnow",
    # Conditions
    "Condition",
    "CompiledConditions",
    "FindOptions",
    "In",
    "Equal",
    "LessThan",
    "LessThanOrEqual",
    "MoreThan",
    "MoreThanOrEqual",
    "GreaterThan",
    "GreaterThanOrEqual",
    "compile_conditions",
    "compile_equality",
    "compile_order_by",
    # Marshalling
    "from_row_value",
    "to_parameter",
    "row_to_entity",
    # Data source and repository
    "DataSource",
    "ConnectionState",
    "QueryOptions",
    "build_cluster",
    "Repository",
    # Configuration
    "ConnectionConfig",
    "AuthConfig",
    "RetryConfig",
    "PoolConfig",
    "load_config_from_env",
    # Errors
    "OrmError",
    "OrmConfigurationError",
    "OrmValidationError",
    "OrmConnectionError",
    "OrmQueryError",
    "OrmTimeoutError",
    "OrmUnavailableError",
    "OrmAuthenticationError",
    # Observability
    "StructuredFormatter",
    "PerformanceLogger",
    "setup_logging",
    "QueryMetrics",
    "Tracer",
    "configure_tracing",
]
