"""
Entity metadata and the base class for mapped entities.

An entity type carries one immutable ``EntityDescriptor`` describing its
table, columns, primary key and secondary indexes. Descriptors are built
once with ``EntityBuilder`` and attached to a ``BaseModel`` subclass:

    EMPLOYEES = (
        EntityBuilder("employees")
        .primary_key("id", ColumnType.INT, partition_key=True)
        .column("name", ColumnType.TEXT)
        .column("hired_at", ColumnType.TIMESTAMP, default=utcnow)
        .index("employees_name_idx", "name")
        .build()
    )

    class Employee(BaseModel):
        __descriptor__ = EMPLOYEES
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar

from scylladb_orm.exceptions import OrmConfigurationError, OrmValidationError

logger = logging.getLogger(__name__)


class ColumnType(str, Enum):
    """CQL column types understood by the marshaller."""
    ASCII = "ASCII"
    BIGINT = "BIGINT"
    BLOB = "BLOB"
    BOOLEAN = "BOOLEAN"
    COUNTER = "COUNTER"
    DATE = "DATE"
    DECIMAL = "DECIMAL"
    DOUBLE = "DOUBLE"
    DURATION = "DURATION"
    FLOAT = "FLOAT"
    INET = "INET"
    INT = "INT"
    SMALLINT = "SMALLINT"
    TINYINT = "TINYINT"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    TIMEUUID = "TIMEUUID"
    TEXT = "TEXT"
    UUID = "UUID"
    VARINT = "VARINT"
    VARCHAR = "VARCHAR"


# Types allowed for primary key columns
PRIMARY_KEY_TYPES = frozenset({ColumnType.INT, ColumnType.UUID, ColumnType.TEXT})


class NOT_SET:
    """Sentinel for a column without a default value."""


def utcnow() -> datetime:
    """Timezone-aware current time, usable as a column default."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ColumnDefinition:
    """A declared column."""
    name: str
    type: ColumnType
    default: Any = NOT_SET

    @property
    def has_default(self) -> bool:
        return self.default is not NOT_SET

    def resolve_default(self) -> Any:
        """Return the default, invoking it when it is a zero-argument producer."""
        if callable(self.default):
            return self.default()
        return self.default


@dataclass(frozen=True)
class PrimaryKeyDefinition:
    """A primary key component. Always mirrored by a ``ColumnDefinition``."""
    name: str
    type: ColumnType
    partition_key: bool = False
    clustering_key: bool = False


@dataclass(frozen=True)
class IndexDefinition:
    """Secondary index, assumed to exist server-side."""
    name: str
    column: str


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Static, read-only metadata for one entity type.

    Shared by every repository working with the type.
    """
    table_name: str
    columns: tuple[ColumnDefinition, ...] = ()
    primary_keys: tuple[PrimaryKeyDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()
    _columns_by_name: dict[str, ColumnDefinition] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        object.__setattr__(
            self, "_columns_by_name", {col.name: col for col in self.columns}
        )

    def get_table_name(self) -> str:
        return self.table_name

    def get_primary_keys(self) -> tuple[PrimaryKeyDefinition, ...]:
        return self.primary_keys

    def get_indexes(self) -> tuple[IndexDefinition, ...]:
        return self.indexes

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    @property
    def partition_keys(self) -> list[PrimaryKeyDefinition]:
        return [pk for pk in self.primary_keys if pk.partition_key]

    @property
    def clustering_keys(self) -> list[PrimaryKeyDefinition]:
        return [pk for pk in self.primary_keys if pk.clustering_key]

    def column(self, name: str) -> ColumnDefinition | None:
        return self._columns_by_name.get(name)


class EntityBuilder:
    """
    Fluent builder producing an ``EntityDescriptor``.

    Raises:
        OrmConfigurationError: On duplicate columns, unknown index columns,
            unsupported primary key types or a missing table name
    """

    def __init__(self, table_name: str | None = None):
        self._table_name = table_name
        self._columns: list[ColumnDefinition] = []
        self._primary_keys: list[PrimaryKeyDefinition] = []
        self._indexes: list[IndexDefinition] = []

    def table(self, name: str) -> "EntityBuilder":
        self._table_name = name
        return self

    def column(self, name: str, column_type: ColumnType | str, *, default: Any = NOT_SET) -> "EntityBuilder":
        self._check_new_column(name)
        self._columns.append(ColumnDefinition(name, ColumnType(column_type), default))
        return self

    def primary_key(
        self,
        name: str,
        column_type: ColumnType | str,
        *,
        partition_key: bool = False,
        clustering_key: bool = False,
        default: Any = NOT_SET,
    ) -> "EntityBuilder":
        column_type = ColumnType(column_type)
        if column_type not in PRIMARY_KEY_TYPES:
            raise OrmConfigurationError(
                f"Primary key '{name}' must be one of "
                f"{sorted(t.value for t in PRIMARY_KEY_TYPES)}, got {column_type.value}"
            )
        self._check_new_column(name)

        # Both lists are updated together so every key is also a column
        self._primary_keys.append(
            PrimaryKeyDefinition(name, column_type, partition_key, clustering_key)
        )
        self._columns.append(ColumnDefinition(name, column_type, default))
        return self

    def index(self, name: str, column: str) -> "EntityBuilder":
        if not any(col.name == column for col in self._columns):
            raise OrmConfigurationError(
                f"Index '{name}' references undeclared column '{column}'"
            )
        self._indexes.append(IndexDefinition(name, column))
        return self

    def build(self) -> EntityDescriptor:
        if not self._table_name:
            raise OrmConfigurationError("Entity requires a table name")

        descriptor = EntityDescriptor(
            table_name=self._table_name,
            columns=tuple(self._columns),
            primary_keys=tuple(self._primary_keys),
            indexes=tuple(self._indexes),
        )
        logger.debug(
            f"Registered entity '{descriptor.table_name}' with "
            f"{len(descriptor.columns)} columns, {len(descriptor.primary_keys)} primary keys"
        )
        return descriptor

    def _check_new_column(self, name: str) -> None:
        if not name:
            raise OrmConfigurationError("Column name cannot be empty")
        if any(col.name == name for col in self._columns):
            raise OrmConfigurationError(f"Column '{name}' declared twice")


class BaseModel:
    """
    Base class for mapped entities.

    Subclasses set ``__descriptor__``. Field values live as plain instance
    attributes named after the columns.
    """

    __descriptor__: ClassVar[EntityDescriptor | None] = None

    def __init__(self, **values: Any):
        descriptor = type(self).descriptor()
        unknown = set(values) - set(descriptor.column_names)
        if unknown:
            raise OrmValidationError(
                f"Unknown columns for {type(self).__name__}: {sorted(unknown)}"
            )

        for col in descriptor.columns:
            if col.name in values:
                setattr(self, col.name, values[col.name])
            elif col.has_default:
                setattr(self, col.name, col.resolve_default())
            else:
                setattr(self, col.name, None)

    @classmethod
    def descriptor(cls) -> EntityDescriptor:
        if cls.__descriptor__ is None:
            raise OrmConfigurationError(
                f"{cls.__name__} has no entity descriptor; set __descriptor__"
            )
        return cls.__descriptor__

    @classmethod
    def get_table_name(cls) -> str:
        return cls.descriptor().table_name

    @classmethod
    def get_primary_keys(cls) -> tuple[PrimaryKeyDefinition, ...]:
        return cls.descriptor().primary_keys

    @classmethod
    def get_indexes(cls) -> tuple[IndexDefinition, ...]:
        return cls.descriptor().indexes

    @classmethod
    def get_columns(cls) -> tuple[ColumnDefinition, ...]:
        return cls.descriptor().columns

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name, None) for name in self.descriptor().column_names}

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"{type(self).__name__}({fields})"
