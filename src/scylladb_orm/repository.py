"""
Typed CRUD and query operations for one entity type.

Query text and parameter order are fully determined by the entity
descriptor and the condition compiler. All statements are prepared.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Generic

from scylladb_orm.conditions import (
    Conditions,
    FindOptions,
    compile_conditions,
    compile_equality,
    compile_order_by,
)
from scylladb_orm.datasource import DataSource, QueryOptions
from scylladb_orm.entity import EntityDescriptor
from scylladb_orm.exceptions import OrmConfigurationError, OrmValidationError
from scylladb_orm.logging_utils import PerformanceLogger
from scylladb_orm.marshalling import (
    EntityT,
    coerce_conditions,
    entity_to_params,
    row_to_entity,
    rows_to_entities,
    to_parameter,
)

logger = logging.getLogger(__name__)

ALLOW_FILTERING = " ALLOW FILTERING"

NAMED_PARAMETER = re.compile(r":(\w+)")


class Repository(Generic[EntityT]):
    """
    Repository for a ``BaseModel`` subclass.

    Borrows the data source; closing it is the caller's responsibility.

    Example:
        employees = data_source.get_repository(Employee)
        saved = await employees.save(Employee(id=1, name="Alice"))
        seniors = await employees.find_by({"age": MoreThan(40)}, allow_filtering=True)
    """

    def __init__(self, data_source: DataSource, entity_cls: type[EntityT]) -> None:
        """
        Raises:
            OrmConfigurationError: If the entity has no descriptor or no
                table name
        """
        descriptor = entity_cls.descriptor()
        if not descriptor.get_table_name():
            raise OrmConfigurationError(f"{entity_cls.__name__} has no table name")

        self.data_source = data_source
        self.entity_cls = entity_cls
        self.options = QueryOptions(prepare=True)

    @property
    def descriptor(self) -> EntityDescriptor:
        return self.entity_cls.descriptor()

    @property
    def table_name(self) -> str:
        return self.descriptor.get_table_name()

    def _coerce(self, conditions: Conditions) -> Conditions:
        return coerce_conditions(conditions, self.descriptor)

    async def _execute(self, operation: str, query: str, params: list[Any]) -> list[Any]:
        async with PerformanceLogger(operation, logger, table=self.table_name, query=query):
            return await self.data_source.execute_query(query, params, self.options)

    async def save(self, entity: EntityT) -> EntityT | None:
        """
        Insert the entity and read it back by primary key.

        Returns:
            The stored entity, or None if the read-back found no row
        """
        if not isinstance(entity, self.entity_cls):
            raise OrmValidationError(
                f"Expected {self.entity_cls.__name__}, got {type(entity).__name__}"
            )

        columns = self.descriptor.columns
        names = ", ".join(col.name for col in columns)
        placeholders = ", ".join("?" for _ in columns)
        insert_query = f"INSERT INTO {self.table_name} ({names}) VALUES ({placeholders})"
        await self._execute("save", insert_query, entity_to_params(entity, columns))

        primary_keys = self.descriptor.get_primary_keys()
        fetch_query = f"SELECT * FROM {self.table_name} WHERE " + " AND ".join(
            f"{pk.name} = ?" for pk in primary_keys
        )
        key_values = [to_parameter(getattr(entity, pk.name), pk.type) for pk in primary_keys]

        rows = await self._execute("save", fetch_query, key_values)
        return row_to_entity(rows[0], self.entity_cls) if rows else None

    async def find(
        self,
        options: FindOptions | Mapping[str, Any] | None = None,
        allow_filtering: bool = False,
    ) -> list[EntityT]:
        """
        Select entities, optionally filtered and ordered.

        Without ``where`` this is a full table scan.

        Args:
            options: ``FindOptions`` or a mapping with ``where`` / ``order_by``
            allow_filtering: Append ALLOW FILTERING
        """
        if isinstance(options, Mapping):
            options = FindOptions(**options)

        query = f"SELECT * FROM {self.table_name}"
        params: list[Any] = []

        if options is not None and options.where:
            clause, params = compile_conditions(self._coerce(options.where))
            query += f" WHERE {clause}"

        if options is not None and options.order_by:
            query += " " + compile_order_by(options.order_by)

        if allow_filtering:
            query += ALLOW_FILTERING

        rows = await self._execute("find", query, params)
        return rows_to_entities(rows, self.entity_cls)

    async def find_by(self, conditions: Conditions, allow_filtering: bool = False) -> list[EntityT]:
        """Select entities matching ``conditions`` (full operator set)."""
        clause, params = compile_conditions(self._coerce(conditions))
        query = f"SELECT * FROM {self.table_name} WHERE {clause}"

        if allow_filtering:
            query += ALLOW_FILTERING

        rows = await self._execute("find_by", query, params)
        return rows_to_entities(rows, self.entity_cls)

    async def find_one_by(self, conditions: Conditions, allow_filtering: bool = False) -> EntityT | None:
        """First entity matching equality ``conditions``, or None."""
        clause, params = compile_equality(self._coerce(conditions))
        query = f"SELECT * FROM {self.table_name} WHERE {clause} LIMIT 1"

        if allow_filtering:
            query += ALLOW_FILTERING

        rows = await self._execute("find_one_by", query, params)
        return row_to_entity(rows[0], self.entity_cls) if rows else None

    async def find_one(self) -> EntityT | None:
        """An arbitrary single entity, or None for an empty table."""
        rows = await self._execute("find_one", f"SELECT * FROM {self.table_name} LIMIT 1", [])
        return row_to_entity(rows[0], self.entity_cls) if rows else None

    async def count(self, conditions: Conditions | None = None, allow_filtering: bool = False) -> int:
        """Number of rows, optionally restricted by ``conditions``."""
        query = f"SELECT COUNT(*) FROM {self.table_name}"
        params: list[Any] = []

        if conditions:
            clause, params = compile_conditions(self._coerce(conditions))
            query += f" WHERE {clause}"

        if allow_filtering:
            query += ALLOW_FILTERING

        rows = await self._execute("count", query, params)
        if not rows:
            return 0
        row = rows[0]
        value = next(iter(row.values())) if isinstance(row, Mapping) else row[0]
        return int(value)

    async def delete(self, conditions: Conditions) -> bool:
        """
        Delete the rows matching equality ``conditions``.

        Returns:
            False if nothing matched (no DELETE is issued), otherwise whether
            the rows are gone after the DELETE
        """
        clause, params = compile_equality(self._coerce(conditions))
        exists_query = f"SELECT * FROM {self.table_name} WHERE {clause} LIMIT 1"

        rows = await self._execute("delete", exists_query, params)
        if not rows:
            return False

        await self._execute("delete", f"DELETE FROM {self.table_name} WHERE {clause}", params)

        remaining = await self._execute("delete", exists_query, params)
        return len(remaining) == 0

    async def run_raw_query(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        allow_filtering: bool = False,
    ) -> list[EntityT]:
        """
        Execute caller-written CQL with ``:name`` placeholders.

        Placeholders are replaced by ``?`` left to right and their values
        collected in the same order; a name may appear more than once.

        Raises:
            OrmValidationError: If a placeholder has no value in ``params``
        """
        params = params or {}
        values: list[Any] = []

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name not in params:
                raise OrmValidationError(f"Missing value for parameter: {name}", field=name)
            values.append(params[name])
            return "?"

        formatted_query = NAMED_PARAMETER.sub(substitute, query)

        if allow_filtering:
            formatted_query += ALLOW_FILTERING

        rows = await self._execute("run_raw_query", formatted_query, values)
        return rows_to_entities(rows, self.entity_cls)
