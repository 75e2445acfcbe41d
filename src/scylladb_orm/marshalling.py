"""
Conversion between driver values and entity fields.

Outbound values are handed to the driver, which performs the protocol
encoding; only UUID strings are turned back into ``uuid.UUID``. Inbound
values are converted according to the column's declared ``ColumnType``
through ``CONVERTERS``, which must cover every member of the enum.
"""

import base64
import binascii
import logging
import uuid
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, TypeVar

from cassandra.util import Date

from scylladb_orm.conditions import Condition
from scylladb_orm.entity import BaseModel, ColumnDefinition, ColumnType, EntityDescriptor
from scylladb_orm.exceptions import OrmValidationError

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]
EntityT = TypeVar("EntityT", bound=BaseModel)


# ============================================================================
# Outbound
# ============================================================================

# Column types the driver only binds as uuid.UUID
UUID_TYPES = frozenset({ColumnType.UUID, ColumnType.TIMEUUID})


def to_parameter(value: Any, column_type: ColumnType | str) -> Any:
    """
    Entity field -> query parameter.

    UUID fields are read back as strings, so strings are turned into
    ``uuid.UUID`` for UUID/TIMEUUID columns. Everything else is handed to
    the driver unchanged.

    Raises:
        OrmValidationError: If a UUID column holds a malformed string
    """
    if isinstance(value, str) and ColumnType(column_type) in UUID_TYPES:
        try:
            return uuid.UUID(value)
        except ValueError as e:
            raise OrmValidationError(
                f"Invalid UUID string for {ColumnType(column_type).value} column",
                value=value,
                original_error=e,
            )
    return value


def entity_to_params(entity: BaseModel, columns: Iterable[ColumnDefinition]) -> list[Any]:
    """Collect an entity's field values in column order."""
    return [to_parameter(getattr(entity, col.name, None), col.type) for col in columns]


# ============================================================================
# Inbound
# ============================================================================

def _identity(value: Any) -> Any:
    return value


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value.strip(), 10)
    return int(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return base64.b64decode(value, validate=True)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0")
    return bool(value)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, Date):
        value = value.date()
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as CQL timestamps are stored
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    raise TypeError(f"cannot interpret {type(value).__name__} as a timestamp")


def _big_decimal_parts(value: Any) -> tuple[Any, Any] | None:
    """Return (mantissa, scale) for big-decimal-like structures."""
    if isinstance(value, Mapping):
        if "_intVal" in value and "_scale" in value:
            return value["_intVal"], value["_scale"]
        if "unscaled_value" in value and "scale" in value:
            return value["unscaled_value"], value["scale"]
        return None
    for mantissa_attr, scale_attr in (("_intVal", "_scale"), ("unscaled_value", "scale")):
        if hasattr(value, mantissa_attr) and hasattr(value, scale_attr):
            return getattr(value, mantissa_attr), getattr(value, scale_attr)
    return None


def _to_float(value: Any) -> float:
    parts = _big_decimal_parts(value)
    if parts is not None:
        mantissa, scale = parts
        return int(str(mantissa), 10) / 10 ** int(scale)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    return float(value)


def _to_str(value: Any) -> str:
    return str(value)


CONVERTERS: dict[ColumnType, Callable[[Any], Any]] = {
    ColumnType.ASCII: _identity,
    ColumnType.DURATION: _identity,
    ColumnType.INET: _identity,
    ColumnType.TEXT: _identity,
    ColumnType.TIME: _identity,
    ColumnType.VARCHAR: _identity,
    ColumnType.BIGINT: _to_int,
    ColumnType.COUNTER: _to_int,
    ColumnType.INT: _to_int,
    ColumnType.SMALLINT: _to_int,
    ColumnType.TINYINT: _to_int,
    ColumnType.VARINT: _to_int,
    ColumnType.BLOB: _to_bytes,
    ColumnType.BOOLEAN: _to_bool,
    ColumnType.DATE: _to_datetime,
    ColumnType.TIMESTAMP: _to_datetime,
    ColumnType.DECIMAL: _to_float,
    ColumnType.DOUBLE: _to_float,
    ColumnType.FLOAT: _to_float,
    ColumnType.TIMEUUID: _to_str,
    ColumnType.UUID: _to_str,
}

_missing = set(ColumnType) - set(CONVERTERS)
if _missing:
    raise RuntimeError(f"No converter registered for column types: {sorted(t.value for t in _missing)}")


def from_row_value(value: Any, column_type: ColumnType | str) -> Any:
    """
    Row value -> entity field.

    ``None`` passes through for every type.

    Raises:
        OrmValidationError: If the type is unsupported or the value cannot
            be converted
    """
    if value is None:
        return None

    try:
        converter = CONVERTERS[ColumnType(column_type)]
    except (KeyError, ValueError):
        raise OrmValidationError(f"Unsupported type: {column_type}", value=value)

    try:
        return converter(value)
    except (TypeError, ValueError, ArithmeticError, binascii.Error) as e:
        raise OrmValidationError(
            f"Cannot convert {type(value).__name__} to {ColumnType(column_type).value}",
            value=value,
            original_error=e,
        )


def _row_mapping(row: Any) -> Row:
    if isinstance(row, Mapping):
        return row
    if hasattr(row, "_asdict"):
        return row._asdict()
    raise OrmValidationError(f"Unsupported row type: {type(row).__name__}")


def row_to_entity(row: Any, entity_cls: type[EntityT]) -> EntityT:
    """
    Build a fresh entity from a result row.

    The entity's defaults are applied by its constructor and then
    overwritten column by column; columns absent from the row read as None.
    """
    mapping = _row_mapping(row)
    entity = entity_cls()
    for col in entity_cls.get_columns():
        setattr(entity, col.name, from_row_value(mapping.get(col.name), col.type))
    return entity


def rows_to_entities(rows: Iterable[Any], entity_cls: type[EntityT]) -> list[EntityT]:
    return [row_to_entity(row, entity_cls) for row in rows]


def coerce_conditions(conditions: Any, descriptor: EntityDescriptor) -> Any:
    """
    Apply ``to_parameter`` to the condition values of declared columns.

    Columns the descriptor does not know and input that is not a mapping
    are left as they are for the condition compiler to handle.
    """
    if not isinstance(conditions, Mapping):
        return conditions

    coerced = {}
    for name, value in conditions.items():
        column = descriptor.column(name)
        coerced[name] = value if column is None else _coerce_condition_value(value, column.type)
    return coerced


def _coerce_condition_value(value: Any, column_type: ColumnType) -> Any:
    if isinstance(value, Condition):
        return Condition(value.operator, _coerce_operand(value.value, column_type))
    if isinstance(value, Mapping) and "operator" in value:
        return {**value, "value": _coerce_operand(value.get("value"), column_type)}
    return to_parameter(value, column_type)


def _coerce_operand(operand: Any, column_type: ColumnType) -> Any:
    # IN operands
    if isinstance(operand, (list, tuple)):
        return [to_parameter(item, column_type) for item in operand]
    return to_parameter(operand, column_type)
