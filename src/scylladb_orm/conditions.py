"""
Condition compilation.

Turns a mapping of ``column -> value | Condition`` into a CQL ``WHERE``
clause with ``?`` placeholders and the positionally aligned parameters:

    >>> compile_conditions({"age": MoreThan(30), "city": "NY"})
    CompiledConditions(clause='age > ? AND city = ?', params=[30, 'NY'])

Fragments are emitted in the mapping's insertion order and joined with
``AND``. Columns are not checked against any entity descriptor.
"""

import datetime
import decimal
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, NamedTuple

from scylladb_orm.exceptions import OrmValidationError

Operator = Literal["=", "<", "<=", ">", ">=", "IN"]

SCALAR_OPERATORS = frozenset({"=", "<", "<=", ">", ">="})
OPERATORS = SCALAR_OPERATORS | {"IN"}

SORT_DIRECTIONS = frozenset({"ASC", "DESC"})

# Values the driver binds natively as a single parameter
SCALAR_TYPES = (
    str,
    int,
    float,
    bool,
    bytes,
    bytearray,
    memoryview,
    uuid.UUID,
    datetime.datetime,
    datetime.date,
    decimal.Decimal,
)


@dataclass(frozen=True)
class Condition:
    """An explicit ``{operator, value}`` comparison."""
    operator: Operator
    value: Any


Conditions = Mapping[str, Any]


@dataclass
class FindOptions:
    """Options for ``Repository.find``."""
    where: Conditions | None = None
    order_by: Mapping[str, str] = field(default_factory=dict)


class CompiledConditions(NamedTuple):
    clause: str
    params: list[Any]


def In(values: Sequence[Any]) -> Condition:
    return Condition("IN", list(values))


def Equal(value: Any) -> Condition:
    return Condition("=", value)


def LessThan(value: Any) -> Condition:
    return Condition("<", value)


def LessThanOrEqual(value: Any) -> Condition:
    return Condition("<=", value)


def MoreThan(value: Any) -> Condition:
    return Condition(">", value)


def MoreThanOrEqual(value: Any) -> Condition:
    return Condition(">=", value)


GreaterThan = MoreThan
GreaterThanOrEqual = MoreThanOrEqual


def is_scalar(value: Any) -> bool:
    return isinstance(value, SCALAR_TYPES)


def _as_condition(value: Any) -> Condition | None:
    if isinstance(value, Condition):
        return value
    if isinstance(value, Mapping) and "operator" in value:
        return Condition(value["operator"], value.get("value"))
    return None


def _compile_condition(column: str, condition: Condition) -> tuple[str, list[Any]]:
    operator = condition.operator
    if isinstance(operator, str):
        operator = operator.upper()
    if operator not in OPERATORS:
        raise OrmValidationError(f"Unsupported operator: {condition.operator}", field=column)

    if operator == "IN":
        values = condition.value
        if isinstance(values, (str, bytes, bytearray)) or not isinstance(values, Sequence):
            raise OrmValidationError(
                f"Expected a sequence for IN condition, got {type(values).__name__}",
                field=column,
                value=values,
            )
        if not values:
            raise OrmValidationError(
                "IN condition requires at least one value", field=column, value=values
            )
        for item in values:
            if not is_scalar(item):
                raise OrmValidationError(
                    f"Invalid value type in IN condition: {type(item).__name__}",
                    field=column,
                    value=item,
                )
        placeholders = ", ".join("?" for _ in values)
        return f"{column} IN ({placeholders})", list(values)

    if not is_scalar(condition.value):
        raise OrmValidationError(
            f"Invalid value type for operator {operator}: {type(condition.value).__name__}",
            field=column,
            value=condition.value,
        )
    return f"{column} {operator} ?", [condition.value]


def compile_conditions(conditions: Conditions, *, equality_only: bool = False) -> CompiledConditions:
    """
    Compile a condition mapping into a ``WHERE`` clause and parameters.

    Args:
        conditions: Mapping of column name to a scalar (equality) or a
            ``Condition``
        equality_only: Reject explicit operators; only bare scalars allowed

    Returns:
        The clause (without the ``WHERE`` keyword) and its parameters

    Raises:
        OrmValidationError: For empty mappings, unsupported operators and
            values that cannot be bound
    """
    if not isinstance(conditions, Mapping):
        raise OrmValidationError(
            f"Conditions must be a mapping, got {type(conditions).__name__}"
        )
    if not conditions:
        raise OrmValidationError("At least one condition is required")

    fragments: list[str] = []
    params: list[Any] = []

    for column, value in conditions.items():
        condition = _as_condition(value)
        if condition is not None:
            if equality_only:
                raise OrmValidationError(
                    "Only equality conditions are supported here", field=column, value=value
                )
            fragment, values = _compile_condition(column, condition)
        elif is_scalar(value):
            fragment, values = f"{column} = ?", [value]
        else:
            raise OrmValidationError(
                f"Invalid value type: {type(value).__name__}", field=column, value=value
            )
        fragments.append(fragment)
        params.extend(values)

    return CompiledConditions(" AND ".join(fragments), params)


def compile_equality(conditions: Conditions) -> CompiledConditions:
    """Equality-only shortcut used by single-row lookups and deletes."""
    return compile_conditions(conditions, equality_only=True)


def compile_order_by(order_by: Mapping[str, str]) -> str:
    """
    Build an ``ORDER BY`` fragment in the mapping's iteration order.

    Returns an empty string for an empty mapping.
    """
    fragments = []
    for column, direction in order_by.items():
        normalized = str(direction).upper()
        if normalized not in SORT_DIRECTIONS:
            raise OrmValidationError(
                f"Sort direction must be ASC or DESC, got {direction!r}", field=column
            )
        fragments.append(f"{column} {normalized}")
    if not fragments:
        return ""
    return "ORDER BY " + ", ".join(fragments)
