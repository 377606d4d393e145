"""
Where-clause compiler: FilterMatrix -> SQLAlchemy boolean expression.

The outer list of a matrix is OR-combined and every inner group AND-combined.
Conditions repeated on one column inside a group are merged into a single
AND-composite for that column.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Sequence

from sqlalchemy import and_, any_, extract, or_, true
from sqlalchemy.dialects.postgresql import array
from sqlalchemy.sql.elements import ColumnElement

from tenant_query.core.errors import ConfigurationError
from tenant_query.db.mapping import coerce_value
from .filters import FilterMatrix, Operator, QueryFilter

logger = logging.getLogger(__name__)

ColumnResolver = Callable[[str], ColumnElement[Any]]


def _eq(col, value):
    return col.is_(None) if value is None else col == value


def _ne(col, value):
    return col.is_not(None) if value is None else col != value


_COMPARATORS: Dict[Operator, Callable[[ColumnElement[Any], Any], ColumnElement[bool]]] = {
    Operator.EQ: _eq,
    Operator.NE: _ne,
    Operator.LT: lambda col, v: col < v,
    Operator.LTE: lambda col, v: col <= v,
    Operator.GT: lambda col, v: col > v,
    Operator.GTE: lambda col, v: col >= v,
    Operator.LIKE: lambda col, v: col.like(f"%{v}%"),
    Operator.ILIKE: lambda col, v: col.ilike(f"%{v}%"),
    Operator.BETWEEN: lambda col, v: col.between(v[0], v[1]),
    Operator.IN: lambda col, v: col.in_(list(v)),
    Operator.NOT_IN: lambda col, v: col.not_in(list(v)),
    Operator.ANY: lambda col, v: col == any_(array(list(v))),
    Operator.IS_NULL: lambda col, v: col.is_(None),
}


class WhereCompiler:
    """
    Compile filter matrices against a model.

    resolve_column maps a filter column ("name" or "group.name") to the SQL
    expression it refers to; dotted names resolve against the active join alias
    for that relation path.
    """

    def __init__(self, resolve_column: ColumnResolver) -> None:
        self._resolve_column = resolve_column

    # PUBLIC_INTERFACE
    def compile(self, matrix: FilterMatrix | None) -> ColumnElement[bool]:
        """Return the predicate for matrix; an empty or missing matrix matches every row."""
        if not matrix:
            return true()
        return or_(*[self.compile_group(group) for group in matrix])

    def compile_group(self, group: Sequence[QueryFilter]) -> ColumnElement[bool]:
        by_column: Dict[str, List[ColumnElement[bool]]] = {}
        for condition in group:
            by_column.setdefault(condition.column, []).append(self.compile_condition(condition))
        if not by_column:
            return true()
        return and_(*[and_(*conditions) for conditions in by_column.values()])

    def compile_condition(self, condition: QueryFilter) -> ColumnElement[bool]:
        column = self._resolve_column(condition.column)
        operator = condition.operator
        if not isinstance(operator, Operator):
            raise ConfigurationError(f"Unsupported filter operator: {operator!r}")
        if operator.is_date_part:
            return extract(operator.value, column) == condition.value
        comparator = _COMPARATORS.get(operator)
        if comparator is None:
            raise ConfigurationError(f"Unsupported filter operator: {operator.value!r}")
        value = condition.value
        if operator not in (Operator.LIKE, Operator.ILIKE):
            value = coerce_value(column, value)
        return comparator(column, value)
