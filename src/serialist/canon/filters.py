# src/serialist/canon/filters.py
"""Comparison operators for store filters.

A ``where`` mapping pairs column names with either a plain value (equality,
``None`` meaning IS NULL) or one of the operators built here.  The same
operator evaluates against SQLAlchemy columns and against plain rows.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement

_PY_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "in": lambda actual, values: actual in values,
    "not_in": lambda actual, values: actual not in values,
}


@dataclass(frozen=True)
class Op:
    name: str
    value: Any = None

    def matches(self, actual: Any) -> bool:
        if self.name == "is_null":
            return (actual is None) is bool(self.value)
        if actual is None:
            return False
        return _PY_OPS[self.name](actual, self.value)

    def clause(self, column: Any) -> ColumnElement[bool]:
        if self.name == "is_null":
            return column.is_(None) if self.value else column.is_not(None)
        if self.name == "in":
            return column.in_(list(self.value))
        if self.name == "not_in":
            return column.not_in(list(self.value))
        return _PY_OPS[self.name](column, self.value)


def lt(value: Any) -> Op:
    return Op("lt", value)


def lte(value: Any) -> Op:
    return Op("lte", value)


def gt(value: Any) -> Op:
    return Op("gt", value)


def gte(value: Any) -> Op:
    return Op("gte", value)


def ne(value: Any) -> Op:
    return Op("ne", value)


def in_(values: Iterable[Any]) -> Op:
    return Op("in", tuple(values))


def not_in(values: Iterable[Any]) -> Op:
    return Op("not_in", tuple(values))


def is_null(flag: bool = True) -> Op:
    return Op("is_null", flag)


def as_op(value: Any) -> Op:
    if isinstance(value, Op):
        return value
    if value is None:
        return is_null()
    return Op("eq", value)


def row_matches(row: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    """Evaluate a ``where`` mapping against a plain row."""
    if not where:
        return True
    return all(as_op(cond).matches(row.get(col)) for col, cond in where.items())


__all__ = [
    "Op",
    "as_op",
    "gt",
    "gte",
    "in_",
    "is_null",
    "lt",
    "lte",
    "ne",
    "not_in",
    "row_matches",
]
