# src/serialist/canon/__init__.py
"""Persistence layer for the narrative canon."""

from .filters import Op, gt, gte, in_, is_null, lt, lte, ne, not_in, row_matches
from .store import CanonStore, PostgresStore

__all__ = [
    "CanonStore",
    "Op",
    "PostgresStore",
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
