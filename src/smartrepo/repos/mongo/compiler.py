"""
MongoDB condition compiler.

Compiles condition trees into MongoDB query documents and sort specs into
pymongo sort lists. Null and missing values are placed using MongoDB's
BSON comparison order: MinKey and empty arrays sort below null.
"""

from __future__ import annotations

from typing import Any

from bson import MinKey
from pymongo import ASCENDING, DESCENDING

from smartrepo.pagination.conditions import (
    AllOf,
    AnyOf,
    BelowNull,
    Condition,
    Equals,
    GreaterThan,
    HasValue,
    IsMissing,
    IsNullish,
    LessThan,
)
from smartrepo.pagination.sort import SortSpec


class MongoCompiler:
    """
    Compiles condition trees into MongoDB filters.

    The public id field is renamed to the stored id field ("_id" when the
    repository uses synced identity).
    """

    def __init__(self, id_field: str, store_id_field: str = "_id") -> None:
        self.id_field = id_field
        self.store_id_field = store_id_field

    def field(self, path: str) -> str:
        return self.store_id_field if path == self.id_field else path

    def compile(self, condition: Condition) -> dict[str, Any]:
        """Compile a condition into a query document ({} matches everything)."""
        if isinstance(condition, AllOf):
            parts = [p for p in (self.compile(c) for c in condition.conditions) if p]
            if not parts:
                return {}
            return parts[0] if len(parts) == 1 else {"$and": parts}

        if isinstance(condition, AnyOf):
            parts = []
            for child in condition.conditions:
                compiled = self.compile(child)
                if not compiled:
                    return {}
                if list(compiled) == ["$or"]:
                    parts.extend(compiled["$or"])
                else:
                    parts.append(compiled)
            if not parts:
                raise ValueError("Cannot compile an empty disjunction")
            return parts[0] if len(parts) == 1 else {"$or": parts}

        field = self.field(condition.field)  # type: ignore[attr-defined]

        if isinstance(condition, Equals):
            return {field: condition.value}
        if isinstance(condition, IsNullish):
            return {"$or": [{field: {"$exists": False}}, {field: None}]}
        if isinstance(condition, IsMissing):
            return {field: {"$exists": False}}
        if isinstance(condition, GreaterThan):
            return {field: {"$gt": condition.value}}
        if isinstance(condition, LessThan):
            return {field: {"$lt": condition.value}}
        if isinstance(condition, HasValue):
            return {field: {"$nin": [[], None, MinKey()], "$exists": True}}
        if isinstance(condition, BelowNull):
            return {field: {"$in": [[], MinKey()]}}

        raise TypeError(f"Unsupported condition: {type(condition).__name__}")

    def compile_sort(self, sort: SortSpec) -> list[tuple[str, int]]:
        """Compile a sort spec into a pymongo sort list."""
        return [
            (self.field(key.field), ASCENDING if key.ascending else DESCENDING)
            for key in sort
        ]
