"""
Firestore condition compiler.

Compiles condition trees into composite filters (FieldFilter, And, Or).
Firestore has no value that sorts below null, so BelowNull terms can never
match: they are dropped from disjunctions, and a condition that reduces to
nothing matchable compiles to NEVER so the query is skipped entirely.
"""

from __future__ import annotations

from typing import Any

from google.cloud.firestore_v1.async_collection import AsyncCollectionReference
from google.cloud.firestore_v1.base_query import And, BaseFilter, BaseQuery, FieldFilter, Or
from google.cloud.firestore_v1.field_path import FieldPath

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


class _Never:
    def __repr__(self) -> str:
        return "NEVER"


NEVER: Any = _Never()

# A compiled condition: a filter, None (matches everything) or NEVER
Compiled = BaseFilter | None | _Never


class FirestoreCompiler:
    """
    Compiles condition trees into Firestore filters.

    The public id field maps to the document id; its values are turned into
    document references.
    """

    def __init__(self, collection: AsyncCollectionReference, id_field: str) -> None:
        self.collection = collection
        self.id_field = id_field

    def field(self, path: str) -> str:
        return FieldPath.document_id() if path == self.id_field else path

    def value(self, path: str, value: Any) -> Any:
        if path == self.id_field and value is not None:
            return self.collection.document(str(value))
        return value

    def _field_filter(self, path: str, op: str, value: Any) -> FieldFilter:
        return FieldFilter(self.field(path), op, self.value(path, value))

    def compile(self, condition: Condition) -> Compiled:
        if isinstance(condition, AllOf):
            filters = []
            for child in condition.conditions:
                compiled = self.compile(child)
                if compiled is NEVER:
                    return NEVER
                if compiled is not None:
                    filters.append(compiled)
            if not filters:
                return None
            return filters[0] if len(filters) == 1 else And(filters=filters)

        if isinstance(condition, AnyOf):
            filters = []
            for child in condition.conditions:
                compiled = self.compile(child)
                if compiled is None:
                    return None
                if compiled is not NEVER:
                    filters.append(compiled)
            if not filters:
                return NEVER
            return filters[0] if len(filters) == 1 else Or(filters=filters)

        path = condition.field  # type: ignore[attr-defined]

        if isinstance(condition, Equals):
            return self._field_filter(path, "==", condition.value)
        if isinstance(condition, IsNullish):
            return FieldFilter(self.field(path), "==", None)
        if isinstance(condition, GreaterThan):
            return self._field_filter(path, ">", condition.value)
        if isinstance(condition, LessThan):
            return self._field_filter(path, "<", condition.value)
        if isinstance(condition, HasValue):
            return FieldFilter(self.field(path), "!=", None)
        if isinstance(condition, BelowNull):
            return NEVER
        if isinstance(condition, IsMissing):
            raise ValueError(f"Firestore cannot filter on a missing field: {path}")

        raise TypeError(f"Unsupported condition: {type(condition).__name__}")

    def compile_sort(self, sort: SortSpec) -> list[tuple[str, str]]:
        """Compile a sort spec into (field path, direction) pairs for order_by."""
        return [
            (
                self.field(key.field),
                BaseQuery.ASCENDING if key.ascending else BaseQuery.DESCENDING,
            )
            for key in sort
        ]
