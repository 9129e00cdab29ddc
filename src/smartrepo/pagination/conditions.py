"""
Store-agnostic condition trees and the keyset range builder.

Repositories compile these nodes into their native filter language
(MongoDB query documents, Firestore composite filters, or Python
predicates for the in-memory store). Null and missing values are the
logical minimum of every field, in both sort directions.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from smartrepo.pagination.sort import SortSpec
from smartrepo.utils.paths import MISSING, get_path, is_nullish


class Condition:
    """Base class for condition tree nodes."""

    __slots__ = ()


@dataclass(frozen=True)
class Equals(Condition):
    """field == value. A None value matches null or missing fields."""

    field: str
    value: Any


@dataclass(frozen=True)
class IsNullish(Condition):
    """field is null or missing."""

    field: str


@dataclass(frozen=True)
class IsMissing(Condition):
    """field is not present at all."""

    field: str


@dataclass(frozen=True)
class GreaterThan(Condition):
    """field > value, comparing within the value's type class only."""

    field: str
    value: Any


@dataclass(frozen=True)
class LessThan(Condition):
    """field < value, comparing within the value's type class only."""

    field: str
    value: Any


@dataclass(frozen=True)
class HasValue(Condition):
    """field exists, is not null and is not an empty array: anything above null."""

    field: str


@dataclass(frozen=True)
class BelowNull(Condition):
    """field holds one of the store's sentinels that sort below null."""

    field: str


@dataclass(frozen=True)
class AllOf(Condition):
    """Conjunction."""

    conditions: tuple[Condition, ...]


@dataclass(frozen=True)
class AnyOf(Condition):
    """Disjunction."""

    conditions: tuple[Condition, ...]


def all_of(*conditions: Condition | None) -> AllOf:
    """AND the given conditions, flattening nested AllOf nodes and skipping None."""
    flat: list[Condition] = []
    for condition in conditions:
        if condition is None:
            continue
        if isinstance(condition, AllOf):
            flat.extend(condition.conditions)
        else:
            flat.append(condition)
    return AllOf(tuple(flat))


def from_filter(filter: Mapping[str, Any]) -> list[Condition]:
    """Equality conditions for a caller filter."""
    return [Equals(field, value) for field, value in filter.items()]


def build_range_condition(sort: SortSpec, anchor: Mapping[str, Any]) -> AnyOf:
    """
    Build the keyset condition matching rows that sort strictly after anchor.

    For sort [(f0, d0), ..., (fn, dn)] with fn the unique tiebreaker, branch i
    requires equality with the anchor on f0..f(i-1) and a strict,
    direction-aware inequality on fi:

        asc,  anchor value v     ->  fi > v
        desc, anchor value v     ->  fi < v OR fi is null/missing
        asc,  anchor null/absent ->  fi has any non-null value
        desc, anchor null/absent ->  fi is one of the below-null sentinels
        asc,  anchor empty array ->  fi is null/missing or has any value

    A concrete anchor value carries "fi == v" into later branches; a null
    or absent one carries "fi is null/missing". The final branch compares the
    tiebreaker alone, which is assumed present on every row.

    Example:
        sort (name DESC, age ASC, id ASC), anchor {name: "Bob", age: 25, id: "X"}
        ->  (name < "Bob" OR name nullish)
            OR (name == "Bob" AND age > 25)
            OR (name == "Bob" AND age == 25 AND id > "X")

    Args:
        sort: Canonical sort specification (see normalize_sort)
        anchor: Projection of the anchor row; dotted paths are resolved

    Returns:
        An AnyOf with one AllOf branch per sort key.
    """
    branches: list[Condition] = []
    equalities: list[Condition] = []

    *leading, tiebreaker = sort

    for key in leading:
        value = get_path(anchor, key.field)

        if is_nullish(value):
            if key.ascending:
                step: Condition = HasValue(key.field)
            else:
                step = BelowNull(key.field)
            carried: Condition = IsNullish(key.field)
        elif isinstance(value, list) and not value:
            # Empty arrays sort below null
            if key.ascending:
                step = AnyOf((IsNullish(key.field), HasValue(key.field)))
            else:
                step = LessThan(key.field, value)
            carried = Equals(key.field, value)
        else:
            if key.ascending:
                step = GreaterThan(key.field, value)
            else:
                step = AnyOf((LessThan(key.field, value), IsNullish(key.field)))
            carried = Equals(key.field, value)

        branches.append(AllOf((*equalities, step)))
        equalities.append(carried)

    anchor_id = get_path(anchor, tiebreaker.field)
    if anchor_id is MISSING:
        raise ValueError(f"Anchor document has no '{tiebreaker.field}' value")
    last: Condition = (
        GreaterThan(tiebreaker.field, anchor_id)
        if tiebreaker.ascending
        else LessThan(tiebreaker.field, anchor_id)
    )
    branches.append(AllOf((*equalities, last)))

    return AnyOf(tuple(branches))
