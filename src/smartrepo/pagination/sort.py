"""
Sort specification normalization.

Keyset pagination needs a strict total order. normalize_sort turns a
caller's ordered field -> direction mapping into a canonical SortSpec that
always ends with the unique id field.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from smartrepo.core.dsl import SortDirection


@dataclass(frozen=True)
class SortKey:
    """A single (field, direction) pair of a sort specification."""

    field: str
    direction: SortDirection = SortDirection.ASC

    @property
    def ascending(self) -> bool:
        return self.direction is SortDirection.ASC


SortSpec = tuple[SortKey, ...]

OrderBy = Mapping[str, Any] | Iterable[tuple[str, Any]]


def _pairs(order_by: OrderBy | None) -> list[tuple[str, Any]]:
    if order_by is None:
        return []
    if isinstance(order_by, Mapping):
        return list(order_by.items())
    return list(order_by)


def normalize_sort(order_by: OrderBy | None, id_field: str) -> SortSpec:
    """
    Canonicalize a sort specification.

    Pairs are kept in the given order. If id_field appears, everything after
    it is dropped, since the unique id already decides every tie. Otherwise
    (id_field, ASC) is appended as the tiebreaker. The result is never empty.

    Field names are not validated here; unknown fields are a store concern.

    Example:
        normalize_sort({"name": "asc", "id": "desc", "email": "asc"}, "id")
        # (SortKey("name", ASC), SortKey("id", DESC))
    """
    spec: list[SortKey] = []
    seen: set[str] = set()

    for field, direction in _pairs(order_by):
        if field in seen:
            continue
        seen.add(field)
        spec.append(SortKey(field, SortDirection.parse(direction)))
        if field == id_field:
            return tuple(spec)

    spec.append(SortKey(id_field, SortDirection.ASC))
    return tuple(spec)
