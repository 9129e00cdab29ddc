"""
Reusable query specifications.

A specification names a filter so it can be shared between queries,
combined with others and described in logs.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from smartrepo.core.dsl import Filter


@runtime_checkable
class Specification(Protocol):
    """Anything that can produce an equality filter and describe itself."""

    describe: str

    def to_filter(self) -> Filter:
        ...


@dataclass(frozen=True)
class FilterSpec:
    """
    A specification backed by a fixed filter.

    Example:
        active = FilterSpec({"active": True}, "active users")
    """

    filter: dict[str, Any] = field(default_factory=dict)
    describe: str = ""

    def to_filter(self) -> Filter:
        return dict(self.filter)


def combine_specs(*specs: Specification) -> FilterSpec:
    """
    AND several specifications together.

    Filters are merged left to right, so a later specification wins when
    two of them constrain the same field.
    """
    merged: Filter = {}
    for spec in specs:
        merged.update(spec.to_filter())
    return FilterSpec(merged, " AND ".join(spec.describe for spec in specs))
