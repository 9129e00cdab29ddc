"""
smartrepo Pagination Module.

Store-agnostic keyset pagination: sort normalization, range conditions,
cursor tokens and the pager.
"""

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
    all_of,
    build_range_condition,
    from_filter,
)
from smartrepo.pagination.cursor import CursorCodec
from smartrepo.pagination.pager import PageSource, Pager
from smartrepo.pagination.sort import OrderBy, SortKey, SortSpec, normalize_sort

__all__ = [
    # Sort
    "SortKey",
    "SortSpec",
    "OrderBy",
    "normalize_sort",
    # Conditions
    "Condition",
    "Equals",
    "IsNullish",
    "IsMissing",
    "GreaterThan",
    "LessThan",
    "HasValue",
    "BelowNull",
    "AllOf",
    "AnyOf",
    "all_of",
    "from_filter",
    "build_range_condition",
    # Cursor
    "CursorCodec",
    # Pager
    "PageSource",
    "Pager",
]
