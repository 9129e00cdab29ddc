"""
Request and result schemas for smartrepo.

These Pydantic models and helpers define the inputs repositories accept
(equality filters, sort directions, update operations) and the page shape
they return.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from smartrepo.core.errors import ValidationError

Filter = dict[str, Any]
Projection = dict[str, bool]

SCALAR_TYPES = (str, int, float, bool, datetime)


class SortDirection(str, Enum):
    """Sort order direction."""

    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Any) -> "SortDirection":
        """
        Parse a direction alias.

        Accepts SortDirection members, 1 / -1, and the strings
        "asc", "desc", "ascending", "descending" in any case.
        """
        if isinstance(value, SortDirection):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if value == 1:
                return cls.ASC
            if value == -1:
                return cls.DESC
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("asc", "ascending"):
                return cls.ASC
            if lowered in ("desc", "descending"):
                return cls.DESC
        raise ValidationError(f"Invalid sort direction: {value!r}")

    @property
    def sign(self) -> int:
        return 1 if self is SortDirection.ASC else -1


class UpdateOperation(BaseModel):
    """
    A partial update: fields to set and fields to remove.

    Example:
        {"set": {"name": "Alice"}, "unset": ["nickname"]}
    """

    set: dict[str, Any] = Field(default_factory=dict, description="Fields to assign")
    unset: list[str] = Field(default_factory=list, description="Fields to remove")

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def coerce_single_unset(cls, data: Any) -> Any:
        """Allow a single field name for unset."""
        if isinstance(data, dict) and isinstance(data.get("unset"), str):
            return {**data, "unset": [data["unset"]]}
        return data

    @model_validator(mode="after")
    def check_overlap(self) -> "UpdateOperation":
        """Reject fields that are both set and unset."""
        if not self.set and not self.unset:
            raise ValueError("Update must set or unset at least one field")
        overlapping = sorted(set(self.set) & set(self.unset))
        if overlapping:
            raise ValueError(
                f"Cannot set and unset the same fields: {', '.join(overlapping)}"
            )
        return self


class Page(BaseModel):
    """
    One page of a cursor-paginated query.

    next_cursor is None when the page held fewer rows than requested,
    which marks the end of the result set.
    """

    items: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = Field(default=None)

    model_config = {"frozen": True}

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


def validate_filter(filter: Any, context: str = "filter") -> Filter:
    """
    Validate an equality filter.

    Filters map field paths to scalar values (str, int, float, bool,
    datetime or None). Nested mappings and sequences are rejected.

    Returns the filter as a plain dict.
    """
    if filter is None:
        raise ValidationError(
            f"Invalid {context}: filter must be a mapping (use {{}} for no filter), got None"
        )
    if not isinstance(filter, dict):
        raise ValidationError(
            f"Invalid {context}: filter must be a mapping (use {{}} for no filter), "
            f"got value of type '{type(filter).__name__}'"
        )

    for path, value in filter.items():
        if value is not None and not isinstance(value, SCALAR_TYPES):
            raise ValidationError(
                f"Invalid {context}: filter value for '{path}' must be a scalar "
                "(str, int, float, bool, datetime or None)",
                field=path,
            )
    return dict(filter)


def as_update_operation(update: UpdateOperation | dict[str, Any]) -> UpdateOperation:
    """Build an UpdateOperation from a plain dict, mapping pydantic errors to ours."""
    if isinstance(update, UpdateOperation):
        return update
    try:
        return UpdateOperation.model_validate(update)
    except ValueError as e:
        raise ValidationError(f"Invalid update: {e}") from e
