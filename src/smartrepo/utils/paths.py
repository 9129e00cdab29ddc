"""
Dotted field path helpers for nested documents.
"""

from collections.abc import Mapping
from typing import Any


class _Missing:
    """Marker for a field that is absent, as opposed to present with None."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def get_path(doc: Mapping[str, Any], path: str) -> Any:
    """
    Resolve a dotted path like "metadata.notes" in a nested document.

    Returns MISSING when any segment is absent or a non-mapping is hit
    before the last segment.
    """
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return current


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    """Assign a value at a dotted path, creating intermediate dicts."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def unset_path(doc: dict[str, Any], path: str) -> None:
    """Remove the value at a dotted path if present."""
    parts = path.split(".")
    current: Any = doc
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, dict) else None
        if current is None:
            return
    if isinstance(current, dict):
        current.pop(parts[-1], None)


def is_nullish(value: Any) -> bool:
    """True for None and MISSING."""
    return value is None or value is MISSING


def chunked(items: list[Any], size: int) -> list[list[Any]]:
    """Split a list into consecutive chunks of at most size items."""
    return [items[i : i + size] for i in range(0, len(items), size)]
