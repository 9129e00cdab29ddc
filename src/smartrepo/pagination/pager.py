"""
Keyset pager.

The Pager is the store-agnostic half of cursor pagination. It only needs a
PageSource: something that can read a visible row by id, report its
scope and soft-delete constraints, and run a compiled condition with a sort
and a limit.
"""

from collections.abc import Mapping
from typing import Any, Protocol

from smartrepo.core.dsl import Page
from smartrepo.core.errors import InvalidCursorError
from smartrepo.logging import get_logger
from smartrepo.pagination.conditions import (
    AllOf,
    Condition,
    all_of,
    build_range_condition,
    from_filter,
)
from smartrepo.pagination.cursor import CursorCodec
from smartrepo.pagination.sort import OrderBy, SortSpec, normalize_sort
from smartrepo.utils.paths import MISSING, get_path, set_path

logger = get_logger(__name__)


class PageSource(Protocol):
    """Collaborator interface a backend implements for the pager."""

    @property
    def id_field(self) -> str:
        """Public name of the unique id field."""
        ...

    async def read_anchor(self, entity_id: Any) -> dict[str, Any] | None:
        """
        Read one visible row by id, keeping repository-managed fields.

        Visibility is the same as for point reads, but hidden timestamps,
        versions and trace fields stay in the row so they can be sorted on.
        """
        ...

    def constraints(self) -> list[Condition]:
        """Scope and soft-delete visibility conditions ANDed into every query."""
        ...

    async def run_query(
        self,
        condition: AllOf,
        sort: SortSpec,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Execute a condition with sort and limit; rows include the id field."""
        ...


class Pager:
    """
    Fetches one page at a time using keyset pagination.

    Pages stay non-overlapping and gap-free while rows are inserted or
    deleted between calls, as long as already-returned rows do not change
    their sort-key values.
    """

    def __init__(self, source: PageSource, codec: CursorCodec | None = None) -> None:
        self.source = source
        self.codec = codec or CursorCodec()

    async def resolve_anchor(self, cursor: str, sort: SortSpec) -> dict[str, Any]:
        """
        Decode a cursor and re-read its anchor row from the store.

        Returns the projection of the anchor onto the sort fields.

        Raises:
            InvalidCursorError: if the token is malformed or the anchor is
                deleted, out of scope or never existed
        """
        anchor_id = self.codec.decode(cursor)
        row = await self.source.read_anchor(anchor_id)
        if row is None:
            logger.debug("Cursor anchor not visible", anchor_id=str(anchor_id))
            raise InvalidCursorError()

        anchor: dict[str, Any] = {}
        for key in sort:
            value = get_path(row, key.field)
            if value is not MISSING:
                set_path(anchor, key.field, value)
        return anchor

    async def fetch_page(
        self,
        filter: Mapping[str, Any],
        limit: int,
        order_by: OrderBy | None = None,
        cursor: str | None = None,
    ) -> Page:
        """
        Fetch the page after cursor (or the first page).

        Args:
            filter: Equality filter on public field names
            limit: Maximum number of rows; <= 0 returns an empty page
            order_by: Ordered field -> direction mapping
            cursor: next_cursor from the previous page

        Returns:
            Page whose next_cursor is set only when the page is full
        """
        if limit <= 0:
            return Page(items=[], next_cursor=None)

        id_field = self.source.id_field
        sort = normalize_sort(order_by, id_field)

        range_condition = None
        if cursor is not None:
            anchor = await self.resolve_anchor(cursor, sort)
            range_condition = build_range_condition(sort, anchor)

        condition = all_of(
            *from_filter(filter),
            *self.source.constraints(),
            range_condition,
        )

        rows = await self.source.run_query(condition, sort, limit)

        next_cursor = None
        if len(rows) >= limit:
            rows = rows[:limit]
            next_cursor = self.codec.encode(rows[-1][id_field])

        logger.debug(
            "Fetched page",
            rows=len(rows),
            limit=limit,
            resumed=cursor is not None,
            has_more=next_cursor is not None,
        )
        return Page(items=rows, next_cursor=next_cursor)
