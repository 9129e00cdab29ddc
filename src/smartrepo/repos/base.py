"""
Store-agnostic repository base.

SmartRepo implements the caller surface (CRUD, streams, counts and cursor
pages) once. Backends supply point reads, query execution, writes and
transactions in their store's native API, and compile the condition tree
produced by the pagination package into their own filter language.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Literal, TypeVar

from smartrepo.core.config import SOFT_DELETE_KEY, RepoConfig, RepoSettings
from smartrepo.core.dsl import (
    Page,
    Projection,
    UpdateOperation,
    as_update_operation,
    validate_filter,
)
from smartrepo.core.errors import ScopeBreachError, StoreUnavailableError, ValidationError
from smartrepo.logging import get_logger, with_log_context
from smartrepo.pagination.conditions import (
    AllOf,
    Condition,
    Equals,
    IsMissing,
    all_of,
    from_filter,
)
from smartrepo.pagination.cursor import CursorCodec
from smartrepo.pagination.pager import Pager
from smartrepo.pagination.sort import OrderBy, SortSpec, normalize_sort
from smartrepo.repos.specs import Specification
from smartrepo.repos.stream import QueryStream
from smartrepo.utils.paths import MISSING, get_path, set_path

logger = get_logger(__name__)

R = TypeVar("R")

OnScopeBreach = Literal["empty", "error"]
OnCountScopeBreach = Literal["zero", "error"]


def apply_projection(
    row: dict[str, Any] | None, projection: Projection | None
) -> dict[str, Any] | None:
    """
    Keep only the projected fields of a row.

    Dotted paths are copied into nested dicts; absent fields stay absent.
    """
    if row is None or not projection:
        return row
    result: dict[str, Any] = {}
    for path, include in projection.items():
        if not include:
            continue
        value = get_path(row, path)
        if value is not MISSING:
            set_path(result, path, value)
    return result


class SmartRepo(ABC):
    """
    Base class for scoped document repositories.

    Subclasses implement the store access primitives; everything callers
    use lives here.

    Example:
        repo = MemoryRepo("users", scope={"tenantId": "acme"})
        user_id = await repo.create({"name": "Alice"})
        page = await repo.find_page({}, limit=20, order_by={"name": "asc"})
    """

    codec_class: type[CursorCodec] = CursorCodec

    # Exceptions that mean the store could not be reached
    unavailable_errors: tuple[type[BaseException], ...] = ()

    def __init__(
        self,
        collection_name: str,
        *,
        config: RepoConfig | None = None,
        scope: Mapping[str, Any] | None = None,
        trace_context: Mapping[str, Any] | None = None,
        settings: RepoSettings | None = None,
    ) -> None:
        self.collection_name = collection_name
        self.settings = settings or RepoSettings.build(config, scope, trace_context)
        self.pager = Pager(self, self.codec_class(self.settings.config.cursor_secret))

    @property
    def id_field(self) -> str:
        return self.settings.id_key

    @property
    def scope(self) -> Mapping[str, Any]:
        return self.settings.scope

    # =========================================================================
    # BACKEND PRIMITIVES
    # =========================================================================

    @abstractmethod
    async def point_read(self, entity_id: Any) -> dict[str, Any] | None:
        """
        Read one visible row by id.

        Scope and soft-delete rules are the same as for get_by_id. Returns
        the public form of the document (id field included, hidden fields
        stripped), or None.
        """
        ...

    @abstractmethod
    async def read_anchor(self, entity_id: Any) -> dict[str, Any] | None:
        """
        Read one visible row by id for cursor resolution.

        Like point_read, but hidden managed fields (default-named
        timestamps, version and trace) are kept so pages can be ordered by
        them.
        """
        ...

    @abstractmethod
    async def read_many(self, ids: Sequence[Any]) -> dict[Any, dict[str, Any]]:
        """Read visible rows by id, keyed by id."""
        ...

    @abstractmethod
    def stream_rows(
        self,
        condition: AllOf,
        sort: SortSpec | None,
        limit: int | None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Execute a condition, yielding public rows in sort order."""
        ...

    @abstractmethod
    async def count_rows(self, condition: AllOf) -> int:
        """Count rows matching a condition."""
        ...

    @abstractmethod
    async def insert_many(
        self,
        documents: list[tuple[Any, dict[str, Any]]],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        """
        Insert prepared (id, body) pairs.

        Bodies already carry the scope; backends add bookkeeping fields.

        Raises:
            CreateManyPartialFailure: if only some documents were written
        """
        ...

    @abstractmethod
    async def apply_update(
        self,
        ids: list[Any],
        update: UpdateOperation,
        merge_trace: Mapping[str, Any] | None,
        include_soft_deleted: bool,
    ) -> None:
        """Apply a validated update to the visible documents among ids."""
        ...

    @abstractmethod
    async def remove_many(
        self,
        ids: list[Any],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        """Soft or hard delete the visible documents among ids."""
        ...

    @abstractmethod
    async def run_transaction(self, fn: Callable[["SmartRepo"], Awaitable[R]]) -> R:
        """Run fn with a repository bound to a store transaction."""
        ...

    def generate_server_id(self) -> Any:
        """Id used when generate_id is "server"."""
        return uuid.uuid4().hex

    def soft_delete_condition(self) -> Condition:
        """Visibility term that excludes soft-deleted documents."""
        return IsMissing(SOFT_DELETE_KEY)

    # =========================================================================
    # PAGE SOURCE
    # =========================================================================

    def constraints(self, include_soft_deleted: bool = False) -> list[Condition]:
        """Scope equalities plus soft-delete visibility."""
        terms: list[Condition] = [Equals(k, v) for k, v in self.settings.scope.items()]
        if self.settings.soft_delete and not include_soft_deleted:
            terms.append(self.soft_delete_condition())
        return terms

    async def run_query(
        self,
        condition: AllOf,
        sort: SortSpec,
        limit: int,
    ) -> list[dict[str, Any]]:
        return [row async for row in self.stream_rows(condition, sort, limit)]

    # =========================================================================
    # READS
    # =========================================================================

    async def get_by_id(
        self, entity_id: Any, projection: Projection | None = None
    ) -> dict[str, Any] | None:
        """Get a visible entity by id, or None."""
        with self._operation("get_by_id"):
            row = await self.point_read(entity_id)
        return apply_projection(row, projection)

    async def get_by_ids(
        self, ids: Sequence[Any], projection: Projection | None = None
    ) -> tuple[list[dict[str, Any]], list[Any]]:
        """
        Get several entities by id.

        Returns:
            (found entities in input order, ids that were not found)
        """
        if not ids:
            return [], []
        with self._operation("get_by_ids"):
            rows = await self.read_many(list(dict.fromkeys(ids)))

        found: list[dict[str, Any]] = []
        not_found: list[Any] = []
        seen: set[Any] = set()
        for entity_id in ids:
            if entity_id in seen:
                continue
            seen.add(entity_id)
            row = rows.get(entity_id)
            if row is None:
                not_found.append(entity_id)
            else:
                found.append(apply_projection(row, projection))  # type: ignore[arg-type]
        return found, not_found

    def find(
        self,
        filter: Mapping[str, Any],
        projection: Projection | None = None,
        order_by: OrderBy | None = None,
        on_scope_breach: OnScopeBreach = "empty",
    ) -> QueryStream[dict[str, Any]]:
        """
        Stream all visible entities matching an equality filter.

        Without order_by the store's natural order is used.
        """
        data = validate_filter(filter)
        if self.settings.scope_breach(data):
            return self._on_breach("find", on_scope_breach, QueryStream.empty())

        condition = all_of(*from_filter(data), *self.constraints())
        sort = normalize_sort(order_by, self.id_field) if order_by else None

        async def _rows() -> AsyncIterator[dict[str, Any]]:
            with self._store_errors("find"):
                async for row in self.stream_rows(condition, sort, None):
                    yield apply_projection(row, projection)  # type: ignore[misc]

        return QueryStream(_rows())

    def find_by_spec(
        self,
        spec: Specification,
        projection: Projection | None = None,
        order_by: OrderBy | None = None,
        on_scope_breach: OnScopeBreach = "empty",
    ) -> QueryStream[dict[str, Any]]:
        """Stream entities matching a specification."""
        return self.find(spec.to_filter(), projection, order_by, on_scope_breach)

    async def find_page(
        self,
        filter: Mapping[str, Any],
        limit: int,
        order_by: OrderBy | None = None,
        cursor: str | None = None,
        projection: Projection | None = None,
        on_scope_breach: OnScopeBreach = "empty",
    ) -> Page:
        """
        Fetch one page of a keyset-paginated query.

        Pass the previous page's next_cursor to continue. next_cursor is
        None once a page comes back short.

        Raises:
            InvalidCursorError: if cursor is malformed or its anchor is no
                longer visible
            ScopeBreachError: if the filter contradicts the scope and
                on_scope_breach is "error"
        """
        data = validate_filter(filter)
        if self.settings.scope_breach(data):
            return self._on_breach("find_page", on_scope_breach, Page())

        with self._operation("find_page"):
            page = await self.pager.fetch_page(data, limit, order_by, cursor)

        if not projection:
            return page
        return Page(
            items=[apply_projection(row, projection) for row in page.items],  # type: ignore[misc]
            next_cursor=page.next_cursor,
        )

    async def find_page_by_spec(
        self,
        spec: Specification,
        limit: int,
        order_by: OrderBy | None = None,
        cursor: str | None = None,
        projection: Projection | None = None,
        on_scope_breach: OnScopeBreach = "empty",
    ) -> Page:
        """Fetch one page of entities matching a specification."""
        return await self.find_page(
            spec.to_filter(), limit, order_by, cursor, projection, on_scope_breach
        )

    async def count(
        self,
        filter: Mapping[str, Any],
        on_scope_breach: OnCountScopeBreach = "zero",
    ) -> int:
        """Count visible entities matching an equality filter."""
        data = validate_filter(filter)
        if self.settings.scope_breach(data):
            return self._on_breach("count", on_scope_breach, 0)

        with self._operation("count"):
            return await self.count_rows(all_of(*from_filter(data), *self.constraints()))

    async def count_by_spec(
        self,
        spec: Specification,
        on_scope_breach: OnCountScopeBreach = "zero",
    ) -> int:
        """Count entities matching a specification."""
        return await self.count(spec.to_filter(), on_scope_breach)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(
        self, entity: Mapping[str, Any], merge_trace: Mapping[str, Any] | None = None
    ) -> Any:
        """Create an entity and return its new id."""
        ids = await self.create_many([entity], merge_trace)
        return ids[0]

    async def create_many(
        self,
        entities: Sequence[Mapping[str, Any]],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """
        Create entities and return their ids in input order.

        Managed fields (id, timestamps, version, trace, soft-delete marker)
        are ignored on input. Scope values are stamped onto every document.

        Raises:
            ValidationError: if an entity carries a conflicting scope value
            CreateManyPartialFailure: if only some entities were written
        """
        if not entities:
            return []
        documents = [self.prepare_create(entity) for entity in entities]
        with self._operation("create_many"):
            await self.insert_many(documents, merge_trace)
            logger.debug("Created entities", count=len(documents))
        return [entity_id for entity_id, _ in documents]

    async def update(
        self,
        entity_id: Any,
        update: UpdateOperation | dict[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
        include_soft_deleted: bool = False,
    ) -> None:
        """Update one entity. Invisible or unknown ids are ignored."""
        await self.update_many([entity_id], update, merge_trace, include_soft_deleted)

    async def update_many(
        self,
        ids: Sequence[Any],
        update: UpdateOperation | dict[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
        include_soft_deleted: bool = False,
    ) -> None:
        """
        Apply the same update to several entities.

        Raises:
            ValidationError: if the update touches managed or scope fields,
                or sets and unsets the same field
        """
        operation = self.prepare_update(update)
        if not ids:
            return
        with self._operation("update_many"):
            await self.apply_update(
                list(dict.fromkeys(ids)), operation, merge_trace, include_soft_deleted
            )

    async def delete(
        self, entity_id: Any, merge_trace: Mapping[str, Any] | None = None
    ) -> None:
        """Delete one entity (soft delete when configured)."""
        await self.delete_many([entity_id], merge_trace)

    async def delete_many(
        self,
        ids: Sequence[Any],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> None:
        """Delete several entities (soft delete when configured)."""
        if not ids:
            return
        with self._operation("delete_many"):
            await self.remove_many(list(dict.fromkeys(ids)), merge_trace)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def prepare_create(self, entity: Mapping[str, Any]) -> tuple[Any, dict[str, Any]]:
        """Validate create input and return (new id, document body)."""
        if not isinstance(entity, Mapping):
            raise ValidationError(
                f"Invalid entity: expected a mapping, got '{type(entity).__name__}'"
            )
        self.settings.validate_scope_properties(entity, "create")
        body = self.settings.strip_managed(entity)
        body.update(self.settings.scope)
        return self.new_id(), body

    def prepare_update(self, update: UpdateOperation | dict[str, Any]) -> UpdateOperation:
        """Validate an update against managed and scope fields."""
        operation = as_update_operation(update)
        self.settings.validate_no_readonly(list(operation.set), "update")
        self.settings.validate_no_readonly(list(operation.unset), "unset")
        return operation

    def new_id(self) -> Any:
        generate = self.settings.config.generate_id
        if callable(generate):
            return generate()
        return self.generate_server_id()

    def _on_breach(self, operation: str, mode: str, fallback: Any) -> Any:
        if mode == "error":
            raise ScopeBreachError(operation)
        logger.debug(
            "Filter contradicts scope",
            collection=self.collection_name,
            operation=operation,
        )
        return fallback

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except self.unavailable_errors as e:
            logger.warning(
                "Store unavailable",
                collection=self.collection_name,
                operation=operation,
                error=str(e),
            )
            raise StoreUnavailableError(operation) from e

    @contextmanager
    def _operation(self, operation: str) -> Iterator[None]:
        with with_log_context(
            collection=self.collection_name,
            operation=operation,
            scope=dict(self.settings.scope) or None,
        ):
            with self._store_errors(operation):
                yield
