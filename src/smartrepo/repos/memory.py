"""
In-process repository.

MemoryRepo keeps documents in a plain dict and evaluates condition trees
with Python predicates. Ordering follows MongoDB's cross-type rules: empty
arrays sort below null, null and missing sort together above them, and
range comparisons only match values of the same type class.
"""

import copy
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from functools import cmp_to_key
from typing import Any, TypeVar

from smartrepo.core.config import SOFT_DELETE_KEY, RepoConfig, TraceStrategy, WriteOp
from smartrepo.core.dsl import UpdateOperation
from smartrepo.core.errors import CreateManyPartialFailure
from smartrepo.logging import get_logger
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
)
from smartrepo.pagination.sort import SortSpec
from smartrepo.repos.base import SmartRepo
from smartrepo.utils.paths import MISSING, get_path, is_nullish, set_path, unset_path

logger = get_logger(__name__)

R = TypeVar("R")

NULL_RANK = 1


def type_rank(value: Any) -> int:
    """Position of a value's type class in the cross-type sort order."""
    if isinstance(value, list) and not value:
        return 0
    if is_nullish(value):
        return NULL_RANK
    if isinstance(value, bool):
        return 8
    if isinstance(value, (int, float, Decimal)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, Mapping):
        return 4
    if isinstance(value, (list, tuple)):
        return 5
    if isinstance(value, bytes):
        return 6
    if isinstance(value, datetime):
        return 9
    return 10


def compare_values(a: Any, b: Any) -> int:
    """Three-way comparison using the cross-type sort order."""
    rank_a, rank_b = type_rank(a), type_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    if rank_a <= NULL_RANK:
        return 0
    if rank_a == 5:
        for x, y in zip(a, b):
            result = compare_values(x, y)
            if result:
                return result
        return (len(a) > len(b)) - (len(a) < len(b))
    if rank_a == 4:
        a, b = sorted(a.items()), sorted(b.items())
        return compare_values([list(p) for p in a], [list(p) for p in b])
    try:
        return (a > b) - (a < b)
    except TypeError:
        # naive vs aware datetimes, unorderable extension types
        return (str(a) > str(b)) - (str(a) < str(b))


def compare_rows(a: Mapping[str, Any], b: Mapping[str, Any], sort: SortSpec) -> int:
    for key in sort:
        result = compare_values(get_path(a, key.field), get_path(b, key.field))
        if result:
            return result if key.ascending else -result
    return 0


def matches(doc: Mapping[str, Any], condition: Condition) -> bool:
    """Evaluate a condition tree against a document."""
    if isinstance(condition, AllOf):
        return all(matches(doc, c) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(matches(doc, c) for c in condition.conditions)

    value = get_path(doc, condition.field)  # type: ignore[attr-defined]

    if isinstance(condition, Equals):
        if condition.value is None:
            return is_nullish(value)
        return type_rank(value) == type_rank(condition.value) and (
            compare_values(value, condition.value) == 0
        )
    if isinstance(condition, IsNullish):
        return is_nullish(value)
    if isinstance(condition, IsMissing):
        return value is MISSING
    if isinstance(condition, HasValue):
        return type_rank(value) > NULL_RANK
    if isinstance(condition, BelowNull):
        return type_rank(value) < NULL_RANK
    if isinstance(condition, (GreaterThan, LessThan)):
        if type_rank(value) <= NULL_RANK or type_rank(value) != type_rank(condition.value):
            return False
        result = compare_values(value, condition.value)
        return result > 0 if isinstance(condition, GreaterThan) else result < 0

    raise TypeError(f"Unsupported condition: {type(condition).__name__}")


class MemoryRepo(SmartRepo):
    """
    Repository over an in-process dict of documents.

    Several repositories (for example with different scopes) can share one
    collection by passing the same documents dict. Transactions roll the
    collection back to a snapshot when the callback raises.

    Example:
        users: dict = {}
        acme = MemoryRepo("users", documents=users, scope={"tenantId": "acme"})
        other = MemoryRepo("users", documents=users, scope={"tenantId": "other"})
    """

    def __init__(
        self,
        collection_name: str = "memory",
        *,
        documents: dict[Any, dict[str, Any]] | None = None,
        config: RepoConfig | None = None,
        scope: Mapping[str, Any] | None = None,
        trace_context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            collection_name, config=config, scope=scope, trace_context=trace_context
        )
        self.documents: dict[Any, dict[str, Any]] = documents if documents is not None else {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _visible(self, doc: Mapping[str, Any], include_soft_deleted: bool = False) -> bool:
        return matches(doc, all_of(*self.constraints(include_soft_deleted)))

    def _public(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        return self.settings.strip_hidden(copy.deepcopy(dict(doc)))

    def _read(self, entity_id: Any) -> dict[str, Any] | None:
        doc = self.documents.get(entity_id)
        if doc is None or not self._visible(doc):
            return None
        return doc

    async def point_read(self, entity_id: Any) -> dict[str, Any] | None:
        doc = self._read(entity_id)
        return self._public(doc) if doc is not None else None

    async def read_anchor(self, entity_id: Any) -> dict[str, Any] | None:
        doc = self._read(entity_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def read_many(self, ids: Sequence[Any]) -> dict[Any, dict[str, Any]]:
        rows = {}
        for entity_id in ids:
            row = await self.point_read(entity_id)
            if row is not None:
                rows[entity_id] = row
        return rows

    async def stream_rows(
        self,
        condition: AllOf,
        sort: SortSpec | None,
        limit: int | None,
    ) -> AsyncIterator[dict[str, Any]]:
        selected = [doc for doc in self.documents.values() if matches(doc, condition)]
        if sort:
            selected.sort(key=cmp_to_key(lambda a, b: compare_rows(a, b, sort)))
        if limit is not None:
            selected = selected[:limit]
        for doc in selected:
            yield self._public(doc)

    async def count_rows(self, condition: AllOf) -> int:
        return sum(1 for doc in self.documents.values() if matches(doc, condition))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _clock(self) -> datetime | None:
        if self.settings.server_timestamps:
            return datetime.now(timezone.utc)
        return self.settings.now()

    def _record_trace(
        self,
        doc: dict[str, Any],
        op: WriteOp,
        merge_trace: Mapping[str, Any] | None,
        now: datetime | None,
    ) -> None:
        entry = self.settings.build_trace(op, merge_trace, server_timestamp=now)
        if entry is None:
            return
        key = self.settings.config.trace_key
        strategy = self.settings.config.trace_strategy
        if strategy == TraceStrategy.LATEST:
            doc[key] = entry
            return
        history = doc.get(key)
        history = list(history) if isinstance(history, list) else []
        history.append(entry)
        if strategy == TraceStrategy.BOUNDED:
            history = history[-self.settings.config.trace_limit :]  # type: ignore[operator]
        doc[key] = history

    def _bump_version(self, doc: dict[str, Any]) -> None:
        key = self.settings.version_key
        if key is not None:
            doc[key] = (doc.get(key) or 0) + 1

    async def insert_many(
        self,
        documents: list[tuple[Any, dict[str, Any]]],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        inserted: list[Any] = []
        failed: list[Any] = []
        for entity_id, body in documents:
            if entity_id in self.documents:
                failed.append(entity_id)
                continue
            doc = copy.deepcopy(body)
            doc[self.id_field] = entity_id
            now = self._clock()
            if now is not None:
                doc[self.settings.created_at_key] = now
                doc[self.settings.updated_at_key] = now
            if self.settings.version_key is not None:
                doc[self.settings.version_key] = 1
            self._record_trace(doc, WriteOp.CREATE, merge_trace, now)
            self.documents[entity_id] = doc
            inserted.append(entity_id)

        if failed:
            logger.warning(
                "create_many partially failed",
                inserted=len(inserted),
                failed=len(failed),
            )
            raise CreateManyPartialFailure(inserted, failed)

    async def apply_update(
        self,
        ids: list[Any],
        update: UpdateOperation,
        merge_trace: Mapping[str, Any] | None,
        include_soft_deleted: bool,
    ) -> None:
        for entity_id in ids:
            doc = self.documents.get(entity_id)
            if doc is None or not self._visible(doc, include_soft_deleted):
                continue
            for path, value in update.set.items():
                set_path(doc, path, copy.deepcopy(value))
            for path in update.unset:
                unset_path(doc, path)
            now = self._clock()
            if now is not None:
                doc[self.settings.updated_at_key] = now
            self._bump_version(doc)
            self._record_trace(doc, WriteOp.UPDATE, merge_trace, now)

    async def remove_many(
        self,
        ids: list[Any],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        for entity_id in ids:
            doc = self.documents.get(entity_id)
            if doc is None or not self._visible(doc):
                continue
            if not self.settings.soft_delete:
                del self.documents[entity_id]
                continue
            doc[SOFT_DELETE_KEY] = True
            now = self._clock()
            if now is not None:
                doc[self.settings.updated_at_key] = now
                doc[self.settings.deleted_at_key] = now
            self._bump_version(doc)
            self._record_trace(doc, WriteOp.DELETE, merge_trace, now)

    async def run_transaction(self, fn: Callable[[SmartRepo], Awaitable[R]]) -> R:
        snapshot = copy.deepcopy(self.documents)
        try:
            return await fn(self)
        except BaseException:
            self.documents.clear()
            self.documents.update(snapshot)
            raise
