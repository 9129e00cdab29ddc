"""
MongoDB repository.

Runs on pymongo's native asyncio API. Creates are idempotent upserts
($setOnInsert) sent through bulk_write, so retried batches never duplicate
documents; updates and deletes are update_many / delete_many over chunked
id lists. Transactions use client sessions.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from bson import ObjectId
from pymongo import AsyncMongoClient, UpdateOne
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import BulkWriteError, ConnectionFailure, ExecutionTimeout, WTimeoutError

from smartrepo.core.config import (
    SOFT_DELETE_KEY,
    RepoConfig,
    RepoSettings,
    TraceStrategy,
    WriteOp,
)
from smartrepo.core.dsl import UpdateOperation, as_update_operation
from smartrepo.core.errors import ConfigurationError, CreateManyPartialFailure
from smartrepo.logging import get_logger
from smartrepo.pagination.conditions import AllOf, Equals, all_of
from smartrepo.pagination.sort import SortSpec
from smartrepo.repos.base import SmartRepo
from smartrepo.repos.mongo.compiler import MongoCompiler
from smartrepo.repos.mongo.cursor import MongoCursorCodec
from smartrepo.utils.paths import chunked

logger = get_logger(__name__)

R = TypeVar("R")

# Documents per bulk_write call
MAX_BULK_OPERATIONS = 1000
# Ids per $in clause
MAX_IN_CLAUSE = 100


class MongoRepo(SmartRepo):
    """
    Repository over a MongoDB collection.

    Identity modes:
    - synced: the public id is stored as _id
    - detached: the public id is a regular field (keep a unique index on
      it) and _id is an unrelated internal id

    Example:
        client = AsyncMongoClient("mongodb://localhost:27017")
        repo = MongoRepo(
            client.app.users,
            client=client,
            config=RepoConfig(soft_delete=True, version=True),
            scope={"tenantId": "acme"},
        )
    """

    codec_class = MongoCursorCodec
    unavailable_errors = (ConnectionFailure, ExecutionTimeout, WTimeoutError)

    def __init__(
        self,
        collection: AsyncCollection,
        *,
        client: AsyncMongoClient | None = None,
        config: RepoConfig | None = None,
        scope: Mapping[str, Any] | None = None,
        trace_context: Mapping[str, Any] | None = None,
        session: AsyncClientSession | None = None,
        settings: RepoSettings | None = None,
    ) -> None:
        super().__init__(
            collection.name,
            config=config,
            scope=scope,
            trace_context=trace_context,
            settings=settings,
        )
        self.collection = collection
        self.client = client
        self.session = session
        self.detached = self.settings.config.identity == "detached"
        self.store_id_field = self.id_field if self.detached else "_id"
        self.compiler = MongoCompiler(self.id_field, self.store_id_field)

    def with_session(self, session: AsyncClientSession) -> MongoRepo:
        """A repository bound to a client session (and its transaction)."""
        return MongoRepo(
            self.collection,
            client=self.client,
            session=session,
            settings=self.settings,
        )

    async def run_transaction(self, fn: Callable[[SmartRepo], Awaitable[R]]) -> R:
        """
        Run fn inside a multi-document transaction.

        The transaction is retried by the driver on transient errors, so fn
        may be called more than once.
        """
        if self.client is None:
            raise ConfigurationError("run_transaction requires the repository's client")
        async with self.client.start_session() as session:
            return await session.with_transaction(
                lambda s: fn(self.with_session(s))
            )

    def generate_server_id(self) -> Any:
        return str(ObjectId())

    # =========================================================================
    # DOCUMENT MAPPING
    # =========================================================================

    def from_doc(self, doc: Mapping[str, Any], keep_hidden: bool = False) -> dict[str, Any]:
        """Map a stored document to its public form."""
        data = dict(doc)
        internal_id = data.pop("_id", None)
        if not self.detached:
            data = {self.id_field: internal_id, **data}
        return data if keep_hidden else self.settings.strip_hidden(data)

    def apply_constraints(
        self, filter: Mapping[str, Any] | None = None, include_soft_deleted: bool = False
    ) -> dict[str, Any]:
        """
        Add scope and soft-delete visibility to a raw MongoDB filter.

        For direct collection access that should respect the repository's
        persistence settings.
        """
        constraints = self.compiler.compile(
            all_of(*self.constraints(include_soft_deleted))
        )
        parts = [p for p in (dict(filter or {}), constraints) if p]
        if not parts:
            return {}
        return parts[0] if len(parts) == 1 else {"$and": parts}

    def _ids_filter(self, ids: Sequence[Any], include_soft_deleted: bool = False) -> dict[str, Any]:
        return self.apply_constraints(
            {self.store_id_field: {"$in": list(ids)}}, include_soft_deleted
        )

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================

    def _with_bookkeeping(
        self,
        op: WriteOp,
        update: dict[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        settings = self.settings
        now = settings.now()

        if now is not None or settings.server_timestamps:
            if op is WriteOp.CREATE:
                keys = [settings.created_at_key, settings.updated_at_key]
            elif op is WriteOp.UPDATE:
                keys = [settings.updated_at_key]
            else:
                keys = [settings.updated_at_key, settings.deleted_at_key]
            target = "$setOnInsert" if op is WriteOp.CREATE else "$set"
            for key in keys:
                if now is not None:
                    update.setdefault(target, {})[key] = now
                else:
                    update.setdefault("$currentDate", {})[key] = True

        if settings.version_key is not None:
            if op is WriteOp.CREATE:
                update.setdefault("$setOnInsert", {})[settings.version_key] = 1
            else:
                update.setdefault("$inc", {})[settings.version_key] = 1

        # $currentDate cannot target a field inside a value set in the same
        # update, so trace entries always carry a client timestamp
        entry = settings.build_trace(op, merge_trace, server_timestamp=now)
        if entry is not None:
            if "_at" not in entry:
                entry["_at"] = datetime.now(timezone.utc)
            key = settings.config.trace_key
            strategy = settings.config.trace_strategy
            if strategy == TraceStrategy.LATEST:
                update.setdefault("$set", {})[key] = entry
            elif strategy == TraceStrategy.BOUNDED:
                update.setdefault("$push", {})[key] = {
                    "$each": [entry],
                    "$slice": -settings.config.trace_limit,  # type: ignore[operator]
                }
            else:
                update.setdefault("$push", {})[key] = entry

        return update

    def build_update(
        self,
        update: UpdateOperation | dict[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Build a MongoDB update document from a set/unset operation.

        Validates readonly and scope fields and adds timestamps, version and
        trace as configured.
        """
        operation = self.prepare_update(as_update_operation(update))
        mongo_update: dict[str, Any] = {}
        if operation.set:
            mongo_update["$set"] = dict(operation.set)
        if operation.unset:
            mongo_update["$unset"] = {key: "" for key in operation.unset}
        return self._with_bookkeeping(WriteOp.UPDATE, mongo_update, merge_trace)

    def _to_insert(
        self, entity_id: Any, body: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return (filter, document) for an upserting create."""
        if self.detached:
            doc = {**body, self.id_field: entity_id, "_id": str(ObjectId())}
        else:
            doc = {**body, "_id": entity_id}
        filter = self.apply_constraints({self.store_id_field: entity_id})
        return filter, doc

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    async def _find_one(self, entity_id: Any) -> Mapping[str, Any] | None:
        condition = all_of(Equals(self.id_field, entity_id), *self.constraints())
        return await self.collection.find_one(
            self.compiler.compile(condition), session=self.session
        )

    async def point_read(self, entity_id: Any) -> dict[str, Any] | None:
        doc = await self._find_one(entity_id)
        return self.from_doc(doc) if doc is not None else None

    async def read_anchor(self, entity_id: Any) -> dict[str, Any] | None:
        doc = await self._find_one(entity_id)
        return self.from_doc(doc, keep_hidden=True) if doc is not None else None

    async def read_many(self, ids: Sequence[Any]) -> dict[Any, dict[str, Any]]:
        rows: dict[Any, dict[str, Any]] = {}
        for chunk in chunked(list(ids), MAX_IN_CLAUSE):
            cursor = self.collection.find(self._ids_filter(chunk), session=self.session)
            async for doc in cursor:
                row = self.from_doc(doc)
                rows[row[self.id_field]] = row
        return rows

    async def stream_rows(
        self,
        condition: AllOf,
        sort: SortSpec | None,
        limit: int | None,
    ) -> AsyncIterator[dict[str, Any]]:
        cursor = self.collection.find(
            self.compiler.compile(condition),
            sort=self.compiler.compile_sort(sort) if sort else None,
            limit=limit or 0,
            session=self.session,
        )
        async for doc in cursor:
            yield self.from_doc(doc)

    async def count_rows(self, condition: AllOf) -> int:
        return await self.collection.count_documents(
            self.compiler.compile(condition), session=self.session
        )

    async def insert_many(
        self,
        documents: list[tuple[Any, dict[str, Any]]],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        ids = [entity_id for entity_id, _ in documents]
        inserted: list[Any] = []

        for offset in range(0, len(documents), MAX_BULK_OPERATIONS):
            batch = documents[offset : offset + MAX_BULK_OPERATIONS]
            operations = []
            for entity_id, body in batch:
                filter, doc = self._to_insert(entity_id, body)
                update = self._with_bookkeeping(
                    WriteOp.CREATE, {"$setOnInsert": doc}, merge_trace
                )
                operations.append(UpdateOne(filter, update, upsert=True))

            error: BulkWriteError | None = None
            try:
                result = await self.collection.bulk_write(operations, session=self.session)
                upserted = set(result.upserted_ids or {})
            except BulkWriteError as e:
                error = e
                upserted = {item["index"] for item in e.details.get("upserted", [])}

            if len(upserted) != len(batch):
                failed = [ids[offset + i] for i in range(len(batch)) if i not in upserted]
                inserted += [ids[offset + i] for i in range(len(batch)) if i in upserted]
                skipped = ids[offset + len(batch) :]
                logger.warning(
                    "create_many partially failed",
                    collection=self.collection_name,
                    inserted=len(inserted),
                    failed=len(failed) + len(skipped),
                )
                raise CreateManyPartialFailure(inserted, failed + skipped) from error

            inserted += ids[offset : offset + len(batch)]
            logger.debug("Inserted batch", collection=self.collection_name, count=len(batch))

    async def apply_update(
        self,
        ids: list[Any],
        update: UpdateOperation,
        merge_trace: Mapping[str, Any] | None,
        include_soft_deleted: bool,
    ) -> None:
        for chunk in chunked(ids, MAX_IN_CLAUSE):
            await self.collection.update_many(
                self._ids_filter(chunk, include_soft_deleted),
                self.build_update(update, merge_trace),
                session=self.session,
            )

    async def remove_many(
        self,
        ids: list[Any],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        for chunk in chunked(ids, MAX_IN_CLAUSE):
            filter = self._ids_filter(chunk)
            if self.settings.soft_delete:
                update = self._with_bookkeeping(
                    WriteOp.DELETE, {"$set": {SOFT_DELETE_KEY: True}}, merge_trace
                )
                await self.collection.update_many(filter, update, session=self.session)
            else:
                await self.collection.delete_many(filter, session=self.session)
