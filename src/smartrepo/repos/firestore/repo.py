"""
Cloud Firestore repository.

Runs on the async Firestore client. Writes are grouped into atomic write
batches (or buffered on the active transaction); there is no atomicity
across batches, which is why create_many reports partial failures.

Soft-deleted documents carry _deleted == True and live ones _deleted ==
False, since Firestore cannot query for absent fields; documents written
before soft delete was enabled must be backfilled with _deleted == False to
stay visible. Queries that order by a field only return documents where that
field is present.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from google.api_core.exceptions import DeadlineExceeded, GoogleAPICallError, ServiceUnavailable
from google.cloud.firestore import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayUnion,
    AsyncClient,
    AsyncTransaction,
    Increment,
    async_transactional,
)
from google.cloud.firestore_v1.async_collection import AsyncCollectionReference
from google.cloud.firestore_v1.base_document import DocumentSnapshot
from google.cloud.firestore_v1.base_query import And, FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from smartrepo.core.config import (
    SOFT_DELETE_KEY,
    RepoConfig,
    RepoSettings,
    TraceStrategy,
    WriteOp,
)
from smartrepo.core.dsl import UpdateOperation
from smartrepo.core.errors import ConfigurationError, CreateManyPartialFailure
from smartrepo.logging import get_logger
from smartrepo.pagination.conditions import AllOf, Condition, Equals, all_of
from smartrepo.pagination.sort import SortSpec
from smartrepo.repos.base import SmartRepo
from smartrepo.repos.firestore.compiler import NEVER, FirestoreCompiler
from smartrepo.utils.paths import chunked

logger = get_logger(__name__)

R = TypeVar("R")

# Writes per batch commit (Firestore allows 500)
MAX_WRITES_PER_BATCH = 300
# Values per "in" filter
IN_LIMIT = 10


class FirestoreRepo(SmartRepo):
    """
    Repository over a Firestore collection.

    Example:
        client = AsyncClient(project="demo")
        repo = FirestoreRepo(
            client.collection("users"),
            client=client,
            config=RepoConfig(soft_delete=True, trace_timestamps="server"),
        )
    """

    unavailable_errors = (ServiceUnavailable, DeadlineExceeded)

    def __init__(
        self,
        collection: AsyncCollectionReference,
        *,
        client: AsyncClient,
        config: RepoConfig | None = None,
        scope: Mapping[str, Any] | None = None,
        trace_context: Mapping[str, Any] | None = None,
        transaction: AsyncTransaction | None = None,
        settings: RepoSettings | None = None,
    ) -> None:
        super().__init__(
            collection.id,
            config=config,
            scope=scope,
            trace_context=trace_context,
            settings=settings,
        )
        if self.settings.config.trace_strategy == TraceStrategy.BOUNDED:
            raise ConfigurationError(
                'Firestore does not support the "bounded" trace strategy (no server-side '
                'array slicing). Use "latest" or "unbounded".'
            )
        self.collection = collection
        self.client = client
        self.transaction = transaction
        self.compiler = FirestoreCompiler(collection, self.id_field)

    def with_transaction(self, transaction: AsyncTransaction) -> FirestoreRepo:
        """A repository whose reads and writes go through a transaction."""
        return FirestoreRepo(
            self.collection,
            client=self.client,
            transaction=transaction,
            settings=self.settings,
        )

    async def run_transaction(self, fn: Callable[[SmartRepo], Awaitable[R]]) -> R:
        """
        Run fn inside a Firestore transaction.

        Firestore retries contended transactions, so fn may run more than
        once. All reads must happen before the first write.
        """

        @async_transactional
        async def _run(transaction: AsyncTransaction) -> R:
            return await fn(self.with_transaction(transaction))

        return await _run(self.client.transaction())

    def generate_server_id(self) -> Any:
        return self.collection.document().id

    def soft_delete_condition(self) -> Condition:
        return Equals(SOFT_DELETE_KEY, False)

    # =========================================================================
    # DOCUMENT MAPPING
    # =========================================================================

    def from_snapshot(
        self, snapshot: DocumentSnapshot, keep_hidden: bool = False
    ) -> dict[str, Any]:
        """Map a document snapshot to its public form."""
        data = snapshot.to_dict() or {}
        if not keep_hidden:
            data = self.settings.strip_hidden(data)
        row: dict[str, Any] = {self.id_field: snapshot.id}
        for key, value in data.items():
            if key != self.id_field:
                row[key] = value
        return row

    def _visible(self, data: Mapping[str, Any]) -> bool:
        # Same rule as soft_delete_condition: only an explicit False is live
        if self.settings.soft_delete and data.get(SOFT_DELETE_KEY) is not False:
            return False
        return all(data.get(k) == v for k, v in self.settings.scope.items())

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================

    def _with_bookkeeping(
        self,
        op: WriteOp,
        data: dict[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        settings = self.settings
        stamp = SERVER_TIMESTAMP if settings.server_timestamps else settings.now()

        if stamp is not None:
            if op is WriteOp.CREATE:
                keys = [settings.created_at_key, settings.updated_at_key]
            elif op is WriteOp.UPDATE:
                keys = [settings.updated_at_key]
            else:
                keys = [settings.updated_at_key, settings.deleted_at_key]
            for key in keys:
                data[key] = stamp

        if settings.version_key is not None:
            data[settings.version_key] = 1 if op is WriteOp.CREATE else Increment(1)

        strategy = settings.config.trace_strategy
        if strategy == TraceStrategy.UNBOUNDED:
            # Sentinels are not allowed inside arrays
            entry = settings.build_trace(
                op, merge_trace, server_timestamp=datetime.now(timezone.utc)
            )
            if entry is not None:
                data[settings.config.trace_key] = ArrayUnion([entry])
        else:
            entry = settings.build_trace(op, merge_trace, server_timestamp=SERVER_TIMESTAMP)
            if entry is not None:
                data[settings.config.trace_key] = entry

        return data

    def build_update(
        self,
        update: UpdateOperation | dict[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Build Firestore update data from a set/unset operation.

        Unset fields become DELETE_FIELD; timestamps, version and trace are
        added as configured.
        """
        operation = self.prepare_update(update)
        data: dict[str, Any] = dict(operation.set)
        for path in operation.unset:
            data[path] = DELETE_FIELD
        return self._with_bookkeeping(WriteOp.UPDATE, data, merge_trace)

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    async def _get_visible(self, entity_id: Any) -> DocumentSnapshot | None:
        snapshot = await self.collection.document(str(entity_id)).get(
            transaction=self.transaction
        )
        if not snapshot.exists or not self._visible(snapshot.to_dict() or {}):
            return None
        return snapshot

    async def point_read(self, entity_id: Any) -> dict[str, Any] | None:
        snapshot = await self._get_visible(entity_id)
        return self.from_snapshot(snapshot) if snapshot is not None else None

    async def read_anchor(self, entity_id: Any) -> dict[str, Any] | None:
        snapshot = await self._get_visible(entity_id)
        if snapshot is None:
            return None
        return self.from_snapshot(snapshot, keep_hidden=True)

    async def read_many(self, ids: Sequence[Any]) -> dict[Any, dict[str, Any]]:
        refs = [self.collection.document(str(entity_id)) for entity_id in ids]
        rows: dict[Any, dict[str, Any]] = {}
        async for snapshot in self.client.get_all(refs, transaction=self.transaction):
            if snapshot.exists and self._visible(snapshot.to_dict() or {}):
                rows[snapshot.id] = self.from_snapshot(snapshot)
        return rows

    def _query(self, condition: AllOf) -> Any:
        compiled = self.compiler.compile(condition)
        if compiled is NEVER:
            return None
        if compiled is None:
            return self.collection
        return self.collection.where(filter=compiled)

    async def stream_rows(
        self,
        condition: AllOf,
        sort: SortSpec | None,
        limit: int | None,
    ) -> AsyncIterator[dict[str, Any]]:
        query = self._query(condition)
        if query is None:
            return
        for field, direction in self.compiler.compile_sort(sort or ()):
            query = query.order_by(field, direction=direction)
        if limit:
            query = query.limit(limit)
        async for snapshot in query.stream(transaction=self.transaction):
            yield self.from_snapshot(snapshot)

    async def count_rows(self, condition: AllOf) -> int:
        query = self._query(condition)
        if query is None:
            return 0
        results = await query.count(alias="all").get(transaction=self.transaction)
        return int(results[0][0].value)

    async def _visible_refs(self, ids: list[Any], include_soft_deleted: bool = False) -> list[Any]:
        """References of the visible documents among ids."""
        constraints = self.compiler.compile(all_of(*self.constraints(include_soft_deleted)))
        refs = []
        for chunk in chunked(ids, IN_LIMIT):
            id_filter = FieldFilter(
                FieldPath.document_id(),
                "in",
                [self.collection.document(str(entity_id)) for entity_id in chunk],
            )
            filter = id_filter if constraints is None else And(filters=[id_filter, constraints])
            query = self.collection.where(filter=filter)
            async for snapshot in query.stream(transaction=self.transaction):
                refs.append(snapshot.reference)
        return refs

    async def _write(self, refs: list[Any], apply: Callable[[Any, Any], None]) -> None:
        """Apply a write to every ref, in batches or on the transaction."""
        if self.transaction is not None:
            for ref in refs:
                apply(self.transaction, ref)
            return
        for chunk in chunked(refs, MAX_WRITES_PER_BATCH):
            batch = self.client.batch()
            for ref in chunk:
                apply(batch, ref)
            await batch.commit()
            logger.debug("Committed batch", collection=self.collection_name, writes=len(chunk))

    async def insert_many(
        self,
        documents: list[tuple[Any, dict[str, Any]]],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        ids = [entity_id for entity_id, _ in documents]
        inserted: list[Any] = []

        for offset in range(0, len(documents), MAX_WRITES_PER_BATCH):
            chunk = documents[offset : offset + MAX_WRITES_PER_BATCH]
            writer = self.transaction if self.transaction is not None else self.client.batch()
            for entity_id, body in chunk:
                data = dict(body)
                if self.settings.config.mirror_id:
                    data[self.id_field] = entity_id
                if self.settings.soft_delete:
                    data[SOFT_DELETE_KEY] = False
                data = self._with_bookkeeping(WriteOp.CREATE, data, merge_trace)
                writer.create(self.collection.document(str(entity_id)), data)

            if self.transaction is None:
                try:
                    await writer.commit()
                except GoogleAPICallError as e:
                    failed = ids[offset:]
                    logger.warning(
                        "create_many partially failed",
                        collection=self.collection_name,
                        inserted=len(inserted),
                        failed=len(failed),
                    )
                    raise CreateManyPartialFailure(inserted, failed) from e
            inserted += ids[offset : offset + len(chunk)]

    async def apply_update(
        self,
        ids: list[Any],
        update: UpdateOperation,
        merge_trace: Mapping[str, Any] | None,
        include_soft_deleted: bool,
    ) -> None:
        data = self.build_update(update, merge_trace)
        refs = await self._visible_refs(ids, include_soft_deleted)
        await self._write(refs, lambda writer, ref: writer.update(ref, data))

    async def remove_many(
        self,
        ids: list[Any],
        merge_trace: Mapping[str, Any] | None,
    ) -> None:
        # Only visible documents: deleting twice must not append a second trace entry
        refs = await self._visible_refs(ids)
        if self.settings.soft_delete:
            data = self._with_bookkeeping(
                WriteOp.DELETE, {SOFT_DELETE_KEY: True}, merge_trace
            )
            await self._write(refs, lambda writer, ref: writer.update(ref, data))
        else:
            await self._write(refs, lambda writer, ref: writer.delete(ref))
