"""Tests for repository behaviour, exercised through MemoryRepo."""

from datetime import datetime, timezone

import pytest

from conftest import seed_people, sequential_ids
from smartrepo.core.config import RepoConfig, TimestampKeys, TraceStrategy
from smartrepo.core.dsl import UpdateOperation
from smartrepo.core.errors import (
    ConfigurationError,
    CreateManyPartialFailure,
    ErrorKind,
    ScopeBreachError,
    ValidationError,
)
from smartrepo.pagination.conditions import (
    AllOf,
    BelowNull,
    Equals,
    GreaterThan,
    HasValue,
    IsNullish,
    LessThan,
)
from smartrepo.repos.memory import MemoryRepo, compare_values, matches
from smartrepo.repos.specs import FilterSpec, combine_specs

FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_repo(documents=None, **config):
    return MemoryRepo(
        "items",
        documents=documents if documents is not None else {},
        config=RepoConfig(generate_id=sequential_ids(), **config),
    )


class TestCreate:
    """Tests for create and create_many."""

    @pytest.mark.asyncio
    async def test_create_returns_id(self, repo):
        """create returns the generated id and the entity is readable."""
        entity_id = await repo.create({"name": "Alice"})

        assert entity_id == "id0001"
        assert await repo.get_by_id(entity_id) == {"name": "Alice", "id": "id0001"}

    @pytest.mark.asyncio
    async def test_create_many_keeps_input_order(self, repo):
        """Ids come back in input order."""
        ids = await repo.create_many([{"n": 1}, {"n": 2}, {"n": 3}])

        assert ids == ["id0001", "id0002", "id0003"]

    @pytest.mark.asyncio
    async def test_create_many_empty(self, repo):
        """No entities, no ids."""
        assert await repo.create_many([]) == []

    @pytest.mark.asyncio
    async def test_managed_fields_are_ignored(self):
        """Caller-supplied ids and managed fields are dropped."""
        repo = make_repo(version=True, soft_delete=True)

        entity_id = await repo.create(
            {"id": "mine", "_id": "x", "_version": 99, "_deleted": True, "name": "A"}
        )

        assert entity_id == "id0001"
        stored = repo.documents[entity_id]
        assert stored["_version"] == 1
        assert "_deleted" not in stored
        assert "_id" not in stored

    @pytest.mark.asyncio
    async def test_scope_is_stamped(self, documents):
        """Scope values are written onto created documents."""
        repo = MemoryRepo("items", documents=documents, scope={"tenant": "acme"})

        entity_id = await repo.create({"name": "A"})

        assert documents[entity_id]["tenant"] == "acme"

    @pytest.mark.asyncio
    async def test_conflicting_scope_value(self, documents):
        """Creating with a different scope value is rejected."""
        repo = MemoryRepo("items", documents=documents, scope={"tenant": "acme"})

        with pytest.raises(ValidationError) as exc_info:
            await repo.create({"tenant": "other"})

        assert exc_info.value.details == {"field": "tenant"}
        assert documents == {}

    @pytest.mark.asyncio
    async def test_non_mapping_entity(self, repo):
        """Entities must be mappings."""
        with pytest.raises(ValidationError):
            await repo.create(["not", "a", "dict"])  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_partial_failure(self, documents):
        """Colliding ids are reported as failed, the rest are inserted."""
        ids = iter(["a", "b", "a", "c"])
        repo = MemoryRepo(
            "items", documents=documents, config=RepoConfig(generate_id=lambda: next(ids))
        )
        await repo.create({"n": 0})

        with pytest.raises(CreateManyPartialFailure) as exc_info:
            await repo.create_many([{"n": 1}, {"n": 2}, {"n": 3}])

        error = exc_info.value
        assert error.code == ErrorKind.PARTIAL_FAILURE
        assert error.inserted_ids == ["b", "c"]
        assert error.failed_ids == ["a"]
        assert documents["a"]["n"] == 0


class TestReads:
    """Tests for get_by_id, get_by_ids, find and count."""

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, repo):
        """Unknown ids read as None."""
        assert await repo.get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_get_by_id_projection(self, repo):
        """Projection keeps only the requested fields."""
        entity_id = await repo.create({"name": "A", "age": 3, "meta": {"x": 1, "y": 2}})

        row = await repo.get_by_id(entity_id, projection={"name": True, "meta.x": True})

        assert row == {"name": "A", "meta": {"x": 1}}

    @pytest.mark.asyncio
    async def test_get_by_ids(self, repo):
        """Found entities follow input order; missing ids are listed."""
        ids = await seed_people(repo)

        found, missing = await repo.get_by_ids([ids[2], "ghost", ids[0]])

        assert [row["name"] for row in found] == ["Charlie", "Alice"]
        assert missing == ["ghost"]

    @pytest.mark.asyncio
    async def test_get_by_ids_empty(self, repo):
        """No ids, nothing to read."""
        assert await repo.get_by_ids([]) == ([], [])

    @pytest.mark.asyncio
    async def test_get_by_ids_respects_scope(self, documents):
        """Out-of-scope documents are reported as not found."""
        acme = MemoryRepo("items", documents=documents, scope={"tenant": "acme"})
        other = MemoryRepo("items", documents=documents, scope={"tenant": "other"})
        entity_id = await acme.create({"name": "A"})

        found, missing = await other.get_by_ids([entity_id])

        assert found == []
        assert missing == [entity_id]

    @pytest.mark.asyncio
    async def test_find_stream(self, repo):
        """find streams every matching row."""
        await seed_people(repo)

        rows = await repo.find({}, order_by={"age": "desc"}).to_list()

        assert [row["age"] for row in rows] == [45, 40, 35, 30, 25]

    @pytest.mark.asyncio
    async def test_find_filter_and_projection(self, repo):
        """find applies filters and projections."""
        await seed_people(repo)

        rows = await repo.find({"name": "Bob"}, projection={"age": True}).to_list()

        assert rows == [{"age": 30}]

    @pytest.mark.asyncio
    async def test_find_rejects_non_scalar_filter(self, repo):
        """Nested filter values are rejected."""
        with pytest.raises(ValidationError):
            repo.find({"age": {"$gt": 3}})

    @pytest.mark.asyncio
    async def test_find_rejects_none_filter(self, repo):
        """A missing filter must be spelled {}."""
        with pytest.raises(ValidationError):
            repo.find(None)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_find_null_filter_matches_missing(self, repo):
        """Filtering on None matches null and absent fields."""
        await repo.create_many([{"tag": None}, {}, {"tag": "x"}])

        assert await repo.count({"tag": None}) == 2

    @pytest.mark.asyncio
    async def test_count(self, repo):
        """count matches the filter."""
        await seed_people(repo)

        assert await repo.count({}) == 5
        assert await repo.count({"age": 30}) == 1

    @pytest.mark.asyncio
    async def test_scope_breach_modes(self, documents):
        """Contradicting filters are empty by default and raise on request."""
        repo = MemoryRepo("items", documents=documents, scope={"tenant": "acme"})
        await repo.create({"name": "A"})

        assert await repo.find({"tenant": "x"}).to_list() == []
        assert await repo.count({"tenant": "x"}) == 0
        with pytest.raises(ScopeBreachError):
            repo.find({"tenant": "x"}, on_scope_breach="error")
        with pytest.raises(ScopeBreachError):
            await repo.count({"tenant": "x"}, on_scope_breach="error")

    @pytest.mark.asyncio
    async def test_specs(self, repo):
        """Specifications feed find, count and find_page."""
        await repo.create_many(
            [
                {"kind": "cat", "color": "black"},
                {"kind": "cat", "color": "white"},
                {"kind": "dog", "color": "black"},
            ]
        )
        cats = FilterSpec({"kind": "cat"}, "cats")
        black = FilterSpec({"color": "black"}, "black")
        black_cats = combine_specs(cats, black)

        assert black_cats.describe == "cats AND black"
        assert await repo.count_by_spec(black_cats) == 1
        assert len(await repo.find_by_spec(cats).to_list()) == 2
        page = await repo.find_page_by_spec(black, limit=10, order_by={"kind": "desc"})
        assert [row["kind"] for row in page.items] == ["dog", "cat"]


class TestUpdate:
    """Tests for update and update_many."""

    @pytest.mark.asyncio
    async def test_set_and_unset(self, repo):
        """Fields are set and removed, including dotted paths."""
        entity_id = await repo.create({"name": "A", "nick": "a", "meta": {"x": 1}})

        await repo.update(
            entity_id, {"set": {"name": "B", "meta.y": 2}, "unset": "nick"}
        )

        assert await repo.get_by_id(entity_id) == {
            "name": "B",
            "meta": {"x": 1, "y": 2},
            "id": entity_id,
        }

    @pytest.mark.asyncio
    async def test_update_many(self, repo):
        """All listed ids receive the update."""
        ids = await seed_people(repo)

        await repo.update_many(ids[:3], UpdateOperation(set={"vip": True}))

        assert await repo.count({"vip": True}) == 3

    @pytest.mark.asyncio
    async def test_readonly_fields(self):
        """Managed fields cannot be updated or unset."""
        repo = make_repo(version=True)
        entity_id = await repo.create({"name": "A"})

        with pytest.raises(ValidationError):
            await repo.update(entity_id, {"set": {"id": "other"}})
        with pytest.raises(ValidationError):
            await repo.update(entity_id, {"unset": ["_version"]})

    @pytest.mark.asyncio
    async def test_scope_fields_are_readonly(self, documents):
        """Scope fields cannot be moved by an update."""
        repo = MemoryRepo("items", documents=documents, scope={"tenant": "acme"})
        entity_id = await repo.create({"name": "A"})

        with pytest.raises(ValidationError):
            await repo.update(entity_id, {"set": {"tenant": "other"}})

    @pytest.mark.asyncio
    async def test_set_unset_overlap(self, repo):
        """The same field cannot be set and unset."""
        with pytest.raises(ValidationError):
            await repo.update("x", {"set": {"a": 1}, "unset": ["a"]})

    @pytest.mark.asyncio
    async def test_empty_update(self, repo):
        """An update must change something."""
        with pytest.raises(ValidationError):
            await repo.update("x", {})

    @pytest.mark.asyncio
    async def test_out_of_scope_is_ignored(self, documents):
        """Updates never reach documents outside the scope."""
        acme = MemoryRepo("items", documents=documents, scope={"tenant": "acme"})
        other = MemoryRepo("items", documents=documents, scope={"tenant": "other"})
        entity_id = await acme.create({"name": "A"})

        await other.update(entity_id, {"set": {"name": "hacked"}})

        assert documents[entity_id]["name"] == "A"


class TestBookkeeping:
    """Timestamps, versions and traces."""

    @pytest.mark.asyncio
    async def test_timestamps_and_version(self):
        """Writes maintain hidden timestamps and the version counter."""
        repo = make_repo(trace_timestamps=lambda: FIXED, version=True, soft_delete=True)
        entity_id = await repo.create({"name": "A"})

        doc = repo.documents[entity_id]
        assert doc["_createdAt"] == FIXED
        assert doc["_updatedAt"] == FIXED
        assert doc["_version"] == 1

        await repo.update(entity_id, {"set": {"name": "B"}})
        assert repo.documents[entity_id]["_version"] == 2

        await repo.delete(entity_id)
        assert repo.documents[entity_id]["_deleted"] is True
        assert repo.documents[entity_id]["_deletedAt"] == FIXED
        assert repo.documents[entity_id]["_version"] == 3

    @pytest.mark.asyncio
    async def test_hidden_fields_not_returned(self):
        """Default-named managed fields are stripped from reads."""
        repo = make_repo(trace_timestamps=True, version=True)
        entity_id = await repo.create({"name": "A"})

        assert await repo.get_by_id(entity_id) == {"name": "A", "id": entity_id}

    @pytest.mark.asyncio
    async def test_custom_keys_are_visible(self):
        """Custom timestamp and version keys are returned."""
        repo = make_repo(
            timestamp_keys=TimestampKeys(created_at="createdAt"),
            version="rev",
        )
        entity_id = await repo.create({"name": "A"})

        row = await repo.get_by_id(entity_id)

        assert isinstance(row["createdAt"], datetime)
        assert row["rev"] == 1
        assert "_updatedAt" not in row

    @pytest.mark.asyncio
    async def test_trace_latest(self, documents):
        """The latest strategy keeps only the newest entry."""
        repo = MemoryRepo(
            "items",
            documents=documents,
            config=RepoConfig(trace_timestamps=lambda: FIXED),
            trace_context={"user": "u1"},
        )
        entity_id = await repo.create({"name": "A"})
        await repo.update(entity_id, {"set": {"name": "B"}}, merge_trace={"reason": "fix"})

        assert documents[entity_id]["_trace"] == {
            "user": "u1",
            "reason": "fix",
            "_op": "update",
            "_at": FIXED,
        }

    @pytest.mark.asyncio
    async def test_trace_unbounded(self, documents):
        """The unbounded strategy appends every entry."""
        repo = MemoryRepo(
            "items",
            documents=documents,
            config=RepoConfig(trace_strategy=TraceStrategy.UNBOUNDED, soft_delete=True),
            trace_context={"user": "u1"},
        )
        entity_id = await repo.create({"n": 0})
        await repo.update(entity_id, {"set": {"n": 1}})
        await repo.delete(entity_id)

        ops = [entry["_op"] for entry in documents[entity_id]["_trace"]]
        assert ops == ["create", "update", "delete"]

    @pytest.mark.asyncio
    async def test_bounded_keeps_limit(self, documents):
        """Bounded history never grows past trace_limit."""
        repo = MemoryRepo(
            "items",
            documents=documents,
            config=RepoConfig(trace_strategy="bounded", trace_limit=2),
            trace_context={"user": "u1"},
        )
        entity_id = await repo.create({"n": 0})
        for n in range(1, 4):
            await repo.update(entity_id, {"set": {"n": n}}, merge_trace={"n": n})

        history = documents[entity_id]["_trace"]
        assert [entry["n"] for entry in history] == [2, 3]

    @pytest.mark.asyncio
    async def test_no_trace_without_context(self, repo, documents):
        """Without a trace context or merge_trace nothing is recorded."""
        entity_id = await repo.create({"n": 0})

        assert "_trace" not in documents[entity_id]


class TestDelete:
    """Tests for delete and delete_many."""

    @pytest.mark.asyncio
    async def test_hard_delete(self, repo, documents):
        """Without soft delete documents are removed."""
        ids = await seed_people(repo)

        await repo.delete_many(ids[:2])

        assert len(documents) == 3

    @pytest.mark.asyncio
    async def test_soft_delete_hides(self, soft_repo, documents):
        """Soft-deleted documents stay stored but disappear from reads."""
        ids = await seed_people(soft_repo)

        await soft_repo.delete(ids[0])

        assert ids[0] in documents
        assert await soft_repo.get_by_id(ids[0]) is None
        assert await soft_repo.count({}) == 4
        assert len(await soft_repo.find({}).to_list()) == 4

    @pytest.mark.asyncio
    async def test_soft_delete_is_idempotent(self, soft_repo, documents):
        """Deleting twice does not bump the version again."""
        entity_id = await soft_repo.create({"n": 1})

        await soft_repo.delete(entity_id)
        await soft_repo.delete(entity_id)

        assert documents[entity_id]["_version"] == 2

    @pytest.mark.asyncio
    async def test_update_soft_deleted(self, soft_repo, documents):
        """Soft-deleted documents are only updated on request."""
        entity_id = await soft_repo.create({"n": 1})
        await soft_repo.delete(entity_id)

        await soft_repo.update(entity_id, {"set": {"n": 2}})
        assert documents[entity_id]["n"] == 1

        await soft_repo.update(entity_id, {"set": {"n": 3}}, include_soft_deleted=True)
        assert documents[entity_id]["n"] == 3


class TestTransactions:
    """Tests for run_transaction."""

    @pytest.mark.asyncio
    async def test_commit(self, repo, documents):
        """A successful callback keeps its writes and returns its result."""

        async def work(tx):
            return await tx.create({"n": 1})

        entity_id = await repo.run_transaction(work)

        assert entity_id in documents

    @pytest.mark.asyncio
    async def test_rollback(self, repo, documents):
        """A failing callback leaves the collection untouched."""
        await repo.create({"n": 0})

        async def work(tx):
            await tx.create({"n": 1})
            await tx.delete_many(list(documents))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await repo.run_transaction(work)

        assert [doc["n"] for doc in documents.values()] == [0]


class TestConfiguration:
    """Repository configuration errors."""

    def test_readonly_key_in_scope(self):
        """Managed keys cannot be used as scope."""
        with pytest.raises(ConfigurationError):
            MemoryRepo("items", scope={"id": "x"})

    def test_bounded_without_limit(self):
        """bounded needs trace_limit."""
        with pytest.raises(ConfigurationError):
            MemoryRepo("items", config=RepoConfig(trace_strategy="bounded"))


class TestOrdering:
    """Cross-type comparison helpers."""

    @pytest.mark.parametrize(
        "lower,higher",
        [
            ([], None),
            (None, 0),
            (1, 2.5),
            (99, "a"),
            ("a", "b"),
            ("z", {"a": 1}),
            ({"a": 1}, [1]),
            ([1], b"x"),
            (b"x", False),
            (False, True),
            (True, FIXED),
        ],
    )
    def test_type_order(self, lower, higher):
        """Values compare by type class first."""
        assert compare_values(lower, higher) < 0
        assert compare_values(higher, lower) > 0

    def test_null_and_missing_are_equal(self):
        """Null and missing sort together."""
        assert matches({}, IsNullish("v"))
        assert matches({"v": None}, IsNullish("v"))
        assert not matches({"v": 0}, IsNullish("v"))

    def test_range_is_type_bracketed(self):
        """Range comparisons only match values of the same type class."""
        assert matches({"v": 5}, GreaterThan("v", 3))
        assert not matches({"v": "5"}, GreaterThan("v", 3))
        assert not matches({"v": None}, LessThan("v", 3))

    def test_has_value_and_below_null(self):
        """HasValue excludes null and empty arrays; BelowNull is the reverse."""
        assert matches({"v": 0}, HasValue("v"))
        assert not matches({"v": []}, HasValue("v"))
        assert matches({"v": []}, BelowNull("v"))
        assert not matches({}, BelowNull("v"))

    def test_equality_does_not_mix_bool_and_int(self):
        """True is not equal to 1."""
        assert not matches({"v": 1}, Equals("v", True))
        assert matches({"v": 1}, AllOf((Equals("v", 1.0),)))
