"""
Shared test fixtures.
"""

import itertools

import pytest

from smartrepo.core.config import RepoConfig
from smartrepo.repos.memory import MemoryRepo

# === Helpers ===

PEOPLE = [
    {"name": "Alice", "age": 25},
    {"name": "Bob", "age": 30},
    {"name": "Charlie", "age": 35},
    {"name": "David", "age": 40},
    {"name": "Eve", "age": 45},
]


def sequential_ids(prefix: str = "id"):
    """Id factory producing ids that sort in creation order."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter):04d}"


async def seed_people(repo):
    """Create Alice(25) .. Eve(45) in ascending id order and return their ids."""
    return await repo.create_many(PEOPLE)


async def collect_pages(repo, filter, limit, order_by=None, projection=None, max_pages=200):
    """Walk cursors to exhaustion and return (pages, all items)."""
    pages = []
    cursor = None
    while True:
        if len(pages) >= max_pages:
            pytest.fail(f"Cursor walk did not end after {max_pages} pages")
        page = await repo.find_page(
            filter, limit=limit, order_by=order_by, cursor=cursor, projection=projection
        )
        pages.append(page)
        if page.next_cursor is None:
            break
        cursor = page.next_cursor
    return pages, [item for page in pages for item in page.items]


# === Fixtures ===


@pytest.fixture
def documents():
    """A shared in-memory collection."""
    return {}


@pytest.fixture
def repo(documents):
    """A plain in-memory repository with sequential ids."""
    return MemoryRepo(
        "people",
        documents=documents,
        config=RepoConfig(generate_id=sequential_ids()),
    )


@pytest.fixture
def soft_repo(documents):
    """An in-memory repository with soft delete, timestamps and versions."""
    return MemoryRepo(
        "people",
        documents=documents,
        config=RepoConfig(
            generate_id=sequential_ids(),
            soft_delete=True,
            trace_timestamps=True,
            version=True,
        ),
    )
