"""
Async result streams.
"""

from collections.abc import AsyncIterator
from typing import Generic, TypeVar

T = TypeVar("T")


class QueryStream(Generic[T]):
    """
    A lazily consumed stream of query results.

    Example:
        async for user in repo.find({"active": True}):
            ...
        first_ten = await repo.find({}).take(10).to_list()
    """

    def __init__(self, iterator: AsyncIterator[T]) -> None:
        self._iterator = iterator

    @classmethod
    def empty(cls) -> "QueryStream[T]":
        async def _empty() -> AsyncIterator[T]:
            return
            yield  # pragma: no cover

        return cls(_empty())

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterator

    async def to_list(self) -> list[T]:
        """Consume the stream into a list."""
        return [item async for item in self._iterator]

    def take(self, limit: int) -> "QueryStream[T]":
        """Yield at most limit items."""

        async def _take() -> AsyncIterator[T]:
            if limit <= 0:
                return
            count = 0
            async for item in self._iterator:
                yield item
                count += 1
                if count >= limit:
                    break

        return QueryStream(_take())

    def skip(self, offset: int) -> "QueryStream[T]":
        """Drop the first offset items."""

        async def _skip() -> AsyncIterator[T]:
            count = 0
            async for item in self._iterator:
                if count >= offset:
                    yield item
                count += 1

        return QueryStream(_skip())

    def paged(self, page_size: int) -> "QueryStream[list[T]]":
        """Group items into lists of page_size; the last list may be shorter."""
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        async def _paged() -> AsyncIterator[list[T]]:
            page: list[T] = []
            async for item in self._iterator:
                page.append(item)
                if len(page) >= page_size:
                    yield page
                    page = []
            if page:
                yield page

        return QueryStream(_paged())
