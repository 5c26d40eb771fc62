from __future__ import annotations

import inspect
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Iterable,
)

from flash_record.exceptions import NotFoundError
from flash_record.relations.loader import load_counts, load_relations
from flash_record.sql import AGGREGATE_LABEL, GROUP_LABEL

from .construction import QueryBuilderConstruction, T

if TYPE_CHECKING:
    from flash_record.collection import Collection

logger = logging.getLogger(__name__)

ChunkCallback = Callable[["Collection[Any]", int], "Awaitable[Any] | Any"]


class QueryBuilderExecution(QueryBuilderConstruction[T]):
    """
    Terminal operations that run the query and hydrate models.

    Every method here is a coroutine that composes the final QuerySpec
    with :meth:`to_spec` and sends it through the model's connection.
    """

    async def fetch_rows(self) -> list[dict[str, Any]]:
        """Run the query and return raw row mappings without hydrating them."""
        return await self.get_connection().execute(self.to_spec())

    async def get(self) -> Collection[T]:
        """
        Execute the query and return every matching model.

        Relations requested with :meth:`with_` and counts requested with
        :meth:`with_count` are loaded afterwards, one relation at a time.

        Example:
            >>> books = await Book.query().where("author_id", 1).get()
            # SELECT * FROM books WHERE books.author_id = 1
        """
        rows = await self.fetch_rows()
        models = self.model.new_collection(self.model.hydrate(row) for row in rows)
        return await self.eager_load(models)

    async def eager_load(self, models: Collection[T]) -> Collection[T]:
        """Load this query's eager relations and counts onto ``models``."""
        if models.is_empty():
            return models
        if self._spec.eager_load:
            await load_relations(models, self._spec.eager_load)
        if self._spec.eager_count:
            await load_counts(models, self._spec.eager_count)
        return models

    async def first(self) -> T | None:
        """
        Return the first matching model, or None.

        Example:
            >>> book = await Book.query().order_by("pages", "desc").first()
            # SELECT * FROM books ORDER BY books.pages DESC LIMIT 1
        """
        return (await self.limit(1).get()).first()

    async def first_or_fail(self) -> T:
        """
        Return the first matching model.

        Raises:
            NotFoundError: If nothing matches.
        """
        model = await self.first()
        if model is None:
            msg = f"No {self.model.__name__} matches the query"
            raise NotFoundError(msg)
        return model

    async def find(self, key: Any) -> T | None:
        """
        Return the model with primary key ``key``, or None.

        Example:
            >>> book = await Book.query().find(1)
            # SELECT * FROM books WHERE books.id = 1 LIMIT 1
        """
        return await self.where(self.qualify(self.meta.primary_key), key).first()

    async def find_or_fail(self, key: Any) -> T:
        """
        Return the model with primary key ``key``.

        Raises:
            NotFoundError: If no row has that key.
        """
        model = await self.find(key)
        if model is None:
            name, pk = self.model.__name__, self.meta.primary_key
            msg = f"{name} with {pk}={key!r} not found"
            raise NotFoundError(msg)
        return model

    async def find_many(self, keys: Iterable[Any]) -> Collection[T]:
        """Return the models whose primary keys are in ``keys``."""
        keys = list(keys)
        if not keys:
            return self.model.new_collection()
        return await self.where_in(self.qualify(self.meta.primary_key), keys).get()

    # --- Aggregates ---

    async def _aggregate(self, fn: str, column: str | None = None) -> Any:
        rows = await self.get_connection().execute_aggregate(
            self.to_spec(), fn, column
        )
        return rows[0][AGGREGATE_LABEL] if rows else None

    async def count(self) -> int:
        """
        Count the matching rows.

        Example:
            >>> await Book.query().where("author_id", 1).count()
            # SELECT count(*) AS aggregate_value FROM books WHERE books.author_id = 1
        """
        return int(await self._aggregate("count") or 0)

    async def exists(self) -> bool:
        return await self.limit(1).count() > 0

    async def sum(self, column: str) -> int | float:
        """Sum ``column`` over the matching rows; 0 when nothing matches."""
        return await self._aggregate("sum", column) or 0

    async def avg(self, column: str) -> float | None:
        return await self._aggregate("avg", column)

    async def min(self, column: str) -> Any:
        return await self._aggregate("min", column)

    async def max(self, column: str) -> Any:
        return await self._aggregate("max", column)

    async def count_by(self, column: str) -> dict[Any, int]:
        """
        Count the matching rows per distinct value of ``column``.

        Example:
            >>> await Book.query().where_in("author_id", [1, 2]).count_by("author_id")
            {1: 2, 2: 1}
        """
        rows = await self.get_connection().execute_aggregate(
            self.to_spec(), "count", group_by=column
        )
        return {row[GROUP_LABEL]: int(row[AGGREGATE_LABEL]) for row in rows}

    # --- Chunking ---

    async def chunk(self, page_size: int, callback: ChunkCallback) -> bool:
        """
        Walk the matching rows page by page.

        ``callback(page_items, page_number)`` runs for every non-empty page and
        may be a coroutine function. Iteration stops after a short page, or as
        soon as the callback returns ``False``. Without an explicit ordering
        the pages are ordered by primary key.

        No transaction is held across pages; rows written concurrently may be
        skipped or seen twice.

        Returns:
            False if the callback stopped the iteration, True otherwise.

        Example:
            >>> async def handle(books, page):
            ...     for book in books:
            ...         await index(book)
            >>> await Book.query().chunk(100, handle)
        """
        if page_size < 1:
            msg = "Chunk size must be at least 1"
            raise ValueError(msg)

        query: Any = self
        if not self._spec.orders:
            query = self.order_by(self.qualify(self.meta.primary_key))

        page = 1
        while True:
            items = await query.for_page(page, page_size).get()
            if items.is_empty():
                break

            logger.debug(
                f"Chunk {page} of {self.model.__name__}: {len(items)} row(s)"
            )
            result = callback(items, page)
            if inspect.isawaitable(result):
                result = await result
            if result is False:
                return False

            if len(items) < page_size:
                break
            page += 1
        return True
