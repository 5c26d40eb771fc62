from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Iterable,
    Mapping,
    Self,
)

from flash_record.exceptions import FlashRecordError
from flash_record.expressions import Condition, InCondition

from .base import R, Relation

if TYPE_CHECKING:
    from flash_record.collection import Collection
    from flash_record.connection import Connection
    from flash_record.contracts import RecordLike
    from flash_record.expressions import Clause
    from flash_record.query import QueryBuilder

PIVOT_PREFIX = "pivot_"


class BelongsToMany(Relation[R]):
    """
    Parent and related rows are linked through a pivot table.

    Resolves to a Collection. Every related model carries the pivot row it
    was reached through as ``model.pivot``: both pivot keys plus the columns
    requested with :meth:`with_pivot`. Pivot values never become attributes
    of the related model.

    Example:
        >>> class Book(Model):
        ...     @relation
        ...     def tags(self):
        ...         return self.many_to_many(Tag).with_pivot("note")
        >>> tags = await book.related("tags")
        # SELECT tags.*, books_tags.book_id AS pivot_book_id, ...
        # FROM tags JOIN books_tags ON tags.id = books_tags.tag_id
        # WHERE books_tags.book_id = 1
        >>> tags[0].pivot["note"]
    """

    many = True

    def __init__(
        self,
        parent: RecordLike,
        related: type[R],
        table: str,
        foreign_pivot_key: str,
        related_pivot_key: str,
        parent_key: str,
        related_key: str,
    ):
        super().__init__(parent, related)
        self.table = table
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.parent_key = parent_key
        self.related_key = related_key
        self.pivot_columns: tuple[str, ...] = ()

    @property
    def parent_key_name(self) -> str:
        return self.parent_key

    @property
    def qualified_foreign_pivot_key(self) -> str:
        return f"{self.table}.{self.foreign_pivot_key}"

    def with_pivot(self, *columns: str) -> Self:
        """Expose extra pivot columns on the ``pivot`` of every related model."""
        self.pivot_columns = tuple(dict.fromkeys((*self.pivot_columns, *columns)))
        return self

    def _pivot_names(self) -> tuple[str, ...]:
        names = (self.foreign_pivot_key, self.related_pivot_key, *self.pivot_columns)
        return tuple(dict.fromkeys(names))

    def _joined(self, query: QueryBuilder[R]) -> QueryBuilder[R]:
        return query.join(
            self.table,
            query.qualify(self.related_key),
            f"{self.table}.{self.related_pivot_key}",
        )

    def _selecting(self, query: QueryBuilder[R]) -> QueryBuilder[R]:
        if not query.spec.columns:
            query = query.select(f"{query.spec.table}.*")
        return query.add_select(
            *(f"{self.table}.{c} as {PIVOT_PREFIX}{c}" for c in self._pivot_names())
        )

    def constrained(self) -> QueryBuilder[R] | None:
        key = self.parent.get_attribute(self.parent_key)
        if key is None:
            return None
        query = self._selecting(self._joined(self._query))
        return query.constrain(self.qualified_foreign_pivot_key, key)

    def eager_constrained(self, keys: list[Any]) -> QueryBuilder[R]:
        query = self._selecting(self._joined(self._query))
        return query.constrain_in(self.qualified_foreign_pivot_key, keys)

    def result_key(self, model: R) -> Any:
        return (model.pivot or {}).get(self.foreign_pivot_key)

    def count_query(self, keys: list[Any]) -> tuple[QueryBuilder[R], str]:
        column = self.qualified_foreign_pivot_key
        return self._joined(self._query).constrain_in(column, keys), column

    async def fetch(self, query: QueryBuilder[R]) -> Collection[R]:
        rows = await query.fetch_rows()
        models = self.related.new_collection(self._hydrate(row) for row in rows)
        return await query.eager_load(models)

    def _hydrate(self, row: Mapping[str, Any]) -> R:
        attributes = dict(row)
        pivot = {
            name: attributes.pop(f"{PIVOT_PREFIX}{name}", None)
            for name in self._pivot_names()
        }
        model = self.related.hydrate(attributes)
        model.set_pivot(pivot)
        return model

    # --- Pivot operations ---

    def _connection(self) -> Connection:
        return self.related.get_connection()

    def _parent_value_or_fail(self, action: str) -> Any:
        key = self.parent.get_attribute(self.parent_key)
        if key is None:
            msg = (
                f"Cannot {action} {self.related.__name__} records on an unsaved "
                f"{type(self.parent).__name__}"
            )
            raise FlashRecordError(msg)
        return key

    def _related_id(self, value: Any) -> Any:
        if hasattr(value, "get_attribute"):
            return value.get_attribute(self.related_key)
        return value

    def _normalize(self, ids: Any) -> dict[Any, dict[str, Any]]:
        """Map related keys to per-row pivot attributes."""
        if ids is None:
            return {}
        if isinstance(ids, Mapping):
            return {
                self._related_id(key): dict(extra or {}) for key, extra in ids.items()
            }
        if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
            ids = [ids]
        return {self._related_id(value): {} for value in ids}

    def _pivot_predicate(self, parent_value: Any, ids: Any = None) -> list[Clause]:
        predicate: list[Clause] = [
            Condition(self.foreign_pivot_key, "=", parent_value)
        ]
        if ids is not None:
            predicate.append(
                InCondition(self.related_pivot_key, tuple(self._normalize(ids)))
            )
        return predicate

    async def attach(
        self, ids: Any, extra: Mapping[str, Any] | None = None
    ) -> int:
        """
        Insert one pivot row per related key.

        ``ids`` may be a key, a model, a list of either, or a mapping of key
        to per-row pivot attributes. ``extra`` is written on every row.

        Returns:
            The number of pivot rows inserted.

        Raises:
            FlashRecordError: If the parent has not been saved.

        Example:
            >>> await book.tags().attach([1, 2], {"note": "imported"})
            >>> await book.tags().attach({3: {"note": "primary"}})
        """
        parent_value = self._parent_value_or_fail("attach")
        rows = [
            {
                self.foreign_pivot_key: parent_value,
                self.related_pivot_key: related_id,
                **(extra or {}),
                **attributes,
            }
            for related_id, attributes in self._normalize(ids).items()
        ]
        if not rows:
            return 0

        connection = self._connection()
        if all(row.keys() == rows[0].keys() for row in rows):
            return await connection.execute_insert_many(self.table, rows)
        for row in rows:
            await connection.execute_insert(self.table, row)
        return len(rows)

    async def detach(self, ids: Any = None) -> int:
        """
        Delete pivot rows of the parent; every row of it when ``ids`` is None.

        Returns:
            The number of pivot rows deleted.
        """
        parent_value = self._parent_value_or_fail("detach")
        if ids is not None and not self._normalize(ids):
            return 0
        return await self._connection().execute_delete(
            self.table, self._pivot_predicate(parent_value, ids)
        )

    async def sync(
        self, ids: Any, extra: Mapping[str, Any] | None = None
    ) -> list[Any]:
        """
        Replace every pivot row of the parent with rows for ``ids``.

        This is a full replace (detach all, then attach), not a diff, run in
        one transaction.

        Returns:
            The related keys now attached.

        Example:
            >>> await book.tags().attach([1, 2])
            >>> await book.tags().sync([2, 3])
            [2, 3]
        """
        self._parent_value_or_fail("sync")
        async with self._connection().transaction():
            await self.detach()
            await self.attach(ids, extra)
        return list(self._normalize(ids))

    async def update_existing_pivot(
        self, ids: Any, attributes: Mapping[str, Any]
    ) -> int:
        """Update the pivot rows linking the parent to ``ids``."""
        parent_value = self._parent_value_or_fail("update pivot rows of")
        if not self._normalize(ids):
            return 0
        return await self._connection().execute_update(
            self.table, self._pivot_predicate(parent_value, ids), attributes
        )

    async def create(
        self,
        attributes: Mapping[str, Any] | None = None,
        pivot: Mapping[str, Any] | None = None,
    ) -> R:
        """Save a new related model and attach it to the parent."""
        self._parent_value_or_fail("attach")
        model = self.related(attributes)
        await model.save()
        await self.attach(model, pivot)
        return model

    async def create_many(
        self,
        records: Iterable[Mapping[str, Any]],
        pivot: Mapping[str, Any] | None = None,
    ) -> Collection[R]:
        created = [await self.create(record, pivot) for record in records]
        return self.related.new_collection(created)
