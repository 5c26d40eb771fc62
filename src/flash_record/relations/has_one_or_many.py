from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Iterable,
    Mapping,
)

from flash_record.exceptions import FlashRecordError

from .base import R, Relation

if TYPE_CHECKING:
    from flash_record.collection import Collection
    from flash_record.contracts import RecordLike
    from flash_record.query import QueryBuilder


class HasOneOrMany(Relation[R]):
    """
    Shared mechanics of relations whose foreign key lives on the related row.

    The helpers below stamp the parent's key onto children before saving
    them and append the saved children to an already loaded relation cache.
    """

    def __init__(
        self,
        parent: RecordLike,
        related: type[R],
        foreign_key: str,
        local_key: str,
    ):
        super().__init__(parent, related)
        self.foreign_key = foreign_key
        self.local_key = local_key

    @property
    def parent_key_name(self) -> str:
        return self.local_key

    @property
    def qualified_foreign_key(self) -> str:
        return self._query.qualify(self.foreign_key)

    def get_parent_key(self) -> Any:
        return self.parent.get_attribute(self.local_key)

    def constrained(self) -> QueryBuilder[R] | None:
        key = self.get_parent_key()
        if key is None:
            return None
        return self._query.constrain(self.qualified_foreign_key, key)

    def eager_constrained(self, keys: list[Any]) -> QueryBuilder[R]:
        return self._query.constrain_in(self.qualified_foreign_key, keys)

    def result_key(self, model: R) -> Any:
        return model.get_attribute(self.foreign_key)

    def count_query(self, keys: list[Any]) -> tuple[QueryBuilder[R], str]:
        column = self.qualified_foreign_key
        return self._query.constrain_in(column, keys), column

    # --- Persistence helpers ---

    def _parent_key_or_fail(self) -> Any:
        key = self.get_parent_key()
        if key is None:
            msg = (
                f"Cannot save {self.related.__name__} through "
                f"{type(self.parent).__name__}: the parent has no '{self.local_key}'"
            )
            raise FlashRecordError(msg)
        return key

    def _remember(self, model: R) -> None:
        if self.name is None or not self.parent.relation_loaded(self.name):
            return
        if self.many:
            self.parent.get_relation(self.name).push(model)
        else:
            self.parent.set_relation(self.name, model)

    def make(self, attributes: Mapping[str, Any] | None = None, **kwargs: Any) -> R:
        """Build an unsaved child carrying the parent's key."""
        model = self.related(attributes, **kwargs)
        model.set_attribute(self.foreign_key, self.get_parent_key())
        return model

    async def save(self, model: R) -> R:
        """
        Set the foreign key on ``model`` and save it.

        Example:
            >>> book = Book(title="Dune")
            >>> await author.books().save(book)
            >>> book.author_id == author.id
            True
        """
        model.set_attribute(self.foreign_key, self._parent_key_or_fail())
        await model.save()
        self._remember(model)
        return model

    async def save_many(self, models: Iterable[R]) -> Collection[R]:
        saved = [await self.save(model) for model in models]
        return self.related.new_collection(saved)

    async def create(
        self, attributes: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> R:
        """
        Create and save a child of the parent.

        Example:
            >>> book = await author.books().create({"title": "Dune"})
            # INSERT INTO books (title, author_id) VALUES ('Dune', 1)
        """
        return await self.save(self.related(attributes, **kwargs))

    async def create_many(
        self, records: Iterable[Mapping[str, Any]]
    ) -> Collection[R]:
        created = [await self.create(record) for record in records]
        return self.related.new_collection(created)

    async def _find(self, attributes: Mapping[str, Any]) -> R | None:
        key = self._parent_key_or_fail()
        query = self._query.constrain(self.qualified_foreign_key, key)
        if attributes:
            query = query.constrain(dict(attributes))
        return await query.first()

    async def find_or_create(
        self,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> R:
        """
        Return the parent's first child matching ``attributes``, or create one
        from ``attributes`` merged with ``values``.
        """
        found = await self._find(attributes)
        if found is not None:
            return found
        return await self.create({**attributes, **(values or {})})

    async def update_or_create(
        self,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> R:
        """
        Update the parent's first child matching ``attributes`` with
        ``values``, or create one from both.
        """
        found = await self._find(attributes)
        if found is not None:
            await found.update(values or {})
            return found
        return await self.create({**attributes, **(values or {})})
