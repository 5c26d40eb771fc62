from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
)

from .base import R, Relation

if TYPE_CHECKING:
    from flash_record.contracts import PersistentRecord
    from flash_record.query import QueryBuilder


class BelongsTo(Relation[R]):
    """
    The parent row holds the key of its owner.

    Resolves to the owning model or None.

    Example:
        >>> class Book(Model):
        ...     @relation
        ...     def author(self):
        ...         return self.many_to_one(Author)
        >>> author = await book.related("author")
        # SELECT * FROM authors WHERE authors.id = 1 LIMIT 1
    """

    many = False

    def __init__(
        self,
        parent: PersistentRecord,
        related: type[R],
        foreign_key: str,
        owner_key: str,
    ):
        super().__init__(parent, related)
        self.parent: PersistentRecord = parent
        self.foreign_key = foreign_key
        self.owner_key = owner_key

    @property
    def parent_key_name(self) -> str:
        return self.foreign_key

    @property
    def qualified_owner_key(self) -> str:
        return self._query.qualify(self.owner_key)

    def constrained(self) -> QueryBuilder[R] | None:
        key = self.parent.get_attribute(self.foreign_key)
        if key is None:
            return None
        return self._query.constrain(self.qualified_owner_key, key)

    def eager_constrained(self, keys: list[Any]) -> QueryBuilder[R]:
        return self._query.constrain_in(self.qualified_owner_key, keys)

    def result_key(self, model: R) -> Any:
        return model.get_attribute(self.owner_key)

    def count_query(self, keys: list[Any]) -> tuple[QueryBuilder[R], str]:
        column = self.qualified_owner_key
        return self._query.constrain_in(column, keys), column

    async def associate(self, owner: Any) -> PersistentRecord:
        """
        Point the parent at ``owner`` (a model or a bare key) and save it.

        Example:
            >>> await book.author().associate(author)
            # UPDATE books SET author_id=2 WHERE books.id = 1
        """
        is_model = hasattr(owner, "get_attribute")
        key = owner.get_attribute(self.owner_key) if is_model else owner
        self.parent.set_attribute(self.foreign_key, key)
        if self.name is not None:
            if is_model:
                self.parent.set_relation(self.name, owner)
            else:
                self.parent.unset_relation(self.name)
        await self.parent.save()
        return self.parent

    async def dissociate(self) -> PersistentRecord:
        """Clear the parent's foreign key and save it."""
        self.parent.set_attribute(self.foreign_key, None)
        if self.name is not None:
            self.parent.set_relation(self.name, None)
        await self.parent.save()
        return self.parent
