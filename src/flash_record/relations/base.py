from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ClassVar,
    Generator,
    Generic,
    Iterable,
    Self,
    TypeVar,
)

if TYPE_CHECKING:
    from flash_record.collection import Collection
    from flash_record.contracts import RecordLike
    from flash_record.models import Model
    from flash_record.query import QueryBuilder

logger = logging.getLogger(__name__)

R = TypeVar("R", bound="Model")


class Relation(ABC, Generic[R]):
    """
    A typed association between a parent row and a related model.

    A relation wraps a query on the related model. Key constraints are added
    on a copy of that query only when it runs, so the same relation object
    serves lazy resolution (:meth:`get_results`) and batched eager loading
    (:meth:`eager_load_relation`) alike.

    Parents are only seen through the :class:`~flash_record.contracts.RecordLike`
    protocol.

    Example:
        >>> relation = author.books().where("pages", ">", 100)
        >>> books = await relation.get_results()
        >>> books = await author.books()  # relations are awaitable
    """

    many: ClassVar[bool] = False

    def __init__(self, parent: RecordLike, related: type[R]):
        self.parent = parent
        self.related = related
        self.name: str | None = None
        self._query: QueryBuilder[R] = related.query()

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        return f"<{type(self).__name__}{label} -> {self.related.__name__}>"

    def __await__(self) -> Generator[Any, None, Any]:
        return self.get_results().__await__()

    def __getattr__(self, name: str) -> Callable[..., Self]:
        # Local scopes of the related model chain like builder methods.
        related = self.__dict__.get("related")
        if not name.startswith("_") and related is not None:
            if name in related.__scopes__:

                def apply(*args: Any, **kwargs: Any) -> Self:
                    return self.scope(name, *args, **kwargs)

                return apply
        msg = f"'{type(self).__name__}' object has no attribute '{name}'"
        raise AttributeError(msg)

    def named(self, name: str) -> Self:
        """Record the relation name used for cache writes."""
        self.name = name
        return self

    # --- Query customization ---

    def _tap(self, method: str, *args: Any, **kwargs: Any) -> Self:
        self._query = getattr(self._query, method)(*args, **kwargs)
        return self

    def where(self, *args: Any, **kwargs: Any) -> Self:
        return self._tap("where", *args, **kwargs)

    def or_where(self, *args: Any, **kwargs: Any) -> Self:
        return self._tap("or_where", *args, **kwargs)

    def where_in(self, column: str, values: Iterable[Any]) -> Self:
        return self._tap("where_in", column, values)

    def where_not_in(self, column: str, values: Iterable[Any]) -> Self:
        return self._tap("where_not_in", column, values)

    def where_null(self, column: str) -> Self:
        return self._tap("where_null", column)

    def where_not_null(self, column: str) -> Self:
        return self._tap("where_not_null", column)

    def order_by(self, column: str, direction: str = "asc") -> Self:
        return self._tap("order_by", column, direction)

    def latest(self, column: str | None = None) -> Self:
        return self._tap("latest", column)

    def oldest(self, column: str | None = None) -> Self:
        return self._tap("oldest", column)

    def limit(self, count: int) -> Self:
        """
        Cap the number of related rows.

        Resolved for one parent the cap is per parent. Eager loading runs a
        single query for every parent, so there the cap applies to the whole
        batch and some parents may receive fewer rows than a lazy load gives.
        """
        return self._tap("limit", count)

    def offset(self, count: int) -> Self:
        return self._tap("offset", count)

    def with_(self, *relations: str) -> Self:
        return self._tap("with_", *relations)

    def with_count(self, *relations: str) -> Self:
        return self._tap("with_count", *relations)

    def with_trashed(self) -> Self:
        return self._tap("with_trashed")

    def only_trashed(self) -> Self:
        return self._tap("only_trashed")

    def without_global_scope(self, *scopes: Any) -> Self:
        return self._tap("without_global_scope", *scopes)

    def without_global_scopes(self) -> Self:
        return self._tap("without_global_scopes")

    def scope(self, name: str, *args: Any, **kwargs: Any) -> Self:
        return self._tap("scope", name, *args, **kwargs)

    def get_query(self) -> QueryBuilder[R]:
        """The customized query on the related model, without key constraints."""
        return self._query

    # --- Variant hooks ---

    @property
    @abstractmethod
    def parent_key_name(self) -> str:
        """The parent attribute whose value joins parents to related rows."""

    @abstractmethod
    def constrained(self) -> QueryBuilder[R] | None:
        """The query for this relation's parent, or None when it has no key."""

    @abstractmethod
    def eager_constrained(self, keys: list[Any]) -> QueryBuilder[R]:
        """The query for every parent whose join key is in ``keys``."""

    @abstractmethod
    def result_key(self, model: R) -> Any:
        """The join value a fetched related model matches parents on."""

    @abstractmethod
    def count_query(self, keys: list[Any]) -> tuple[QueryBuilder[R], str]:
        """A query to group-count and the column to group it by."""

    async def fetch(self, query: QueryBuilder[R]) -> Collection[R]:
        return await query.get()

    # --- Resolution ---

    def default(self) -> Any:
        """The value of a relation without matches."""
        return self.related.new_collection() if self.many else None

    def parent_keys(self, parents: Iterable[RecordLike]) -> list[Any]:
        """Distinct, non-null join keys of ``parents`` in first-seen order."""
        keys = (parent.get_attribute(self.parent_key_name) for parent in parents)
        return list(dict.fromkeys(key for key in keys if key is not None))

    async def get_results(self) -> Any:
        """
        Resolve the relation for its parent.

        Returns a Collection for relations of many, a model or None otherwise.
        No query is issued when the parent has no join key.
        """
        query = self.constrained()
        if query is None:
            return self.default()
        if self.many:
            return await self.fetch(query)
        return (await self.fetch(query.limit(1))).first()

    async def get(self) -> Any:
        return await self.get_results()

    async def count(self) -> int:
        """Count the related rows of the parent."""
        query = self.constrained()
        if query is None:
            return 0
        return await query.count()

    async def eager_load_relation(
        self, parents: Iterable[RecordLike], name: str
    ) -> None:
        """
        Resolve ``name`` for every parent with one query.

        Parents without a match get an empty Collection or None.
        """
        parents = list(parents)
        keys = self.parent_keys(parents)
        if keys:
            results = await self.fetch(self.eager_constrained(keys))
        else:
            results = self.related.new_collection()

        logger.debug(
            f"Eager loaded {len(results)} {self.related.__name__} "
            f"for {len(parents)} parent(s) as '{name}'"
        )
        self.match(parents, results, name)

    def build_dictionary(self, results: Iterable[R]) -> dict[Any, Any]:
        dictionary: dict[Any, Any] = {}
        for model in results:
            key = self.result_key(model)
            if self.many:
                dictionary.setdefault(key, []).append(model)
            else:
                dictionary[key] = model
        return dictionary

    def match(
        self, parents: Iterable[RecordLike], results: Iterable[R], name: str
    ) -> None:
        """Write the matching results into every parent's relation cache."""
        dictionary = self.build_dictionary(results)
        for parent in parents:
            key = parent.get_attribute(self.parent_key_name)
            if self.many:
                value = self.related.new_collection(dictionary.get(key, ()))
            else:
                value = dictionary.get(key)
            parent.set_relation(name, value)

    async def eager_load_count(
        self, parents: Iterable[RecordLike], name: str
    ) -> None:
        """
        Count ``name`` for every parent with one grouped query.

        Results land in ``<name>_count``; parents without rows get 0. The
        relation cache is left untouched.
        """
        parents = list(parents)
        keys = self.parent_keys(parents)
        counts: dict[Any, int] = {}
        if keys:
            query, column = self.count_query(keys)
            counts = await query.count_by(column)

        attribute = f"{name}_count"
        for parent in parents:
            key = parent.get_attribute(self.parent_key_name)
            parent.set_computed(attribute, counts.get(key, 0))
