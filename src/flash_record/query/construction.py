from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Iterable,
    Mapping,
)

from flash_record.expressions import (
    AND,
    OR,
    Condition,
    Group,
    InCondition,
    NullCondition,
    normalize_operator,
)
from flash_record.query_spec import Join, Order, Selection, SoftDeleteMode
from flash_record.scopes import scope_key

from .base import QueryBuilderBase, T

if TYPE_CHECKING:
    from flash_record.expressions import Clause

_MISSING: Any = object()


def _names(items: Iterable[Any]) -> list[str]:
    """Flatten ``"a", ["b", "c"]`` style arguments into a list of names."""
    names: list[str] = []
    for item in items:
        if isinstance(item, str):
            names.append(item)
        else:
            names.extend(item)
    return names


def _selection(ref: str) -> Selection:
    column, sep, alias = ref.partition(" as ")
    if not sep:
        column, sep, alias = ref.partition(" AS ")
    return Selection(column.strip(), (alias.strip() or None) if sep else None)


class QueryBuilderConstruction(QueryBuilderBase[T]):
    """
    Fluent API for building and composing query transformations.

    This layer implements the chaining methods (where, order_by, limit, with_)
    that return a new builder, allowing the step-by-step construction of a
    query without touching the database.
    """

    # --- Predicates ---

    def _push(self, clause: Clause) -> Any:
        return self._clone(wheres=(*self._spec.wheres, clause))

    @staticmethod
    def _comparison(column: str, operator: str, value: Any, boolean: str) -> Clause:
        op = normalize_operator(operator)
        if value is None and op in ("=", "==", "is"):
            return NullCondition(column, boolean=boolean)
        if value is None and op in ("!=", "<>", "is not"):
            return NullCondition(column, negated=True, boolean=boolean)
        if op in ("in", "not in"):
            return InCondition(column, tuple(value), op == "not in", boolean)
        return Condition(column, op, value, boolean)

    def _where(self, column: Any, operator: Any, value: Any, boolean: str) -> Any:
        if callable(column):
            group = column(self._fresh())
            if group is None:
                msg = "Nested where callbacks must return the builder they receive"
                raise TypeError(msg)
            if not group.spec.wheres:
                return self
            return self._push(Group(group.spec.wheres, boolean))

        if isinstance(column, Mapping):
            clauses = tuple(
                self._comparison(key, "=", val, AND) for key, val in column.items()
            )
            if not clauses:
                return self
            if len(clauses) == 1:
                key, val = next(iter(column.items()))
                return self._push(self._comparison(key, "=", val, boolean))
            return self._push(Group(clauses, boolean))

        if operator is _MISSING:
            msg = f"where() on '{column}' needs a value"
            raise TypeError(msg)
        if value is _MISSING:
            operator, value = "=", operator
        return self._push(self._comparison(column, operator, value, boolean))

    def where(
        self, column: Any, operator: Any = _MISSING, value: Any = _MISSING
    ) -> Any:
        """
        Add an AND predicate.

        Accepts ``column, value`` (equality), ``column, operator, value``, a
        mapping of equalities, or a callable that receives an empty builder and
        returns it with the predicates to group in parentheses. Comparing with
        ``None`` becomes ``IS NULL`` / ``IS NOT NULL``.

        Examples:
            >>> Book.query().where("author_id", 1)
            # SELECT * FROM books WHERE books.author_id = 1

            >>> Book.query().where("pages", ">=", 300)
            # SELECT * FROM books WHERE books.pages >= 300

            >>> Book.query().where({"author_id": 1, "draft": False})
            # SELECT * FROM books WHERE books.author_id = 1 AND books.draft = 0

            >>> Book.query().where("author_id", 1).where(
            ...     lambda q: q.where("pages", ">", 500).or_where("title", "like", "D%")
            ... )
            # ... WHERE books.author_id = 1
            #     AND (books.pages > 500 OR books.title LIKE 'D%')
        """
        return self._where(column, operator, value, AND)

    def or_where(
        self, column: Any, operator: Any = _MISSING, value: Any = _MISSING
    ) -> Any:
        """
        Add an OR predicate. Accepts the same arguments as :meth:`where`.

        Example:
            >>> Book.query().where("pages", ">", 500).or_where("title", "Dune")
            # SELECT * FROM books WHERE books.pages > 500 OR books.title = 'Dune'
        """
        return self._where(column, operator, value, OR)

    def constrain(
        self, column: Any, operator: Any = _MISSING, value: Any = _MISSING
    ) -> Any:
        """
        AND a predicate onto the whole query as built so far.

        Accepts the same arguments as :meth:`where`. Unlike :meth:`where`,
        existing predicates joined with OR are wrapped in parentheses first,
        so the new predicate always narrows the result.

        Example:
            >>> Book.query().where("pages", ">", 500).or_where("title", "A")
            ...     .constrain("author_id", 1)
            # ... WHERE (books.pages > 500 OR books.title = 'A')
            #     AND books.author_id = 1
        """
        return self.apply_scope(lambda query: query.where(column, operator, value))

    def constrain_in(self, column: str, values: Iterable[Any]) -> Any:
        """Like :meth:`constrain`, for ``column IN values``."""
        return self._and_where(InCondition(column, tuple(values)))

    def where_in(self, column: str, values: Iterable[Any]) -> Any:
        """
        Example:
            >>> Book.query().where_in("id", [1, 2, 3])
            # SELECT * FROM books WHERE books.id IN (1, 2, 3)
        """
        return self._push(InCondition(column, tuple(values)))

    def where_not_in(self, column: str, values: Iterable[Any]) -> Any:
        return self._push(InCondition(column, tuple(values), negated=True))

    def or_where_in(self, column: str, values: Iterable[Any]) -> Any:
        return self._push(InCondition(column, tuple(values), boolean=OR))

    def or_where_not_in(self, column: str, values: Iterable[Any]) -> Any:
        return self._push(InCondition(column, tuple(values), negated=True, boolean=OR))

    def where_null(self, column: str) -> Any:
        """
        Example:
            >>> Book.query().where_null("published_at")
            # SELECT * FROM books WHERE books.published_at IS NULL
        """
        return self._push(NullCondition(column))

    def where_not_null(self, column: str) -> Any:
        return self._push(NullCondition(column, negated=True))

    def or_where_null(self, column: str) -> Any:
        return self._push(NullCondition(column, boolean=OR))

    def or_where_not_null(self, column: str) -> Any:
        return self._push(NullCondition(column, negated=True, boolean=OR))

    # --- Ordering and windows ---

    def order_by(self, column: str, direction: str = "asc") -> Any:
        """
        Add an ORDER BY directive. Directives accumulate in call order.

        Example:
            >>> Book.query().order_by("pages", "desc").order_by("title")
            # SELECT * FROM books ORDER BY books.pages DESC, books.title ASC
        """
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            msg = f"Order direction must be 'asc' or 'desc', got '{direction}'"
            raise ValueError(msg)
        return self._clone(orders=(*self._spec.orders, Order(column, direction)))

    def latest(self, column: str | None = None) -> Any:
        """Order newest first, by the created-at column unless told otherwise."""
        return self.order_by(column or self.model.__meta__.created_at, "desc")

    def oldest(self, column: str | None = None) -> Any:
        return self.order_by(column or self.model.__meta__.created_at, "asc")

    def limit(self, count: int) -> Any:
        """
        Limit the number of records returned.

        Example:
            >>> await Book.query().limit(10).get()
            # SELECT * FROM books LIMIT 10
        """
        if count < 0:
            msg = "Limit cannot be negative"
            raise ValueError(msg)
        return self._clone(limit=count)

    def offset(self, count: int) -> Any:
        if count < 0:
            msg = "Offset cannot be negative"
            raise ValueError(msg)
        return self._clone(offset=count)

    def for_page(self, page: int, per_page: int = 15) -> Any:
        """
        Window the query onto 1-based ``page`` of ``per_page`` rows.

        Example:
            >>> Book.query().order_by("id").for_page(3, 20)
            # SELECT * FROM books ORDER BY books.id LIMIT 20 OFFSET 40
        """
        if page < 1 or per_page < 1:
            msg = "Page and page size must be at least 1"
            raise ValueError(msg)
        return self._clone(limit=per_page, offset=(page - 1) * per_page)

    # --- Joins and selections ---

    def join(self, table: str, first: str, second: str) -> Any:
        """
        Inner join ``table`` on ``first = second``.

        Unqualified ``second`` columns belong to the joined table; results
        still hydrate only the main table's columns unless selected.

        Example:
            >>> Book.query().join("authors", "books.author_id", "authors.id")
            # SELECT books.* FROM books JOIN authors ON books.author_id = authors.id
        """
        return self._clone(joins=(*self._spec.joins, Join(table, first, second)))

    def select(self, *columns: str) -> Any:
        """
        Replace the selected columns. ``"column as alias"`` labels a column.

        Example:
            >>> Book.query().select("id", "title as name")
            # SELECT books.id, books.title AS name FROM books
        """
        return self._clone(columns=tuple(_selection(c) for c in _names(columns)))

    def add_select(self, *columns: str) -> Any:
        added = tuple(_selection(c) for c in _names(columns))
        return self._clone(columns=(*self._spec.columns, *added))

    # --- Eager loading ---

    def with_(self, *relations: str | Iterable[str]) -> Any:
        """
        Eager load relations on every fetched model.

        Dotted names load nested relations: ``"books.reviews"`` loads each
        author's books, then every loaded book's reviews.

        Example:
            >>> authors = await Author.query().with_("books", "profile").get()
            # SELECT * FROM authors
            # SELECT * FROM books WHERE books.author_id IN (1, 2)
            # SELECT * FROM profiles WHERE profiles.author_id IN (1, 2)
        """
        names = [n for n in _names(relations) if n not in self._spec.eager_load]
        return self._clone(eager_load=(*self._spec.eager_load, *dict.fromkeys(names)))

    def with_count(self, *relations: str | Iterable[str]) -> Any:
        """
        Count related rows for every fetched model into ``<relation>_count``.

        Example:
            >>> authors = await Author.query().with_count("books").get()
            >>> authors[0].books_count
            2
        """
        names = [n for n in _names(relations) if n not in self._spec.eager_count]
        return self._clone(
            eager_count=(*self._spec.eager_count, *dict.fromkeys(names))
        )

    # --- Soft deletes ---

    def with_trashed(self) -> Any:
        """Include soft-deleted rows."""
        return self._clone(soft_delete_mode=SoftDeleteMode.WITH_TRASHED)

    def only_trashed(self) -> Any:
        """Return soft-deleted rows only."""
        return self._clone(soft_delete_mode=SoftDeleteMode.ONLY_TRASHED)

    def without_trashed(self) -> Any:
        return self._clone(soft_delete_mode=SoftDeleteMode.DEFAULT)

    # --- Scopes ---

    def without_global_scope(self, *scopes: Any) -> Any:
        """
        Skip the given global scopes (by name, class or instance).

        Example:
            >>> Book.query().without_global_scope(PublishedScope)
        """
        keys = frozenset(scope_key(s) for s in scopes)
        return self._clone(excluded_scopes=self._spec.excluded_scopes | keys)

    def without_global_scopes(self) -> Any:
        """Skip every global scope of the model."""
        return self._clone(without_scopes=True)

    def scope(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Apply the model's local scope ``name``.

        Every local scope is also available as a builder method, so
        ``query.scope("long", 500)`` equals ``query.long(500)``.
        """
        local = self.model.__scopes__.get(name)
        if local is None:
            msg = f"{self.model.__name__} has no local scope '{name}'"
            raise AttributeError(msg)
        return local(self, *args, **kwargs)
