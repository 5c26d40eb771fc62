from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    TypeVar,
)

from .write import QueryBuilderWrite

if TYPE_CHECKING:
    from flash_record.models import Model


T = TypeVar("T", bound="Model")


class QueryBuilder(QueryBuilderWrite[T]):
    """
    Lazy, immutable query builder for a specific model.

    A QueryBuilder wraps a :class:`~flash_record.query_spec.QuerySpec` and
    allows query composition without executing SQL immediately. Each
    transformation (where, order_by, with_, etc.) returns a new builder,
    preserving immutability.

    Execution happens only through terminal coroutines such as:
        - get()
        - first()
        - find()
        - count()
        - chunk()
        - insert() / update() / delete()

    Global scopes and the soft-delete filter are not part of the builder's
    own state; they are applied by :meth:`to_spec` when the query runs.

    Every model gets its own subclass in which each local scope is a method.

    Examples:
        >>> books = await Book.query().where("pages", ">", 100).order_by("title").get()

        >>> # Local scopes chain like any other method
        >>> await Book.query().long(500).with_("author").get()

        >>> # Eager loading with counts
        >>> await Author.query().with_("books.reviews").with_count("books").get()
    """


__all__ = ["QueryBuilder"]
