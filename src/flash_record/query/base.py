from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    TypeVar,
)

from flash_record.expressions import AND, OR, Group, NullCondition, contains_or
from flash_record.query_spec import QuerySpec, SoftDeleteMode
from flash_record.sql import build_select

if TYPE_CHECKING:
    from flash_record.connection import Connection
    from flash_record.expressions import Clause
    from flash_record.models import Model, ModelMeta

T = TypeVar("T", bound="Model")


class QueryBuilderBase(Generic[T]):
    """
    Fundamental state and identity for a QueryBuilder.

    This base class holds the target model and the accumulated
    :class:`~flash_record.query_spec.QuerySpec`. Builders are immutable:
    every transformation derives a new builder around an evolved spec.
    """

    def __init__(self, model: type[T], spec: QuerySpec | None = None):
        self.model: type[T] = model
        self._spec: QuerySpec = spec or QuerySpec(model.__meta__.table)

    def _clone(self, **changes: Any) -> Any:
        """
        Return a new instance of the current class with an evolved spec.

        Using self.__class__ keeps the model's generated scope methods
        available on every derived builder.
        """
        spec = self._spec.evolve(**changes) if changes else self._spec
        return self.__class__(self.model, spec)

    def _fresh(self) -> Any:
        """An empty builder of the same class, used for nested predicate groups."""
        return self.__class__(self.model)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self._spec.table!r}>"

    @property
    def spec(self) -> QuerySpec:
        """The QuerySpec as built so far, before scopes are applied."""
        return self._spec

    @property
    def meta(self) -> ModelMeta:
        return self.model.__meta__

    def get_connection(self) -> Connection:
        return self.model.get_connection()

    def qualify(self, column: str) -> str:
        """Prefix ``column`` with the query's table unless already qualified."""
        return column if "." in column else f"{self._spec.table}.{column}"

    def clone(self) -> Any:
        """
        Return an independent copy of this builder.

        Example:
            >>> base = Book.query().where("author_id", 1)
            >>> short = base.clone().where("pages", "<", 100)
        """
        return self._clone()

    def _and_where(self, clause: Clause) -> Any:
        """Append ``clause`` with AND, grouping existing predicates that use OR."""
        wheres = self._spec.wheres
        if contains_or(wheres):
            wheres = (Group(wheres),)
        return self._clone(wheres=(*wheres, clause))

    def apply_scope(self, callback: Callable[[Any], Any]) -> Any:
        """
        Run ``callback`` on this builder and AND its predicates in as one unit.

        Any ordering, join or selection the callback adds is kept as is.
        """
        applied = callback(self._clone(wheres=()))
        added = applied.spec.wheres
        if not added:
            return applied._clone(wheres=self._spec.wheres)

        clause = added[0]
        if len(added) > 1 or clause.boolean == OR:
            clause = Group(added, AND)
        merged = self._clone(wheres=self._spec.wheres)._and_where(clause)
        return applied._clone(wheres=merged.spec.wheres)

    def to_spec(self) -> QuerySpec:
        """
        Return the QuerySpec that will actually be executed.

        The soft-delete filter is added first, then every global scope of
        the model that was not excluded, in registration order.

        Example:
            >>> spec = Book.query().where("pages", ">", 100).to_spec()
        """
        spec = self._spec
        query: Any = self._clone()

        meta = self.model.__meta__
        if meta.soft_deletes:
            deleted_at = self.qualify(meta.deleted_at)
            if spec.soft_delete_mode == SoftDeleteMode.DEFAULT:
                query = query._and_where(NullCondition(deleted_at))
            elif spec.soft_delete_mode == SoftDeleteMode.ONLY_TRASHED:
                query = query._and_where(NullCondition(deleted_at, negated=True))

        query = self.model.__scope_registry__.apply_global_scopes(
            query,
            self.model,
            spec.excluded_scopes,
            skip_all=spec.without_scopes,
        )
        return query.spec

    def to_sql(self, *, literal_binds: bool = False) -> str:
        """
        Render the SELECT this builder would execute.

        Example:
            >>> Book.query().where("pages", ">", 100).to_sql(literal_binds=True)
            # SELECT * FROM books WHERE books.pages > 100
        """
        stmt = build_select(self.to_spec())
        if literal_binds:
            return str(stmt.compile(compile_kwargs={"literal_binds": True}))
        return str(stmt)
