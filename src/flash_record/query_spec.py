from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Hashable

if TYPE_CHECKING:
    from .expressions import Clause


class SoftDeleteMode(str, Enum):
    """Visibility of soft-deleted rows."""

    DEFAULT = "default"
    WITH_TRASHED = "with_trashed"
    ONLY_TRASHED = "only_trashed"


@dataclass(frozen=True)
class Join:
    """An inner join of ``table`` on ``first = second``."""

    table: str
    first: str
    second: str


@dataclass(frozen=True)
class Selection:
    """A selected column, optionally aliased. ``table.*`` selects every column."""

    column: str
    alias: str | None = None


@dataclass(frozen=True)
class Order:
    column: str
    direction: str = "asc"


@dataclass(frozen=True)
class QuerySpec:
    """
    The accumulated, not yet executed description of a query.

    Instances are never mutated in place; builders derive new ones with
    :meth:`evolve`.
    """

    table: str
    wheres: tuple[Clause, ...] = ()
    orders: tuple[Order, ...] = ()
    limit: int | None = None
    offset: int | None = None
    joins: tuple[Join, ...] = ()
    columns: tuple[Selection, ...] = ()
    eager_load: tuple[str, ...] = ()
    eager_count: tuple[str, ...] = ()
    soft_delete_mode: SoftDeleteMode = SoftDeleteMode.DEFAULT
    excluded_scopes: frozenset[Hashable] = field(default_factory=frozenset)
    without_scopes: bool = False

    def evolve(self, **changes: Any) -> QuerySpec:
        return replace(self, **changes)

    @property
    def paginated(self) -> bool:
        return self.limit is not None or self.offset is not None
