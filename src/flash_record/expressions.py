from __future__ import annotations

from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Protocol,
    Sequence,
    runtime_checkable,
)

from sqlalchemy import and_, column, or_, table

if TYPE_CHECKING:
    from sqlalchemy.sql import ColumnElement
    from sqlalchemy.sql.expression import ColumnClause, TableClause

AND = "and"
OR = "or"


class ColumnResolver:
    """
    Binds the column references of one statement to table objects.

    Every table name maps to exactly one ``TableClause`` carrying all the
    columns the statement mentions, so SQLAlchemy sees a single FROM entry per
    table. References are either ``"column"`` (bound to the default table) or
    ``"table.column"``.

    Example:
        >>> resolver = ColumnResolver("books", ["title", "authors.id"])
        >>> str(resolver.column("authors.id"))
        'authors.id'
    """

    def __init__(self, default_table: str, references: Iterable[str] = ()):
        self.default_table = default_table
        names: dict[str, dict[str, None]] = {default_table: {}}
        for ref in references:
            table_name, name = self.split(ref)
            if name != "*":
                names.setdefault(table_name, {})[name] = None

        self._tables: dict[str, TableClause] = {
            table_name: table(table_name, *(column(c) for c in cols))
            for table_name, cols in names.items()
        }

    def split(self, ref: str) -> tuple[str, str]:
        table_name, _, name = ref.rpartition(".")
        return table_name or self.default_table, name

    def table(self, name: str | None = None) -> TableClause:
        name = name or self.default_table
        if name not in self._tables:
            self._tables[name] = table(name)
        return self._tables[name]

    def column(self, ref: str) -> ColumnClause[Any]:
        table_name, name = self.split(ref)
        clause = self.table(table_name)
        if name not in clause.c:
            msg = f"Column '{ref}' was not collected for this statement"
            raise KeyError(msg)
        return clause.c[name]


@runtime_checkable
class Clause(Protocol):
    """Protocol for predicate clauses resolvable into SQLAlchemy expressions."""

    boolean: str

    def references(self) -> Iterable[str]:
        """Column references the clause needs bound."""
        ...

    def resolve(self, resolver: ColumnResolver) -> ColumnElement[bool] | None:
        """Resolve the clause into a SQLAlchemy boolean expression."""
        ...


_OPERATORS: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "=": lambda c, v: c == v,
    "==": lambda c, v: c == v,
    "!=": lambda c, v: c != v,
    "<>": lambda c, v: c != v,
    "<": lambda c, v: c < v,
    "<=": lambda c, v: c <= v,
    ">": lambda c, v: c > v,
    ">=": lambda c, v: c >= v,
    "like": lambda c, v: c.like(v),
    "not like": lambda c, v: c.not_like(v),
    "ilike": lambda c, v: c.ilike(v),
    "in": lambda c, v: c.in_(list(v)),
    "not in": lambda c, v: c.not_in(list(v)),
    "is": lambda c, v: c.is_(v),
    "is not": lambda c, v: c.is_not(v),
}

OPERATORS = frozenset(_OPERATORS)


def normalize_operator(operator: str) -> str:
    """
    Lower-case and validate a comparison operator.

    Raises:
        ValueError: If the operator is not supported.
    """
    key = operator.strip().lower()
    if key not in _OPERATORS:
        supported = ", ".join(_OPERATORS)
        msg = f"Unsupported operator '{operator}'. Supported: {supported}"
        raise ValueError(msg)
    return key


def apply_operator(col: Any, operator: str, value: Any) -> ColumnElement[bool]:
    """Apply a comparison operator to a column."""
    return _OPERATORS[normalize_operator(operator)](col, value)


@dataclass(frozen=True)
class Condition:
    """``column <operator> value``."""

    column: str
    operator: str
    value: Any
    boolean: str = AND

    def references(self) -> Iterable[str]:
        return (self.column,)

    def resolve(self, resolver: ColumnResolver) -> ColumnElement[bool]:
        return apply_operator(resolver.column(self.column), self.operator, self.value)


@dataclass(frozen=True)
class InCondition:
    """``column [NOT] IN (values)``."""

    column: str
    values: tuple[Any, ...]
    negated: bool = False
    boolean: str = AND

    def references(self) -> Iterable[str]:
        return (self.column,)

    def resolve(self, resolver: ColumnResolver) -> ColumnElement[bool]:
        col = resolver.column(self.column)
        return col.not_in(self.values) if self.negated else col.in_(self.values)


@dataclass(frozen=True)
class NullCondition:
    """``column IS [NOT] NULL``."""

    column: str
    negated: bool = False
    boolean: str = AND

    def references(self) -> Iterable[str]:
        return (self.column,)

    def resolve(self, resolver: ColumnResolver) -> ColumnElement[bool]:
        col = resolver.column(self.column)
        return col.is_not(None) if self.negated else col.is_(None)


@dataclass(frozen=True)
class Group:
    """A parenthesised set of clauses."""

    clauses: tuple[Clause, ...]
    boolean: str = AND

    def references(self) -> Iterable[str]:
        for clause in self.clauses:
            yield from clause.references()

    def resolve(self, resolver: ColumnResolver) -> ColumnElement[bool] | None:
        return combine(self.clauses, resolver)


def combine(
    clauses: Iterable[Clause], resolver: ColumnResolver
) -> ColumnElement[bool] | None:
    """
    Fold clauses into one expression.

    AND binds tighter than OR, so ``a AND b OR c`` becomes ``(a AND b) OR c``.
    The connector of the first clause is ignored.
    """
    branches: list[list[ColumnElement[bool]]] = []
    for clause in clauses:
        expr = clause.resolve(resolver)
        if expr is None:
            continue
        if not branches or clause.boolean == OR:
            branches.append([expr])
        else:
            branches[-1].append(expr)

    if not branches:
        return None

    conjunctions = [b[0] if len(b) == 1 else and_(*b) for b in branches]
    return conjunctions[0] if len(conjunctions) == 1 else or_(*conjunctions)


def contains_or(clauses: Sequence[Clause]) -> bool:
    """Whether appending an AND clause would change how ``clauses`` group."""
    return any(clause.boolean == OR for clause in clauses[1:])


def clause_references(clauses: Iterable[Clause]) -> list[str]:
    return [ref for clause in clauses for ref in clause.references()]
