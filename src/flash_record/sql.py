"""
Compilation of QuerySpec values into SQLAlchemy Core statements.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from sqlalchemy import (
    Select,
    column,
    delete,
    func,
    insert,
    literal,
    literal_column,
    select,
    table,
    update,
)

from .expressions import ColumnResolver, clause_references, combine

if TYPE_CHECKING:
    from sqlalchemy.sql import ColumnElement, Delete, FromClause, Insert, Update

    from .expressions import Clause
    from .query_spec import Join, QuerySpec

AGGREGATE_LABEL = "aggregate_value"
GROUP_LABEL = "group_key"
AGGREGATES = ("count", "sum", "avg", "min", "max")


def resolver_for(spec: QuerySpec, *extra: str | None) -> ColumnResolver:
    """Collect every column reference of ``spec`` into one resolver."""
    refs: list[str] = clause_references(spec.wheres)
    refs.extend(order.column for order in spec.orders)
    refs.extend(selection.column for selection in spec.columns)
    for join in spec.joins:
        refs.append(join.first)
        refs.append(_joined_column(join))
    refs.extend(ref for ref in extra if ref)
    return ColumnResolver(spec.table, refs)


def _joined_column(join: Join) -> str:
    return join.second if "." in join.second else f"{join.table}.{join.second}"


def _from_clause(spec: QuerySpec, resolver: ColumnResolver) -> FromClause:
    source: FromClause = resolver.table()
    for join in spec.joins:
        source = source.join(
            resolver.table(join.table),
            resolver.column(join.first) == resolver.column(_joined_column(join)),
        )
    return source


def _selected(spec: QuerySpec, resolver: ColumnResolver) -> list[Any]:
    if not spec.columns:
        # Joined queries only ever return the main table's row.
        return [literal_column(f"{spec.table}.*" if spec.joins else "*")]

    selected: list[Any] = []
    for selection in spec.columns:
        if selection.column.endswith("*"):
            selected.append(literal_column(selection.column))
            continue
        col = resolver.column(selection.column)
        selected.append(col.label(selection.alias) if selection.alias else col)
    return selected


def _where(
    stmt: Any, clauses: Sequence[Clause], resolver: ColumnResolver
) -> Any:
    predicate = combine(clauses, resolver)
    return stmt.where(predicate) if predicate is not None else stmt


def build_select(spec: QuerySpec) -> Select[Any]:
    """
    Build the SELECT statement for ``spec``.

    Example:
        >>> spec = QuerySpec("books", wheres=(Condition("author_id", "=", 1),))
        >>> stmt = build_select(spec)
        # SELECT * FROM books WHERE books.author_id = :author_id_1
    """
    resolver = resolver_for(spec)
    stmt = select(*_selected(spec, resolver)).select_from(_from_clause(spec, resolver))
    stmt = _where(stmt, spec.wheres, resolver)

    for order in spec.orders:
        col = resolver.column(order.column)
        stmt = stmt.order_by(col.desc() if order.direction == "desc" else col.asc())
    if spec.limit is not None:
        stmt = stmt.limit(spec.limit)
    if spec.offset is not None:
        stmt = stmt.offset(spec.offset)
    return stmt


def build_aggregate(
    spec: QuerySpec,
    fn: str = "count",
    column_ref: str | None = None,
    group_by: str | None = None,
) -> Select[Any]:
    """
    Build an aggregate over the rows matched by ``spec``.

    The aggregate is labelled ``aggregate_value``; with ``group_by`` the group
    value is selected as ``group_key``. Paginated queries are wrapped in
    a subquery so LIMIT/OFFSET apply before aggregation.
    """
    fn = fn.lower()
    if fn not in AGGREGATES:
        msg = f"Unsupported aggregate '{fn}'. Supported: {', '.join(AGGREGATES)}"
        raise ValueError(msg)

    if spec.paginated:
        if group_by is not None:
            msg = "Grouped aggregates cannot be combined with limit/offset"
            raise ValueError(msg)
        inner = build_select(spec).subquery()
        target = literal_column(column_ref.rpartition(".")[2]) if column_ref else None
        return select(_aggregate(fn, target).label(AGGREGATE_LABEL)).select_from(inner)

    resolver = resolver_for(spec, column_ref, group_by)
    target = resolver.column(column_ref) if column_ref else None
    selected: list[Any] = []
    if group_by is not None:
        selected.append(resolver.column(group_by).label(GROUP_LABEL))
    selected.append(_aggregate(fn, target).label(AGGREGATE_LABEL))

    stmt = select(*selected).select_from(_from_clause(spec, resolver))
    stmt = _where(stmt, spec.wheres, resolver)
    if group_by is not None:
        stmt = stmt.group_by(resolver.column(group_by))
    return stmt


def _aggregate(fn: str, target: ColumnElement[Any] | None) -> ColumnElement[Any]:
    if target is None:
        if fn != "count":
            msg = f"Aggregate '{fn}' requires a column"
            raise ValueError(msg)
        return func.count()
    return getattr(func, fn)(target)


def build_insert(
    table_name: str,
    values: Mapping[str, Any] | Iterable[str],
    *,
    returning: str | None = None,
) -> Insert:
    """INSERT for ``values`` (a row, or just the column names for executemany)."""
    names = list(values.keys()) if isinstance(values, Mapping) else list(values)
    if returning is not None and returning not in names:
        target = table(table_name, *(column(name) for name in [*names, returning]))
    else:
        target = table(table_name, *(column(name) for name in names))

    stmt = insert(target)
    if isinstance(values, Mapping) and values:
        stmt = stmt.values(_bound(values))
    if returning is not None:
        stmt = stmt.returning(target.c[returning])
    return stmt


def build_update(
    table_name: str, predicate: Sequence[Clause], values: Mapping[str, Any]
) -> Update:
    resolver = ColumnResolver(table_name, [*clause_references(predicate), *values])
    stmt = update(resolver.table()).values(
        {resolver.column(key): bound for key, bound in _bound(values).items()}
    )
    return _where(stmt, predicate, resolver)


def build_delete(table_name: str, predicate: Sequence[Clause]) -> Delete:
    resolver = ColumnResolver(table_name, clause_references(predicate))
    return _where(delete(resolver.table()), predicate, resolver)


def _bound(values: Mapping[str, Any]) -> dict[str, Any]:
    # Columns are untyped; bind types follow the Python values.
    return {key: literal(value) for key, value in values.items()}
