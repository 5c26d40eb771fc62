from __future__ import annotations

from typing import (
    Any,
    Mapping,
    Sequence,
)

from .execution import QueryBuilderExecution, T


class QueryBuilderWrite(QueryBuilderExecution[T]):
    """
    Operations that modify data in the database.

    Bulk UPDATE and DELETE run directly against the rows matched by the
    builder's predicates; they never go through model ``save()``/``delete()``
    and so never stamp timestamps or soft-delete.
    """

    async def insert(self, values: Mapping[str, Any]) -> Any:
        """
        Insert one row and return its primary key when the store reports one.

        Example:
            >>> key = await Book.query().insert({"title": "Dune", "author_id": 1})
            # INSERT INTO books (title, author_id) VALUES ('Dune', 1)
        """
        return await self.get_connection().execute_insert(
            self._spec.table, values, self.meta.primary_key
        )

    async def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert rows that share the same columns in one statement."""
        return await self.get_connection().execute_insert_many(self._spec.table, rows)

    async def update(self, values: Mapping[str, Any]) -> int:
        """
        Execute a bulk update on the matched rows.

        Returns:
            The number of rows affected.

        Raises:
            ValueError: If the builder has no predicates, to prevent accidental
                full-table updates.

        Example:
            >>> await Book.query().where("author_id", 1).update({"draft": False})
            # UPDATE books SET draft=0 WHERE books.author_id = 1
        """
        # Safety check: update() without where() could rewrite a whole table.
        if not self._spec.wheres:
            msg = "Refusing to update without filters"
            raise ValueError(msg)
        spec = self.to_spec()
        return await self.get_connection().execute_update(
            spec.table, spec.wheres, values
        )

    async def delete(self) -> int:
        """
        Delete the matched rows. This is always a hard delete.

        Raises:
            ValueError: If the builder has no predicates, to prevent accidental
                full-table deletions.

        Example:
            >>> await Book.query().where("draft", True).delete()
            # DELETE FROM books WHERE books.draft = 1
        """
        # Safety check: delete() without where() could wipe an entire table.
        if not self._spec.wheres:
            msg = "Refusing to delete without filters"
            raise ValueError(msg)
        spec = self.to_spec()
        return await self.get_connection().execute_delete(spec.table, spec.wheres)

    async def truncate(self) -> None:
        """Remove every row of the model's table."""
        await self.get_connection().execute_truncate(self._spec.table)
