from __future__ import annotations

from functools import wraps
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ParamSpec, Self, TypeVar

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from contextvars import Token
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncConnection

    from .connection import Connection

P = ParamSpec("P")
T = TypeVar("T")


class Atomic:
    """
    Async transaction manager with nested transaction support.

    Works as:
    - async context manager
    - decorator

    Automatically:
    - begins a transaction on a dedicated connection
    - routes every statement issued inside the block through that connection
    - commits on success
    - rolls back on exception
    - uses SAVEPOINT when already inside a transaction

    Args:
        connection: The Flash Record connection to run the block on.

    Examples:
        >>> async with atomic(connections.get()):
        ...     await author.save()
        ...     await author.books().create({"title": "Dune"})

        >>> @atomic(connections.get())
        ... async def publish():
        ...     await Book.query().where("draft", True).update({"draft": False})
    """

    def __init__(self, connection: Connection):
        self.connection = connection
        self._cm: AbstractAsyncContextManager[Any] | None = None
        self._owned: AsyncConnection | None = None
        self._token: Token[AsyncConnection | None] | None = None

    async def __aenter__(self) -> Self:
        active = self.connection.active_connection()
        if active is not None and active.in_transaction():
            # Already inside a transaction, use a SAVEPOINT.
            self._cm = active.begin_nested()
        else:
            self._owned = await self.connection.engine.connect()
            self._token = self.connection.pin(self._owned)
            self._cm = self._owned.begin()

        try:
            await self._cm.__aenter__()
        except BaseException:
            self._cm = None
            await self._release()
            raise
        return self

    async def _release(self) -> None:
        if self._token is not None:
            self.connection.unpin(self._token)
            self._token = None
        if self._owned is not None:
            await self._owned.close()
            self._owned = None

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """
        Exit transaction block.

        Behavior:
            - commit if no exception
            - rollback if exception raised
        """
        try:
            if self._cm:
                await self._cm.__aexit__(exc_type, exc, tb)
        finally:
            await self._release()

    def __call__(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """
        Allow usage as a decorator.

        Every call of the wrapped coroutine runs in its own transaction.
        """

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            async with Atomic(self.connection):
                return await func(*args, **kwargs)

        return wrapper


def atomic(connection: Connection) -> Atomic:
    """
    Factory helper for creating an Atomic manager.

    Examples:
        >>> async with atomic(Author.get_connection()):
        ...     await do_work()
    """
    return Atomic(connection)
