from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import update_wrapper
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    Hashable,
    Iterable,
    TypeVar,
)

if TYPE_CHECKING:
    from .models import Model
    from .query import QueryBuilder

logger = logging.getLogger(__name__)

Q = TypeVar("Q", bound="QueryBuilder[Any]")


class GlobalScope(ABC):
    """
    A predicate applied to every query of the models it is registered on.

    Without an explicit name a scope is keyed by its class, so every
    instance of one scope class shares a key.

    Example:
        >>> class PublishedScope(GlobalScope):
        ...     def apply(self, query):
        ...         return query.where("published", True)
        >>> Book.add_global_scope(PublishedScope())
    """

    @abstractmethod
    def apply(self, query: Q) -> Q:
        """Return ``query`` constrained by this scope."""


ScopeCallable = Callable[[Any], Any]
Scope = GlobalScope | ScopeCallable


def call_scope(scope: Scope, query: Q) -> Q:
    applied = scope.apply(query) if isinstance(scope, GlobalScope) else scope(query)
    if applied is None:
        msg = f"Scope {scope_label(scope)} must return the query it was given"
        raise TypeError(msg)
    return applied


def scope_label(scope: Scope) -> str:
    if isinstance(scope, GlobalScope):
        return type(scope).__name__
    return getattr(scope, "__name__", repr(scope))


def scope_key(scope: Any, name: str | None = None) -> Hashable:
    """
    Resolve the registry key of ``scope``.

    Explicit names win; ``GlobalScope`` instances are keyed by their class and
    plain callables by ``__name__``. Keys that are already names or scope
    classes pass through unchanged.

    Raises:
        ValueError: For lambdas registered without a name.
    """
    if name is not None:
        return name
    if isinstance(scope, GlobalScope):
        return type(scope)
    if isinstance(scope, (str, type)):
        return scope
    if callable(scope):
        key = getattr(scope, "__name__", None)
        if not key or key == "<lambda>":
            msg = "Anonymous scope callables need an explicit name"
            raise ValueError(msg)
        return key
    return scope


class ScopeRegistry:
    """
    Global scopes per model class, in registration order.

    Models find their registry through the ``__scope_registry__`` class
    attribute, which defaults to the module-level :data:`scope_registry`.
    Registrations are keyed by class identity, so subclasses do not see the
    scopes of their parents.

    Example:
        >>> registry = ScopeRegistry()
        >>> registry.add_global_scope(Book, lambda q: q.where("draft", False), "live")
        >>> registry.remove_global_scope(Book, "live")
        True
    """

    def __init__(self) -> None:
        self._scopes: dict[type, dict[Hashable, Scope]] = {}

    def add_global_scope(
        self, model: type[Model], scope: Scope, name: str | None = None
    ) -> Hashable:
        """Register ``scope`` for ``model`` and return its key."""
        if not isinstance(scope, GlobalScope) and not callable(scope):
            msg = (
                "Global scopes must be GlobalScope instances or callables, "
                f"got {type(scope).__name__}"
            )
            raise TypeError(msg)

        key = scope_key(scope, name)
        self._scopes.setdefault(model, {})[key] = scope
        logger.debug(f"Registered global scope {key!r} on {model.__name__}")
        return key

    def remove_global_scope(self, model: type[Model], key: Any) -> bool:
        """Unregister a scope by name, class or instance. Returns False if absent."""
        scopes = self._scopes.get(model)
        resolved = scope_key(key)
        if not scopes or resolved not in scopes:
            return False
        del scopes[resolved]
        return True

    def get_global_scopes(self, model: type[Model]) -> dict[Hashable, Scope]:
        return dict(self._scopes.get(model, {}))

    def has_global_scope(self, model: type[Model], key: Any) -> bool:
        return scope_key(key) in self._scopes.get(model, {})

    def apply_global_scopes(
        self,
        query: Q,
        model: type[Model],
        excluded: Iterable[Hashable] = (),
        *,
        skip_all: bool = False,
    ) -> Q:
        """
        Apply every non-excluded scope of ``model`` to ``query`` in order.

        Predicates added by one scope are grouped so they cannot regroup the
        predicates already on the query.
        """
        if skip_all:
            return query
        skipped = set(excluded)
        for key, scope in self._scopes.get(model, {}).items():
            if key in skipped:
                continue
            query = query.apply_scope(lambda q, s=scope: call_scope(s, q))
        return query

    def clear(self, model: type[Model] | None = None) -> None:
        """Forget the scopes of ``model``, or of every model."""
        if model is None:
            self._scopes.clear()
        else:
            self._scopes.pop(model, None)


scope_registry = ScopeRegistry()


class LocalScope(Generic[Q]):
    """
    A named, opt-in query transform declared on a model.

    Created by the :func:`scope` decorator. The model collects it into
    ``__scopes__`` and its query builder exposes it as a method. Accessed on
    the model class it starts a fresh query.
    """

    def __init__(self, func: Callable[..., Q]):
        self.func = func
        self.name = func.__name__
        update_wrapper(self, func)  # type: ignore[arg-type]

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __call__(self, query: Q, *args: Any, **kwargs: Any) -> Q:
        result = self.func(query, *args, **kwargs)
        if result is None:
            msg = f"Local scope '{self.name}' must return the query it was given"
            raise TypeError(msg)
        return result

    def __get__(self, instance: Any, owner: type[Model]) -> Callable[..., Any]:
        def start(*args: Any, **kwargs: Any) -> Any:
            return self(owner.query(), *args, **kwargs)

        start.__name__ = self.name
        return start


def scope(func: Callable[..., Q]) -> LocalScope[Q]:
    """
    Declare a local scope on a model.

    Example:
        >>> class Book(Model):
        ...     __tablename__ = "books"
        ...
        ...     @scope
        ...     def long(query, pages=300):
        ...         return query.where("pages", ">=", pages)
        >>> await Book.query().long(500).get()
        >>> await Book.long().get()
    """
    return LocalScope(func)
