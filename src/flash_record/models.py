from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ClassVar,
    Hashable,
    Iterable,
    Mapping,
    Self,
    TypeVar,
)

from pydantic_core import to_json

from .collection import Collection
from .db import ConnectionRegistry, connections
from .exceptions import FlashRecordError, RelationMisconfigurationError
from .query import QueryBuilder
from .relations import BelongsTo, BelongsToMany, HasMany, HasOne, Relation
from .relations.loader import load_relations
from .scopes import LocalScope, Scope, ScopeRegistry, scope_registry

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


def snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class ModelMeta:
    """Static metadata of a model, assembled once when the class is created."""

    model: str
    table: str
    primary_key: str = "id"
    columns: tuple[str, ...] = ()
    connection: str | None = None
    timestamps: bool = False
    soft_deletes: bool = False
    created_at: str = "created_at"
    updated_at: str = "updated_at"
    deleted_at: str = "deleted_at"
    dates: tuple[str, ...] = ()
    relations: tuple[str, ...] = ()
    scopes: tuple[str, ...] = ()


def as_datetime(value: Any) -> Any:
    """
    Read a stored date value as an aware datetime.

    SQLite hands back ISO strings. Naive values are taken to be UTC, the zone
    :meth:`Model.fresh_timestamp` writes in. ``None`` passes through.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def relation(method: Callable[..., Relation[Any]]) -> Callable[..., Relation[Any]]:
    """
    Declare a relation. The method name is the relation name.

    Example:
        >>> class Author(Model):
        ...     __tablename__ = "authors"
        ...
        ...     @relation
        ...     def books(self):
        ...         return self.one_to_many(Book)
    """

    @wraps(method)
    def wrapper(self: Model, *args: Any, **kwargs: Any) -> Relation[Any]:
        result = method(self, *args, **kwargs)
        if not isinstance(result, Relation):
            msg = (
                f"{type(self).__name__}.{method.__name__}() must return a relation, "
                f"got {type(result).__name__}"
            )
            raise RelationMisconfigurationError(msg)
        return result.named(method.__name__)

    wrapper.__flash_relation__ = True  # type: ignore[attr-defined]
    return wrapper


def _collect(cls: type) -> tuple[dict[str, Callable[..., Any]], dict[str, LocalScope]]:
    relations: dict[str, Callable[..., Any]] = {}
    scopes: dict[str, LocalScope] = {}
    for klass in reversed(cls.__mro__):
        for name, value in vars(klass).items():
            if getattr(value, "__flash_relation__", False):
                relations[name] = value
            elif isinstance(value, LocalScope):
                scopes[name] = value
    return relations, scopes


def _scope_method(local: LocalScope) -> Callable[..., Any]:
    def method(self: QueryBuilder[Any], *args: Any, **kwargs: Any) -> Any:
        return local(self, *args, **kwargs)

    method.__name__ = local.name
    method.__doc__ = local.__doc__
    return method


def _builder_for(cls: type[Model], scopes: Mapping[str, LocalScope]) -> type:
    base = cls.__query_builder__
    methods: dict[str, Any] = {}
    for name, local in scopes.items():
        if hasattr(base, name):
            msg = (
                f"Local scope '{name}' on {cls.__name__} clashes with "
                f"{base.__name__}.{name}"
            )
            raise TypeError(msg)
        methods[name] = _scope_method(local)
    return type(f"{cls.__name__}QueryBuilder", (base,), methods)


class Model:
    """
    Base class for all Active Record models.

    Each instance is one row: it owns its attributes, knows whether it has
    been persisted, and saves, deletes and restores itself. Configuration is
    declared with class attributes and frozen into ``__meta__`` when the class
    is created.

    Attribute values are read and written as ``model.title`` or
    ``model["title"]``; use item access for columns whose names collide with
    model methods.

    Example:
        >>> class Book(Model):
        ...     __tablename__ = "books"
        ...     __columns__ = ("id", "title", "author_id")
        ...
        ...     @relation
        ...     def author(self):
        ...         return self.many_to_one(Author)
        >>> book = await Book.create({"title": "Dune", "author_id": 1})
        >>> author = await book.related("author")
    """

    __abstract__: ClassVar[bool] = True
    __tablename__: ClassVar[str]
    __primary_key__: ClassVar[str] = "id"
    __columns__: ClassVar[tuple[str, ...]] = ()
    __connection__: ClassVar[str | None] = None
    __timestamps__: ClassVar[bool] = False
    __soft_deletes__: ClassVar[bool] = False
    __created_at__: ClassVar[str] = "created_at"
    __updated_at__: ClassVar[str] = "updated_at"
    __deleted_at__: ClassVar[str] = "deleted_at"
    __dates__: ClassVar[tuple[str, ...]] = ()

    __scope_registry__: ClassVar[ScopeRegistry] = scope_registry
    __connections__: ClassVar[ConnectionRegistry] = connections
    __query_builder__: ClassVar[type[QueryBuilder[Any]]] = QueryBuilder

    __meta__: ClassVar[ModelMeta]
    __relations__: ClassVar[dict[str, Callable[..., Any]]] = {}
    __scopes__: ClassVar[dict[str, LocalScope]] = {}
    __builder_class__: ClassVar[type[QueryBuilder[Any]]]

    exists: bool = False
    pivot: dict[str, Any] | None = None

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        cls.__relations__, cls.__scopes__ = _collect(cls)

        if cls.__dict__.get("__abstract__"):
            return

        table = getattr(cls, "__tablename__", None)
        if not table:
            msg = f"Model {cls.__name__} is missing __tablename__"
            raise TypeError(msg)

        timestamps = issubclass(cls, TimestampMixin) or bool(cls.__timestamps__)
        soft_deletes = issubclass(cls, SoftDeleteMixin) or bool(cls.__soft_deletes__)
        dates = list(cls.__dates__)
        if timestamps:
            dates += [cls.__created_at__, cls.__updated_at__]
        if soft_deletes:
            dates.append(cls.__deleted_at__)

        cls.__meta__ = ModelMeta(
            model=cls.__name__,
            table=table,
            primary_key=cls.__primary_key__,
            columns=tuple(cls.__columns__),
            connection=cls.__connection__,
            timestamps=timestamps,
            soft_deletes=soft_deletes,
            created_at=cls.__created_at__,
            updated_at=cls.__updated_at__,
            deleted_at=cls.__deleted_at__,
            dates=tuple(dict.fromkeys(dates)),
            relations=tuple(cls.__relations__),
            scopes=tuple(cls.__scopes__),
        )
        cls.__builder_class__ = _builder_for(cls, cls.__scopes__)

    def __init__(self, attributes: Mapping[str, Any] | None = None, **kwargs: Any):
        object.__setattr__(self, "_attributes", {})
        object.__setattr__(self, "_original", {})
        object.__setattr__(self, "_relations", {})
        object.__setattr__(self, "_computed", {})
        self.fill(attributes, **kwargs)

    # --- Attribute access ---

    def __getattr__(self, name: str) -> Any:
        if not name.startswith("_"):
            state = self.__dict__
            if name in state.get("_attributes", {}):
                return state["_attributes"][name]
            if name in state.get("_computed", {}):
                return state["_computed"][name]
        msg = f"'{type(self).__name__}' object has no attribute '{name}'"
        raise AttributeError(msg)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self.set_attribute(name, value)

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set_attribute(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self._attributes or key in self._computed

    def __repr__(self) -> str:
        pk = self.get_key_name()
        return f"<{type(self).__name__} {pk}={self.get_key()!r}>"

    def fill(self, attributes: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        """Set several attributes at once."""
        for key, value in {**(attributes or {}), **kwargs}.items():
            self.set_attribute(key, value)
        return self

    def get_attribute(self, key: str, default: Any = None) -> Any:
        if key in self._attributes:
            return self._attributes[key]
        return self._computed.get(key, default)

    def set_attribute(self, key: str, value: Any) -> None:
        """
        Set one attribute.

        Raises:
            FlashRecordError: When changing the primary key of a persisted row.
        """
        pk = self.get_key_name()
        if key == pk and self.exists and self._attributes.get(pk) != value:
            msg = f"The primary key of a persisted {type(self).__name__} cannot change"
            raise FlashRecordError(msg)
        self._attributes[key] = value

    def get_attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._original)
        return self._original.get(key, default)

    def set_computed(self, key: str, value: Any) -> None:
        """Set a value that is readable like an attribute but never persisted."""
        self._computed[key] = value

    def set_pivot(self, pivot: Mapping[str, Any] | None) -> None:
        self.pivot = dict(pivot) if pivot is not None else None

    def get_key_name(self) -> str:
        return type(self).__meta__.primary_key

    def get_key(self) -> Any:
        return self._attributes.get(self.get_key_name())

    def get_dirty(self) -> dict[str, Any]:
        """Attributes changed since the last save or fetch."""
        return {
            key: value
            for key, value in self._attributes.items()
            if key not in self._original or self._original[key] != value
        }

    def is_dirty(self, *keys: str) -> bool:
        dirty = self.get_dirty()
        if not keys:
            return bool(dirty)
        return any(key in dirty for key in keys)

    def sync_original(self) -> None:
        self._original = dict(self._attributes)

    # --- Relation cache ---

    def get_relation(self, name: str) -> Any:
        return self._relations.get(name)

    def set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def unset_relation(self, name: str) -> None:
        self._relations.pop(name, None)

    def get_relations(self) -> dict[str, Any]:
        return dict(self._relations)

    def new_relation(self, name: str) -> Relation[Any]:
        """
        Build relation ``name`` bound to this instance.

        Raises:
            RelationMisconfigurationError: If the model declares no such relation.
        """
        method = type(self).__relations__.get(name)
        if method is None:
            msg = f"Relation '{name}' is not defined on {type(self).__name__}"
            raise RelationMisconfigurationError(msg)
        return method(self)

    async def related(self, name: str) -> Any:
        """
        Resolve relation ``name``, caching the result on the instance.

        A cached value is returned as is until it is unset or the instance is
        refreshed.

        Example:
            >>> books = await author.related("books")
            # SELECT * FROM books WHERE books.author_id = 1
        """
        if name not in self._relations:
            self._relations[name] = await self.new_relation(name).get_results()
        return self._relations[name]

    async def load(self, *names: str) -> Self:
        """
        Eager load relations onto this instance, replacing cached values.

        Example:
            >>> await author.load("books.reviews", "profile")
        """
        await load_relations([self], names)
        return self

    # --- Relation factories ---

    @classmethod
    def default_foreign_key(cls) -> str:
        """The key other tables use to point at this model, e.g. ``author_id``."""
        return f"{snake_case(cls.__name__)}_{cls.__meta__.primary_key}"

    @classmethod
    def check_column(cls, column: str, role: str) -> None:
        """
        Fail fast when ``column`` is not among the declared columns.

        Models without ``__columns__`` accept any column.
        """
        columns = cls.__meta__.columns
        if columns and column not in columns:
            msg = (
                f"{role} '{column}' is not a column of {cls.__name__} "
                f"({cls.__meta__.table}: {', '.join(columns)})"
            )
            raise RelationMisconfigurationError(msg)

    def one_to_one(
        self,
        related: type[M],
        foreign_key: str | None = None,
        local_key: str | None = None,
    ) -> HasOne[M]:
        """The related row holding this model's key, e.g. ``profiles.author_id``."""
        foreign_key = foreign_key or self.default_foreign_key()
        local_key = local_key or self.get_key_name()
        related.check_column(foreign_key, "Foreign key")
        self.check_column(local_key, "Local key")
        return HasOne(self, related, foreign_key, local_key)

    def one_to_many(
        self,
        related: type[M],
        foreign_key: str | None = None,
        local_key: str | None = None,
    ) -> HasMany[M]:
        """The related rows holding this model's key, e.g. ``books.author_id``."""
        foreign_key = foreign_key or self.default_foreign_key()
        local_key = local_key or self.get_key_name()
        related.check_column(foreign_key, "Foreign key")
        self.check_column(local_key, "Local key")
        return HasMany(self, related, foreign_key, local_key)

    def many_to_one(
        self,
        related: type[M],
        foreign_key: str | None = None,
        owner_key: str | None = None,
    ) -> BelongsTo[M]:
        """The row this model points at, e.g. ``books.author_id -> authors.id``."""
        foreign_key = foreign_key or related.default_foreign_key()
        owner_key = owner_key or related.__meta__.primary_key
        self.check_column(foreign_key, "Foreign key")
        related.check_column(owner_key, "Owner key")
        return BelongsTo(self, related, foreign_key, owner_key)

    def many_to_many(
        self,
        related: type[M],
        table: str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
    ) -> BelongsToMany[M]:
        """
        Rows linked through a pivot table.

        The pivot table defaults to both table names, sorted and joined by an
        underscore (``books_tags``); its keys default to each side's
        :meth:`default_foreign_key`.
        """
        meta = type(self).__meta__
        table = table or "_".join(sorted((meta.table, related.__meta__.table)))
        parent_key = parent_key or meta.primary_key
        related_key = related_key or related.__meta__.primary_key
        self.check_column(parent_key, "Parent key")
        related.check_column(related_key, "Related key")
        return BelongsToMany(
            self,
            related,
            table,
            foreign_pivot_key or self.default_foreign_key(),
            related_pivot_key or related.default_foreign_key(),
            parent_key,
            related_key,
        )

    # --- Persistence ---

    def fresh_timestamp(self) -> datetime:
        return datetime.now(timezone.utc)

    def _key_query(self) -> QueryBuilder[Self]:
        """A query on exactly this row, ignoring scopes and soft deletes."""
        key = self.get_key()
        if key is None:
            msg = f"{type(self).__name__} has no primary key value"
            raise FlashRecordError(msg)
        return (
            type(self)
            .query()
            .without_global_scopes()
            .with_trashed()
            .where(self.get_key_name(), key)
        )

    async def save(self) -> Self:
        """
        Insert the row if it is new, otherwise update it by primary key.

        Timestamps are stamped when enabled: inserts fill missing created and
        updated values, updates always refresh the updated value. Updates send
        only dirty attributes.

        Example:
            >>> book = Book(title="Dune")
            >>> await book.save()
            # INSERT INTO books (title) VALUES ('Dune')
            >>> book.title = "Dune Messiah"
            >>> await book.save()
            # UPDATE books SET title='Dune Messiah' WHERE books.id = 1
        """
        if self.exists:
            await self._perform_update()
        else:
            await self._perform_insert()
        self.sync_original()
        return self

    async def _perform_insert(self) -> None:
        meta = type(self).__meta__
        if meta.timestamps:
            now = self.fresh_timestamp()
            for column in (meta.created_at, meta.updated_at):
                if self._attributes.get(column) is None:
                    self._attributes[column] = now

        key = await type(self).query().insert(self.get_attributes())
        if key is None and self.get_key() is None:
            logger.warning(
                f"Insert into '{meta.table}' returned no primary key; "
                f"{type(self).__name__} stays unpersisted"
            )
            return
        if key is not None:
            self._attributes[meta.primary_key] = key
        self.exists = True

    async def _perform_update(self) -> None:
        meta = type(self).__meta__
        if meta.timestamps:
            self._attributes[meta.updated_at] = self.fresh_timestamp()

        dirty = self.get_dirty()
        if not dirty:
            return
        await self._key_query().update(dirty)

    async def update(
        self, attributes: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> Self:
        """Fill and save in one step."""
        return await self.fill(attributes, **kwargs).save()

    async def delete(self) -> bool:
        """
        Delete the row.

        Soft-deletable models only stamp the deleted-at column and stay
        ``exists``; others are removed and stop existing.

        Returns:
            False if the instance was never persisted, True otherwise.
        """
        if not self.exists:
            return False

        meta = type(self).__meta__
        if meta.soft_deletes:
            now = self.fresh_timestamp()
            await self._key_query().update({meta.deleted_at: now})
            self._attributes[meta.deleted_at] = now
            self._original[meta.deleted_at] = now
            return True

        await self._key_query().delete()
        self.exists = False
        return True

    async def force_delete(self) -> bool:
        """Remove the row even from soft-deletable models."""
        if not self.exists:
            return False
        await self._key_query().delete()
        self.exists = False
        return True

    def trashed(self) -> bool:
        meta = type(self).__meta__
        return meta.soft_deletes and self.get_attribute(meta.deleted_at) is not None

    async def restore(self) -> bool:
        """
        Clear the deleted-at column on the row and on the instance.

        Returns:
            False when the model does not soft delete or was never persisted.
        """
        meta = type(self).__meta__
        if not meta.soft_deletes or not self.exists:
            return False
        await self._key_query().update({meta.deleted_at: None})
        self._attributes[meta.deleted_at] = None
        self._original[meta.deleted_at] = None
        return True

    async def refresh(self) -> Self:
        """
        Re-read the row and drop every cached relation and count.

        Raises:
            NotFoundError: If the row no longer exists.
        """
        if not self.exists:
            return self
        fresh = await self._key_query().first_or_fail()
        self._attributes = fresh.get_attributes()
        self._original = fresh.get_attributes()
        self._relations = {}
        self._computed = {}
        return self

    # --- Serialization ---

    def to_dict(self) -> dict[str, Any]:
        """
        Attributes merged with counts and resolved relations.

        Collections serialize element-wise and single models recursively; a
        missing related model serializes as None.
        """
        data: dict[str, Any] = {**self._attributes, **self._computed}
        for name, value in self._relations.items():
            if isinstance(value, Collection):
                data[name] = value.to_dicts()
            elif isinstance(value, Model):
                data[name] = value.to_dict()
            else:
                data[name] = value
        if self.pivot is not None:
            data["pivot"] = dict(self.pivot)
        return data

    def to_json(self) -> str:
        return to_json(self.to_dict()).decode()

    # --- Class-level API ---

    @classmethod
    def hydrate(cls, row: Mapping[str, Any]) -> Self:
        """
        Build a persisted instance from a fetched row.

        Date columns are read back as aware datetimes whatever the driver
        returns for them.
        """
        attributes = dict(row)
        for name in cls.__meta__.dates:
            if name in attributes:
                attributes[name] = as_datetime(attributes[name])

        instance = cls()
        instance._attributes = attributes
        instance.sync_original()
        instance.exists = True
        return instance

    @classmethod
    def new_collection(cls, items: Iterable[Any] | None = None) -> Collection[Any]:
        return Collection(items)

    @classmethod
    def query(cls) -> QueryBuilder[Self]:
        """
        Start a query on this model.

        Example:
            >>> await Book.query().where("pages", ">", 100).get()
        """
        if cls.__dict__.get("__abstract__"):
            msg = f"Cannot query abstract model {cls.__name__}"
            raise TypeError(msg)
        return cls.__builder_class__(cls)

    @classmethod
    async def find(cls, key: Any) -> Self | None:
        return await cls.query().find(key)

    @classmethod
    async def find_or_fail(cls, key: Any) -> Self:
        return await cls.query().find_or_fail(key)

    @classmethod
    async def find_many(cls, keys: Iterable[Any]) -> Collection[Self]:
        return await cls.query().find_many(keys)

    @classmethod
    async def all(cls) -> Collection[Self]:
        return await cls.query().get()

    @classmethod
    async def first(cls, conditions: Mapping[str, Any] | None = None) -> Self | None:
        query = cls.query()
        if conditions:
            query = query.where(conditions)
        return await query.first()

    @classmethod
    async def create(
        cls, attributes: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> Self:
        """
        Instantiate and save a model.

        Example:
            >>> author = await Author.create({"name": "Frank Herbert"})
        """
        return await cls(attributes, **kwargs).save()

    @classmethod
    def where(cls, *args: Any) -> QueryBuilder[Self]:
        return cls.query().where(*args)

    @classmethod
    def with_(cls, *relations: str) -> QueryBuilder[Self]:
        return cls.query().with_(*relations)

    @classmethod
    def with_count(cls, *relations: str) -> QueryBuilder[Self]:
        return cls.query().with_count(*relations)

    @classmethod
    def with_trashed(cls) -> QueryBuilder[Self]:
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls) -> QueryBuilder[Self]:
        return cls.query().only_trashed()

    @classmethod
    def add_global_scope(cls, scope: Scope, name: str | None = None) -> Hashable:
        """
        Apply ``scope`` to every query of this model.

        Example:
            >>> Book.add_global_scope(lambda q: q.where("draft", False), "live")
        """
        return cls.__scope_registry__.add_global_scope(cls, scope, name)

    @classmethod
    def remove_global_scope(cls, key: Any) -> bool:
        return cls.__scope_registry__.remove_global_scope(cls, key)

    @classmethod
    def get_global_scopes(cls) -> dict[Hashable, Scope]:
        return cls.__scope_registry__.get_global_scopes(cls)

    @classmethod
    def get_connection(cls) -> Connection:
        """
        The connection this model runs on.

        Raises:
            ConnectionUnavailableError: If it has not been configured.
        """
        return cls.__connections__.get(cls.__meta__.connection)

    @classmethod
    def describe(cls) -> ModelMeta:
        return cls.__meta__


class TimestampMixin:
    """
    Mixin that stamps `created_at` and `updated_at` on save.

    Example:
        >>> class Post(Model, TimestampMixin):
        ...     __tablename__ = "posts"
    """

    __timestamps__: ClassVar[bool] = True


class SoftDeleteMixin:
    """
    Mixin that turns `delete()` into setting `deleted_at` and hides such rows
    from queries unless asked for.

    Example:
        >>> class Note(Model, SoftDeleteMixin):
        ...     __tablename__ = "notes"
    """

    __soft_deletes__: ClassVar[bool] = True
