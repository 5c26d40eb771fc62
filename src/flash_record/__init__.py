from .collection import Collection, collect
from .config import RecordSettings
from .connection import Connection
from .db import ConnectionRegistry, close_db, connections, create_engine, init_db
from .exceptions import (
    ConnectionUnavailableError,
    FlashRecordError,
    NotFoundError,
    RelationMisconfigurationError,
)
from .models import Model, ModelMeta, SoftDeleteMixin, TimestampMixin, relation
from .query import QueryBuilder
from .query_spec import QuerySpec, SoftDeleteMode
from .relations import BelongsTo, BelongsToMany, HasMany, HasOne, Relation
from .scopes import GlobalScope, ScopeRegistry, scope, scope_registry
from .transaction import atomic
from .validator import ModelValidator

__all__ = [
    "BelongsTo",
    "BelongsToMany",
    "Collection",
    "Connection",
    "ConnectionRegistry",
    "ConnectionUnavailableError",
    "FlashRecordError",
    "GlobalScope",
    "HasMany",
    "HasOne",
    "Model",
    "ModelMeta",
    "ModelValidator",
    "NotFoundError",
    "QueryBuilder",
    "QuerySpec",
    "RecordSettings",
    "Relation",
    "RelationMisconfigurationError",
    "ScopeRegistry",
    "SoftDeleteMixin",
    "SoftDeleteMode",
    "TimestampMixin",
    "atomic",
    "close_db",
    "collect",
    "connections",
    "create_engine",
    "init_db",
    "relation",
    "scope",
    "scope_registry",
]
