from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RecordLike(Protocol):
    """
    The narrow view of a parent row that relations depend on.

    Relations read join keys from their parents and write results back into
    the parents' relation caches; they never need the full model type.
    """

    exists: bool

    def get_attribute(self, key: str, default: Any = None) -> Any: ...

    def get_key(self) -> Any: ...

    def get_relation(self, name: str) -> Any: ...

    def set_relation(self, name: str, value: Any) -> None: ...

    def relation_loaded(self, name: str) -> bool: ...

    def set_computed(self, key: str, value: Any) -> None: ...


@runtime_checkable
class PersistentRecord(RecordLike, Protocol):
    """A parent row that relation helpers may also modify and save."""

    def set_attribute(self, key: str, value: Any) -> None: ...

    def unset_relation(self, name: str) -> None: ...

    async def save(self) -> Any: ...
