from __future__ import annotations

import random
from functools import reduce as _reduce
from typing import (
    Any,
    Callable,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    Mapping,
    Sequence,
    TypeVar,
    overload,
)

from pydantic_core import to_json

T = TypeVar("T")
U = TypeVar("U")

Key = str | Callable[[Any], Any]


def value_of(item: Any, key: Key) -> Any:
    """
    Project ``key`` out of ``item``.

    Works on models (through ``get_attribute``), mappings and plain objects,
    or applies ``key`` when it is callable.
    """
    if callable(key):
        return key(item)
    if hasattr(item, "get_attribute"):
        return item.get_attribute(key)
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class Collection(Generic[T]):
    """
    Ordered, duplicate-permitting container of query results.

    Every transformation returns a new Collection and leaves the receiver
    untouched; only :meth:`each` and :meth:`push` act on the receiver.

    Examples:
        >>> books = await Book.query().get()
        >>> titles = books.filter(lambda b: b.pages > 100).pluck("title")
        >>> books.sort_by("pages", "desc").take(3)
    """

    def __init__(self, items: Iterable[T] | None = None):
        self._items: list[T] = list(items) if items is not None else []

    @classmethod
    def make(cls, items: Iterable[T] | None = None) -> Collection[T]:
        return cls(items)

    # --- Sequence protocol ---

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @overload
    def __getitem__(self, index: int) -> T: ...

    @overload
    def __getitem__(self, index: slice) -> Collection[T]: ...

    def __getitem__(self, index: int | slice) -> T | Collection[T]:
        if isinstance(index, slice):
            return self.__class__(self._items[index])
        return self._items[index]

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Collection):
            return self._items == other._items
        if isinstance(other, (list, tuple)):
            return self._items == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Collection({self._items!r})"

    # --- Access ---

    def all(self) -> list[T]:
        return list(self._items)

    def first(self, default: T | None = None) -> T | None:
        return self._items[0] if self._items else default

    def last(self, default: T | None = None) -> T | None:
        return self._items[-1] if self._items else default

    def count(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def is_not_empty(self) -> bool:
        return bool(self._items)

    def get(self, index: int, default: T | None = None) -> T | None:
        try:
            return self._items[index]
        except IndexError:
            return default

    def find(self, callback: Callable[[T], bool]) -> T | None:
        return next((item for item in self._items if callback(item)), None)

    def find_index(self, callback: Callable[[T], bool]) -> int:
        return next((i for i, item in enumerate(self._items) if callback(item)), -1)

    def contains(self, callback: Callable[[T], bool]) -> bool:
        return self.find_index(callback) != -1

    # --- In-place ---

    def push(self, *items: T) -> Collection[T]:
        self._items.extend(items)
        return self

    def each(self, callback: Callable[[T, int], Any]) -> Collection[T]:
        """Call ``callback(item, index)`` for every item; a ``False`` return stops."""
        for index, item in enumerate(self._items):
            if callback(item, index) is False:
                break
        return self

    # --- Transformations ---

    def concat(self, items: Iterable[T]) -> Collection[T]:
        return self.__class__([*self._items, *items])

    def filter(self, callback: Callable[[T], bool] | None = None) -> Collection[T]:
        if callback is None:
            return self.__class__(item for item in self._items if item)
        return self.__class__(item for item in self._items if callback(item))

    def map(self, callback: Callable[[T], U]) -> Collection[U]:
        return Collection(callback(item) for item in self._items)

    def reduce(self, callback: Callable[[U, T], U], initial: U) -> U:
        return _reduce(callback, self._items, initial)

    def sort(
        self, key: Callable[[T], Any] | None = None, *, reverse: bool = False
    ) -> Collection[T]:
        items = sorted(self._items, key=key, reverse=reverse)  # type: ignore[arg-type]
        return self.__class__(items)

    def sort_by(self, key: Key, direction: str = "asc") -> Collection[T]:
        """
        Sort by a projected key. ``None`` values sort last in either direction.
        """
        present = [item for item in self._items if value_of(item, key) is not None]
        missing = [item for item in self._items if value_of(item, key) is None]
        ordered = sorted(
            present,
            key=lambda item: value_of(item, key),
            reverse=direction.lower() == "desc",
        )
        return self.__class__([*ordered, *missing])

    def reverse(self) -> Collection[T]:
        return self.__class__(reversed(self._items))

    def shuffle(self, seed: int | None = None) -> Collection[T]:
        items = list(self._items)
        random.Random(seed).shuffle(items)
        return self.__class__(items)

    def slice(self, start: int, end: int | None = None) -> Collection[T]:
        return self.__class__(self._items[start:end])

    def take(self, n: int) -> Collection[T]:
        if n < 0:
            return self.take_last(-n)
        return self.slice(0, n)

    def take_last(self, n: int) -> Collection[T]:
        if n <= 0:
            return self.__class__()
        return self.slice(-n)

    def chunk(self, size: int) -> Collection[Collection[T]]:
        if size < 1:
            msg = "Chunk size must be at least 1"
            raise ValueError(msg)
        return Collection(
            self.__class__(self._items[i : i + size])
            for i in range(0, len(self._items), size)
        )

    def flatten(self) -> Collection[Any]:
        """Flatten one level of nested lists, tuples or collections."""
        result: list[Any] = []
        for item in self._items:
            if isinstance(item, (list, tuple, Collection)):
                result.extend(item)
            else:
                result.append(item)
        return Collection(result)

    def pluck(self, key: Key) -> Collection[Any]:
        return Collection(value_of(item, key) for item in self._items)

    def unique(self, key: Key | None = None) -> Collection[Any]:
        """
        Distinct items, or distinct projected values when ``key`` is given.
        First occurrences win and keep their order.
        """
        values = self._items if key is None else [value_of(i, key) for i in self._items]
        seen: list[Any] = []
        hashed: set[Hashable] = set()
        for value in values:
            if isinstance(value, Hashable):
                if value in hashed:
                    continue
                hashed.add(value)
            elif value in seen:
                continue
            seen.append(value)
        return Collection(seen)

    def group_by(self, key: Key) -> dict[Any, Collection[T]]:
        groups: dict[Any, Collection[T]] = {}
        for item in self._items:
            groups.setdefault(value_of(item, key), self.__class__()).push(item)
        return groups

    def key_by(self, key: Key, value: Key | None = None) -> dict[Any, Any]:
        return {
            value_of(item, key): item if value is None else value_of(item, value)
            for item in self._items
        }

    def model_keys(self) -> list[Any]:
        return [item.get_key() for item in self._items]  # type: ignore[attr-defined]

    # --- Aggregates ---

    def sum(self, key: Key | None = None) -> int | float:
        """Sum of the numeric values; anything non-numeric counts as 0."""
        values = self._items if key is None else self.pluck(key).all()
        return sum(value for value in values if _is_number(value))

    def avg(self, key: Key | None = None) -> int | float:
        """Average over every item; 0 for an empty collection."""
        if not self._items:
            return 0
        return self.sum(key) / len(self._items)

    def min(self, key: Key | None = None) -> Any:
        """Smallest numeric value, or None when there is none."""
        values = self._items if key is None else self.pluck(key).all()
        numbers = [value for value in values if _is_number(value)]
        return min(numbers) if numbers else None

    def max(self, key: Key | None = None) -> Any:
        """Largest numeric value, or None when there is none."""
        values = self._items if key is None else self.pluck(key).all()
        numbers = [value for value in values if _is_number(value)]
        return max(numbers) if numbers else None

    # --- Conversion ---

    def to_list(self) -> list[T]:
        """A shallow copy of the items."""
        return list(self._items)

    def to_dicts(self) -> list[Any]:
        """Serialize element-wise through each element's ``to_dict``."""
        return [
            item.to_dict() if hasattr(item, "to_dict") else item for item in self._items
        ]

    def to_json(self) -> str:
        return to_json(self.to_dicts()).decode()


def collect(items: Sequence[T] | Iterable[T] | None = None) -> Collection[T]:
    return Collection(items)
