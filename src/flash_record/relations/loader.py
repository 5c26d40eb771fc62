"""
Batched eager loading of relations and relation counts.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

from flash_record.collection import Collection

if TYPE_CHECKING:
    from flash_record.models import Model

logger = logging.getLogger(__name__)


def parse_relations(names: Iterable[str]) -> dict[str, list[str]]:
    """
    Split dotted relation names into first segments and their nested rest.

    Example:
        >>> parse_relations(["books.reviews", "books.tags", "profile"])
        {'books': ['reviews', 'tags'], 'profile': []}
    """
    tree: dict[str, list[str]] = {}
    for name in names:
        head, _, rest = name.partition(".")
        nested = tree.setdefault(head, [])
        if rest and rest not in nested:
            nested.append(rest)
    return tree


def _children(models: Iterable[Model], name: str) -> list[Any]:
    children: list[Any] = []
    for model in models:
        value = model.get_relation(name)
        if isinstance(value, Collection):
            children.extend(value)
        elif value is not None:
            children.append(value)
    return children


async def load_relations(models: Iterable[Model], names: Iterable[str]) -> None:
    """
    Eager load ``names`` onto ``models``, one relation at a time.

    Each first segment costs one query for the whole batch; nested segments
    recurse into the loaded children.

    Raises:
        RelationMisconfigurationError: If a name is not a relation of the model.
    """
    models = list(models)
    if not models:
        return

    for name, nested in parse_relations(names).items():
        relation = models[0].new_relation(name)
        await relation.eager_load_relation(models, name)
        if nested:
            children = _children(models, name)
            if children:
                logger.debug(f"Loading {nested} below '{name}'")
                await load_relations(children, nested)


async def load_counts(models: Iterable[Model], names: Iterable[str]) -> None:
    """
    Count ``names`` for every model into ``<name>_count`` attributes.

    Raises:
        RelationMisconfigurationError: If a name is not a relation of the model.
    """
    models = list(models)
    if not models:
        return

    for name in dict.fromkeys(names):
        relation = models[0].new_relation(name)
        await relation.eager_load_count(models, name)
