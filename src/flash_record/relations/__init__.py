from .base import Relation
from .belongs_to import BelongsTo
from .belongs_to_many import BelongsToMany
from .has_many import HasMany
from .has_one import HasOne
from .has_one_or_many import HasOneOrMany
from .loader import load_counts, load_relations, parse_relations

__all__ = [
    "BelongsTo",
    "BelongsToMany",
    "HasMany",
    "HasOne",
    "HasOneOrMany",
    "Relation",
    "load_counts",
    "load_relations",
    "parse_relations",
]
