from __future__ import annotations

from .has_one_or_many import HasOneOrMany, R


class HasMany(HasOneOrMany[R]):
    """
    Many related rows hold the parent's key.

    Resolves to a Collection, empty when nothing matches.

    Example:
        >>> class Author(Model):
        ...     @relation
        ...     def books(self):
        ...         return self.one_to_many(Book)
        >>> books = await author.related("books")
        # SELECT * FROM books WHERE books.author_id = 1
    """

    many = True
