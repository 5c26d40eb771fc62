from __future__ import annotations

from .has_one_or_many import HasOneOrMany, R


class HasOne(HasOneOrMany[R]):
    """
    One related row holds the parent's key.

    Resolves to the related model or None.

    Example:
        >>> class Author(Model):
        ...     @relation
        ...     def profile(self):
        ...         return self.one_to_one(Profile)
        >>> profile = await author.related("profile")
        # SELECT * FROM profiles WHERE profiles.author_id = 1 LIMIT 1
    """

    many = False
