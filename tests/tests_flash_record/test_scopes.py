import pytest
from flash_record import GlobalScope, ScopeRegistry

from .models import Author, Book, MinimumPagesScope

pytestmark = pytest.mark.asyncio


def us_only(query):
    return query.where("country", "US")


class TestScopeRegistry:
    """Tests for registering and removing global scopes."""

    async def test_add_get_and_remove(self):
        """Should register scopes in order and forget removed ones."""
        registry = ScopeRegistry()
        registry.add_global_scope(Author, us_only)
        registry.add_global_scope(Author, lambda q: q, "noop")

        assert list(registry.get_global_scopes(Author)) == ["us_only", "noop"]
        assert registry.has_global_scope(Author, us_only)
        assert registry.remove_global_scope(Author, "us_only") is True
        assert registry.remove_global_scope(Author, "us_only") is False
        assert list(registry.get_global_scopes(Author)) == ["noop"]

    async def test_get_returns_a_copy(self):
        """Should not expose the registry's internal mapping."""
        registry = ScopeRegistry()
        registry.add_global_scope(Author, us_only)
        registry.get_global_scopes(Author).clear()
        assert registry.has_global_scope(Author, "us_only")

    async def test_scope_objects_are_keyed_by_class(self):
        """Should replace a scope object of the same class."""
        registry = ScopeRegistry()
        first = registry.add_global_scope(Book, MinimumPagesScope(100))
        second = registry.add_global_scope(Book, MinimumPagesScope(200))

        assert first is second is MinimumPagesScope
        assert registry.get_global_scopes(Book)[MinimumPagesScope].pages == 200
        assert registry.remove_global_scope(Book, MinimumPagesScope()) is True

    async def test_anonymous_callables_need_a_name(self):
        """Should refuse lambdas registered without a name."""
        with pytest.raises(ValueError):
            ScopeRegistry().add_global_scope(Author, lambda q: q)

    async def test_non_callables_are_rejected(self):
        """Should only accept GlobalScope objects and callables."""
        with pytest.raises(TypeError):
            ScopeRegistry().add_global_scope(Author, "country = 'US'")

    async def test_scopes_are_per_model_class(self):
        """Should not share scopes between models."""
        Author.add_global_scope(us_only)
        assert "us_only" in Author.get_global_scopes()
        assert Book.get_global_scopes() == {}

    async def test_clear_single_model(self):
        """Should forget the scopes of one model only."""
        registry = ScopeRegistry()
        registry.add_global_scope(Author, us_only)
        registry.add_global_scope(Book, MinimumPagesScope())
        registry.clear(Author)

        assert registry.get_global_scopes(Author) == {}
        assert registry.has_global_scope(Book, MinimumPagesScope)


class TestGlobalScopeQueries:
    """Tests for global scopes against real rows."""

    async def test_scope_filters_every_query(self, library):
        """Should apply the scope to reads and aggregates."""
        Book.add_global_scope(MinimumPagesScope(300))

        assert sorted((await Book.all()).pluck("title")) == ["B", "C"]
        assert await Book.query().count() == 2
        assert await Book.find(library["books"][0].id) is None

    async def test_scope_applies_to_relations(self, library):
        """Should constrain relation queries on the scoped model."""
        Book.add_global_scope(MinimumPagesScope(300))
        ursula = library["authors"][0]

        assert (await ursula.books()).pluck("title") == ["B"]
        authors = await Author.with_count("books").order_by("id").get()
        assert authors.pluck("books_count") == [1, 1]

    async def test_excluded_scope_is_skipped(self, library):
        """Should return every row when the scope is excluded."""
        Book.add_global_scope(MinimumPagesScope(300))

        query = Book.query().without_global_scope(MinimumPagesScope)
        assert await query.count() == 3
        assert await Book.query().without_global_scopes().count() == 3

    async def test_excluding_one_scope_keeps_the_others(self, library):
        """Should keep filtering by every scope that was not excluded."""
        orphan = await Book.create(title="D", pages=250)
        Book.add_global_scope(MinimumPagesScope(200))
        Book.add_global_scope(lambda q: q.where("pages", "<=", 400), "capped")
        Book.add_global_scope(lambda q: q.where_not_null("author_id"), "owned")
        a, b, c = library["books"]

        async def keys(query):
            return (await query.order_by("id").get()).model_keys()

        assert list(Book.get_global_scopes()) == [MinimumPagesScope, "capped", "owned"]
        assert await keys(Book.query()) == [b.id]
        assert await keys(Book.query().without_global_scope("capped")) == [b.id, c.id]
        assert await keys(Book.query().without_global_scope("owned")) == [
            b.id,
            orphan.id,
        ]
        assert await keys(Book.query().without_global_scope(MinimumPagesScope)) == [
            a.id,
            b.id,
        ]

    async def test_removed_scope_no_longer_applies(self, library):
        """Should stop filtering once removed."""
        Book.add_global_scope(MinimumPagesScope(300))
        assert Book.remove_global_scope(MinimumPagesScope)
        assert await Book.query().count() == 3

    async def test_instance_writes_ignore_scopes(self, library):
        """Should save and delete rows the scope would hide."""
        Book.add_global_scope(MinimumPagesScope(300))
        short = library["books"][0]

        short.title = "Short"
        await short.save()
        await short.delete()

        stored = await Book.with_trashed().without_global_scopes().find(short.id)
        assert stored.title == "Short"
        assert stored.trashed()

    async def test_scope_returning_none_is_an_error(self, library):
        """Should reject scopes that forget to return the query."""

        class Forgetful(GlobalScope):
            def apply(self, query):
                query.where("pages", ">", 0)

        Book.add_global_scope(Forgetful())
        with pytest.raises(TypeError, match="Forgetful"):
            await Book.query().get()


class TestLocalScopes:
    """Tests for local scopes against real rows."""

    async def test_local_scope_with_arguments(self, library):
        """Should pass arguments through to the scope."""
        assert (await Book.long().get()).pluck("title") == ["B", "C"]
        assert (await Book.long(500).get()).pluck("title") == ["C"]
        assert (await Book.query().titled("A").get()).pluck("title") == ["A"]

    async def test_local_and_global_scopes_combine(self, library):
        """Should AND local scope predicates with global ones."""
        Book.add_global_scope(lambda q: q.where("author_id", "!=", None), "owned")
        orphan = await Book.create(title="Z", pages=900)

        titles = (await Book.long(500).order_by("pages").get()).pluck("title")
        assert titles == ["C"]
        assert (await Book.with_trashed().find(orphan.id)) is None
