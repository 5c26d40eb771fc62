import pytest
from flash_record import atomic
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncTransaction

from .models import Author, Book, Tag

pytestmark = pytest.mark.asyncio


class TestAtomic:
    """Tests for transaction blocks."""

    async def test_commit_on_success(self, db):
        """Should persist everything written inside the block."""
        async with atomic(db):
            author = await Author.create(name="Ursula")
            await author.books().create(title="A")

        assert await Author.query().count() == 1
        assert await Book.query().count() == 1

    async def test_rollback_on_error(self, db):
        """Should discard every write of a failed block."""
        with pytest.raises(RuntimeError):
            async with atomic(db):
                await Author.create(name="Ursula")
                raise RuntimeError("boom")

        assert await Author.query().count() == 0

    async def test_statements_share_the_pinned_connection(self, db):
        """Should read uncommitted writes inside the same block."""
        async with atomic(db):
            await Tag.create(name="inside")
            assert db.active_connection() is not None
            assert await Tag.where("name", "inside").exists()

        assert db.active_connection() is None

    async def test_decorator(self, db):
        """Should run the decorated coroutine in its own transaction."""

        @atomic(db)
        async def create_pair(fail: bool):
            await Tag.create(name="first")
            if fail:
                raise ValueError("second failed")
            await Tag.create(name="second")

        with pytest.raises(ValueError):
            await create_pair(True)
        assert await Tag.query().count() == 0

        await create_pair(False)
        assert await Tag.query().count() == 2

    async def test_connection_transaction_helper(self, db):
        """Should open the same kind of block from the connection."""
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await Tag.create(name="gone")
                raise RuntimeError

        assert await Tag.query().count() == 0

    async def test_failed_begin_releases_the_connection(self, db, monkeypatch):
        """Should unpin and close the connection when BEGIN fails."""
        closed = []
        close = AsyncConnection.close

        async def failing_start(self, is_ctxmanager=False):
            raise RuntimeError("begin failed")

        async def tracking_close(self):
            closed.append(self)
            await close(self)

        monkeypatch.setattr(AsyncTransaction, "start", failing_start)
        monkeypatch.setattr(AsyncConnection, "close", tracking_close)

        with pytest.raises(RuntimeError, match="begin failed"):
            async with atomic(db):
                pass

        assert len(closed) == 1
        assert closed[0].closed
        assert db.active_connection() is None


class TestConstraintViolations:
    """Tests for errors raised by the database."""

    async def test_unique_violation_propagates(self, db):
        """Should surface IntegrityError from the driver unchanged."""
        await Tag.create(name="dup")
        with pytest.raises(IntegrityError):
            await Tag.create(name="dup")

    async def test_foreign_key_violation_propagates(self, db):
        """Should enforce SQLite foreign keys."""
        with pytest.raises(IntegrityError):
            await Book.create(title="Ghost", author_id=404)

    async def test_failed_insert_leaves_model_unpersisted(self, db):
        """Should keep exists False when the insert fails."""
        await Tag.create(name="dup")
        tag = Tag(name="dup")
        with pytest.raises(IntegrityError):
            await tag.save()
        assert not tag.exists
