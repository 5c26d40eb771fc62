import pytest
import pytest_asyncio
from flash_record import close_db, init_db, scope_registry

from .models import Author, Book, Tag, metadata

DATABASE_URL = "sqlite+aiosqlite:///:memory:"  # in-memory DB for tests


@pytest_asyncio.fixture(scope="function")
async def db():
    """Initialize a fresh database and the default connection for one test."""
    connection = init_db(DATABASE_URL, echo=False)

    # Create all tables
    async with connection.engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield connection

    await close_db()


@pytest.fixture(autouse=True)
def clear_scopes():
    """Forget global scopes registered by a test."""
    yield
    scope_registry.clear()


@pytest_asyncio.fixture()
async def library(db):  # noqa: ARG001
    """
    Two authors with three books.

    Author 1 ("Ursula") wrote "A" (120 pages) and "B" (340 pages); author 2
    ("Frank") wrote "C" (600 pages).
    """
    ursula = await Author.create({"name": "Ursula", "country": "US"})
    frank = await Author.create({"name": "Frank", "country": "US"})
    a = await Book.create({"title": "A", "pages": 120, "author_id": ursula.id})
    b = await Book.create({"title": "B", "pages": 340, "author_id": ursula.id})
    c = await Book.create({"title": "C", "pages": 600, "author_id": frank.id})
    return {"authors": [ursula, frank], "books": [a, b, c]}


@pytest_asyncio.fixture()
async def tags(db):  # noqa: ARG001
    return [await Tag.create({"name": name}) for name in ("one", "two", "three")]
