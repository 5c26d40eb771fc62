import pytest
from flash_record import (
    ConnectionRegistry,
    ConnectionUnavailableError,
    RecordSettings,
    close_db,
    connections,
    init_db,
)

from .models import Author

pytestmark = pytest.mark.asyncio

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


class TestConnectionRegistry:
    """Tests for named connections."""

    async def test_add_get_and_close(self):
        """Should register, look up and dispose connections."""
        registry = ConnectionRegistry()
        conn = registry.add("default", MEMORY_URL)

        assert registry.get() is conn
        assert registry.get("default") is conn
        assert "default" in registry
        assert len(registry) == 1
        assert conn.dialect_name == "sqlite"

        await registry.close_all()
        assert len(registry) == 0

    async def test_unknown_connection_raises(self):
        """Should raise ConnectionUnavailableError for unknown names."""
        registry = ConnectionRegistry()
        with pytest.raises(ConnectionUnavailableError, match="not configured"):
            registry.get("reporting")
        with pytest.raises(LookupError):
            registry.set_default("reporting")

    async def test_set_default(self):
        """Should switch the connection used when no name is given."""
        registry = ConnectionRegistry()
        registry.add("default", MEMORY_URL)
        reporting = registry.add("reporting", MEMORY_URL)

        registry.set_default("reporting")

        assert registry.default == "reporting"
        assert registry.get() is reporting
        await registry.close_all()

    async def test_close_single_connection(self):
        """Should dispose only the named connection."""
        registry = ConnectionRegistry()
        registry.add("a", MEMORY_URL)
        registry.add("b", MEMORY_URL)

        await registry.close("a")
        await registry.close("missing")

        assert "a" not in registry
        assert "b" in registry
        await registry.close_all()


class TestInitDb:
    """Tests for the process-wide registry helpers."""

    async def test_models_need_a_connection(self):
        """Should fail clearly before init_db() is called."""
        await close_db()
        with pytest.raises(ConnectionUnavailableError, match="init_db"):
            await Author.query().count()

    async def test_init_db_registers_default(self):
        """Should register the default connection used by models."""
        conn = init_db(MEMORY_URL)
        try:
            assert connections.get() is conn
            assert Author.get_connection() is conn
        finally:
            await close_db()

    async def test_init_db_reads_settings(self):
        """Should take the URL and connection name from settings."""
        settings = RecordSettings(
            _env_file=None, DATABASE_URL=MEMORY_URL, DEFAULT_CONNECTION="main"
        )
        conn = init_db(settings=settings)
        try:
            assert conn.name == "main"
            assert connections.default == "main"
        finally:
            await close_db()

    async def test_init_db_without_url_raises(self, monkeypatch):
        """Should refuse to start without any database URL."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ConnectionUnavailableError):
            init_db(settings=RecordSettings(_env_file=None))

    async def test_named_connection_does_not_replace_default(self):
        """Should keep the default when registering another name."""
        default = init_db(MEMORY_URL)
        other = init_db(MEMORY_URL, name="reporting")
        try:
            assert connections.get() is default
            assert connections.get("reporting") is other
        finally:
            await close_db()
