"""
Settings for Flash Record connections.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RecordSettings(BaseSettings):
    """
    Connection settings read from the environment or a `.env` file.

    Example:
        >>> settings = RecordSettings(DATABASE_URL="sqlite+aiosqlite:///app.db")
        >>> settings.DEFAULT_CONNECTION
        'default'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Database Core ---
    DATABASE_URL: str | None = None
    DATABASE_ECHO: bool = False
    DEFAULT_CONNECTION: str = "default"

    # --- Pooling (ignored for SQLite) ---
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # --- SQLite ---
    SQLITE_FOREIGN_KEYS: bool = True

    @model_validator(mode="after")
    def validate_pool(self) -> "RecordSettings":
        """Reject pool settings the engine cannot honour."""
        if self.DB_POOL_SIZE < 1:
            raise ValueError("DB_POOL_SIZE must be at least 1.")
        if self.DB_MAX_OVERFLOW < 0:
            raise ValueError("DB_MAX_OVERFLOW cannot be negative.")
        return self

    def engine_options(self) -> dict[str, int]:
        return {
            "pool_size": self.DB_POOL_SIZE,
            "max_overflow": self.DB_MAX_OVERFLOW,
        }
