import logging
from typing import Type, TypeVar

from sqlalchemy import inspect

from .models import Model

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="Model")


class ModelValidator:
    """Validates that a class is a proper Model and matches its table."""

    @staticmethod
    def validate_model(model: Type[T]) -> Type[T]:
        """
        Validate that the provided class is a concrete Model subclass.

        Raises:
            TypeError: If model is not a Model subclass or missing required attributes.
        """
        if not isinstance(model, type):
            raise TypeError(f"model must be a class, got {type(model).__name__}")

        if not issubclass(model, Model):
            raise TypeError(
                f"model must be a Model subclass, got {model.__name__}. "
                f"Make sure '{model.__name__}' inherits from flash_record.Model"
            )

        if model.__dict__.get("__abstract__") or not hasattr(model, "__meta__"):
            raise TypeError(
                f"Model {model.__name__} is abstract and has no table. "
                f"Declare __tablename__ on a concrete subclass."
            )

        meta = model.__meta__
        if meta.columns and meta.primary_key not in meta.columns:
            logger.warning(
                f"Model {model.__name__} does not declare its primary key "
                f"'{meta.primary_key}' in __columns__. "
                f"This may cause issues with pk-based lookups."
            )

        return model

    @staticmethod
    async def validate_columns(model: Type[T]) -> list[str]:
        """
        Compare the declared columns of ``model`` with its live table.

        Returns:
            Declared columns missing from the table, or every declared column
            when the table itself does not exist.

        Example:
            >>> missing = await ModelValidator.validate_columns(Book)
            >>> assert not missing
        """
        meta = ModelValidator.validate_model(model).__meta__
        engine = model.get_connection().engine

        def _table_columns(sync_conn) -> list[str] | None:
            inspector = inspect(sync_conn)
            if not inspector.has_table(meta.table):
                return None
            return [col["name"] for col in inspector.get_columns(meta.table)]

        async with engine.connect() as conn:
            existing = await conn.run_sync(_table_columns)

        if existing is None:
            logger.warning(f"Table '{meta.table}' for {model.__name__} does not exist")
            return list(meta.columns)

        missing = [col for col in meta.columns if col not in existing]
        if missing:
            logger.warning(
                f"Model {model.__name__} declares columns missing from "
                f"'{meta.table}': {', '.join(missing)}"
            )
        return missing
