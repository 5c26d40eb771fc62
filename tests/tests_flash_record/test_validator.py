import logging

import pytest
from flash_record import Model
from flash_record.validator import ModelValidator

from .models import Author, Book


class ValidModel(Model):
    __tablename__ = "valid"


class NotAModel:
    pass


class KeylessColumns(Model):
    __tablename__ = "keyless"
    __columns__ = ("name",)


class Drifted(Model):
    __tablename__ = "authors"
    __columns__ = ("id", "name", "nickname")


class Missing(Model):
    __tablename__ = "no_such_table"
    __columns__ = ("id", "title")


class TestModelValidator:
    def test_validate_model_with_valid_model(self):
        """Test that a valid model passes validation."""
        assert ModelValidator.validate_model(ValidModel) == ValidModel

    def test_validate_model_with_non_class(self):
        """Test that a non-class raises TypeError."""
        with pytest.raises(TypeError, match="model must be a class"):
            ModelValidator.validate_model(123)  # type: ignore[arg-type]

    def test_validate_model_with_non_model_subclass(self):
        """Test that a non-Model subclass raises TypeError."""
        with pytest.raises(TypeError, match="model must be a Model subclass"):
            ModelValidator.validate_model(NotAModel)  # type: ignore[arg-type]

    def test_validate_model_abstract(self):
        """Test that an abstract Model raises TypeError."""

        class AbstractBase(Model):
            __abstract__ = True

        with pytest.raises(TypeError, match="is abstract"):
            ModelValidator.validate_model(AbstractBase)

    def test_validate_model_warns_about_undeclared_key(self, caplog):
        """Test that a primary key missing from __columns__ is logged."""
        with caplog.at_level(logging.WARNING, logger="flash_record.validator"):
            ModelValidator.validate_model(KeylessColumns)
        assert "does not declare its primary key" in caplog.text


@pytest.mark.asyncio
class TestColumnValidation:
    """Tests for comparing declared columns with the live schema."""

    async def test_matching_models_have_no_missing_columns(self, db):
        """Should report nothing for models matching their tables."""
        assert await ModelValidator.validate_columns(Author) == []
        assert await ModelValidator.validate_columns(Book) == []

    async def test_missing_columns_are_reported(self, db, caplog):
        """Should list declared columns the table lacks."""
        with caplog.at_level(logging.WARNING, logger="flash_record.validator"):
            missing = await ModelValidator.validate_columns(Drifted)

        assert missing == ["nickname"]
        assert "nickname" in caplog.text

    async def test_missing_table_reports_every_column(self, db):
        """Should treat every declared column as missing."""
        assert await ModelValidator.validate_columns(Missing) == ["id", "title"]
