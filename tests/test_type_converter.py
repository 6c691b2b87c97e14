"""
tests/test_type_converter.py
-----------------------------
Unit tests for core/type_converter.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from core.type_converter import (
    ConversionSafety,
    TypeCategory,
    categorize,
    classify_conversion,
    field_type_for,
    get_base_type,
    get_length,
    infer_value_type,
)


class TestBaseTypeAndLength:
    @pytest.mark.parametrize("definition, expected", [
        ("NVARCHAR(255) NOT NULL", "nvarchar"),
        ("INT UNSIGNED", "int"),
        ("numeric(19,6)", "numeric"),
        ("", ""),
        ("   ", ""),
    ])
    def test_base_type(self, definition: str, expected: str) -> None:
        assert get_base_type(definition) == expected

    def test_length_and_scale(self) -> None:
        assert get_length("NUMERIC(19,6)") == (19, 6)
        assert get_length("NUMERIC( 19 , 6 )") == (19, 6)
        assert get_length("NVARCHAR(15)") == (15, None)
        assert get_length("INT") == (None, None)


class TestCategorize:
    @pytest.mark.parametrize("definition, category", [
        ("INT", TypeCategory.INTEGER),
        ("BIGINT", TypeCategory.INTEGER),
        ("NUMERIC(19,6)", TypeCategory.DECIMAL),
        ("MONEY", TypeCategory.DECIMAL),
        ("FLOAT", TypeCategory.FLOAT),
        ("NVARCHAR(100)", TypeCategory.STRING),
        ("NTEXT", TypeCategory.TEXT),
        ("DATETIME", TypeCategory.DATETIME),
        ("BIT", TypeCategory.BOOLEAN),
        ("VARBINARY(16)", TypeCategory.BINARY),
        ("JSON", TypeCategory.JSON),
        ("UNIQUEIDENTIFIER", TypeCategory.UUID),
        ("GEOGRAPHY", TypeCategory.OTHER),
    ])
    def test_categories(self, definition: str, category: TypeCategory) -> None:
        assert categorize(definition) is category

    def test_tinyint_one_is_boolean(self) -> None:
        assert categorize("TINYINT(1)") is TypeCategory.BOOLEAN
        assert categorize("TINYINT") is TypeCategory.INTEGER

    def test_char_one_is_not_boolean(self) -> None:
        assert categorize("CHAR(1)") is TypeCategory.STRING


class TestFieldTypes:
    @pytest.mark.parametrize("definition, field_type", [
        ("INT", "number"),
        ("DECIMAL(10,2)", "number"),
        ("DATETIME", "date"),
        ("BIT", "boolean"),
        ("JSON", "json"),
        ("NVARCHAR(50)", "text"),
        ("GEOGRAPHY", "text"),
    ])
    def test_field_type_for(self, definition: str, field_type: str) -> None:
        assert field_type_for(definition) == field_type

    @pytest.mark.parametrize("value, field_type", [
        (True, "boolean"),
        (3, "number"),
        (Decimal("1.5"), "number"),
        (date(2024, 1, 1), "date"),
        (datetime(2024, 1, 1, 12), "date"),
        ({"a": 1}, "json"),
        ("abc", "text"),
        (None, "text"),
    ])
    def test_infer_value_type(self, value, field_type: str) -> None:
        assert infer_value_type(value) == field_type


class TestClassifyConversion:
    def test_numeric_to_number_safe(self) -> None:
        assert classify_conversion("INT", "number") is ConversionSafety.SAFE
        assert classify_conversion("NUMERIC(19,6)", "number") is ConversionSafety.SAFE

    def test_string_to_number_unsafe(self) -> None:
        assert classify_conversion("NVARCHAR(50)", "number") is ConversionSafety.UNSAFE

    def test_everything_to_text_safe_except_binary(self) -> None:
        assert classify_conversion("DATETIME", "text") is ConversionSafety.SAFE
        assert classify_conversion("VARBINARY(16)", "text") is ConversionSafety.LOSSY

    def test_time_to_date_lossy(self) -> None:
        assert classify_conversion("TIME", "date") is ConversionSafety.LOSSY
        assert classify_conversion("DATE", "date") is ConversionSafety.SAFE

    def test_to_boolean(self) -> None:
        assert classify_conversion("BIT", "boolean") is ConversionSafety.SAFE
        assert classify_conversion("CHAR(1)", "boolean") is ConversionSafety.LOSSY
        assert classify_conversion("DATETIME", "boolean") is ConversionSafety.UNSAFE

    def test_json_accepts_anything(self) -> None:
        assert classify_conversion("NVARCHAR(10)", "json") is ConversionSafety.SAFE

    def test_unknown_field_type_unsafe(self) -> None:
        assert classify_conversion("INT", "geometry") is ConversionSafety.UNSAFE
