"""
core/type_converter.py
----------------------
Declared-type categories and EAV field-type conversion safety.

Every source column type is reduced to a :class:`TypeCategory`. The
analyzer cross-checks that category against the column-name signal,
and the mapper uses it to pick the dynamic field type (number / date /
boolean / json / text) and to flag conversions that can lose data:

    SAFE   – Value survives unchanged (e.g. INT → number).
    LOSSY  – Value survives but may lose precision or form
             (e.g. TIME → date, TINYINT → boolean).
    UNSAFE – Value is likely to fail conversion (e.g. NVARCHAR → number).

Design Decision:
    Pure functions with no side effects make this module trivially testable.
    The classification table encodes domain knowledge as data (sets + a
    simple priority model) rather than a deeply nested if/else tree.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class ConversionSafety(str, Enum):
    SAFE = "safe"
    LOSSY = "lossy"
    UNSAFE = "unsafe"


class TypeCategory(str, Enum):
    INTEGER = "integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    STRING = "string"
    TEXT = "text"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    BINARY = "binary"
    JSON = "json"
    UUID = "uuid"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Type category sets
# ---------------------------------------------------------------------------
_INTEGER_TYPES = frozenset(
    {"tinyint", "smallint", "mediumint", "int", "integer", "bigint",
     "serial", "bigserial", "smallserial", "int2", "int4", "int8"}
)
_DECIMAL_TYPES = frozenset({"decimal", "numeric", "fixed", "money", "smallmoney"})
_FLOAT_TYPES = frozenset({"float", "double", "real", "float4", "float8"})
_STRING_TYPES = frozenset(
    {"char", "varchar", "nchar", "nvarchar", "character", "varchar2", "nvarchar2",
     "enum", "set", "citext"}
)
_TEXT_TYPES = frozenset({"tinytext", "text", "mediumtext", "longtext", "ntext", "clob"})
_DATETIME_TYPES = frozenset(
    {"date", "datetime", "datetime2", "smalldatetime", "datetimeoffset",
     "timestamp", "timestamptz", "time", "year"}
)
_BOOLEAN_TYPES = frozenset({"bit", "bool", "boolean"})
_BINARY_TYPES = frozenset(
    {"binary", "varbinary", "tinyblob", "blob", "mediumblob", "longblob",
     "bytea", "image"}
)
_JSON_TYPES = frozenset({"json", "jsonb"})
_UUID_TYPES = frozenset({"uuid", "uniqueidentifier"})

_CAT_MAP = (
    (TypeCategory.INTEGER, _INTEGER_TYPES),
    (TypeCategory.DECIMAL, _DECIMAL_TYPES),
    (TypeCategory.FLOAT, _FLOAT_TYPES),
    (TypeCategory.STRING, _STRING_TYPES),
    (TypeCategory.TEXT, _TEXT_TYPES),
    (TypeCategory.DATETIME, _DATETIME_TYPES),
    (TypeCategory.BOOLEAN, _BOOLEAN_TYPES),
    (TypeCategory.BINARY, _BINARY_TYPES),
    (TypeCategory.JSON, _JSON_TYPES),
    (TypeCategory.UUID, _UUID_TYPES),
)

NUMERIC_CATEGORIES = frozenset({TypeCategory.INTEGER, TypeCategory.DECIMAL, TypeCategory.FLOAT})
CHARACTER_CATEGORIES = frozenset({TypeCategory.STRING, TypeCategory.TEXT})

# EAV dynamic field types
FIELD_NUMBER = "number"
FIELD_DATE = "date"
FIELD_BOOLEAN = "boolean"
FIELD_JSON = "json"
FIELD_TEXT = "text"

_LENGTH_RE = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")


def get_base_type(dtype_string: str) -> str:
    """
    Extract the base SQL type keyword from a full type definition string.

    Examples::

        get_base_type("NVARCHAR(255) NOT NULL")  →  "nvarchar"
        get_base_type("INT UNSIGNED")            →  "int"
        get_base_type("")                        →  ""
    """
    if not dtype_string or not dtype_string.strip():
        return ""
    return dtype_string.split("(")[0].split()[0].lower()


def get_length(dtype_string: str) -> tuple[int | None, int | None]:
    """Return ``(length_or_precision, scale)`` from e.g. ``DECIMAL(19,6)``."""
    match = _LENGTH_RE.search(dtype_string or "")
    if not match:
        return None, None
    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) else None
    return first, second


def categorize(dtype_string: str) -> TypeCategory:
    """
    Map a declared type to its :class:`TypeCategory`.

    ``TINYINT(1)`` and ``CHAR(1)`` are common boolean encodings; only the
    former is treated as boolean because single-character codes are just
    as often status letters.
    """
    base = get_base_type(dtype_string)
    if base == "tinyint":
        length, _ = get_length(dtype_string)
        if length == 1:
            return TypeCategory.BOOLEAN
    for cat, types in _CAT_MAP:
        if base in types:
            return cat
    return TypeCategory.OTHER


def field_type_for(dtype_string: str) -> str:
    """Return the EAV dynamic field type used to store values of *dtype_string*."""
    cat = categorize(dtype_string)
    if cat in NUMERIC_CATEGORIES:
        return FIELD_NUMBER
    if cat is TypeCategory.DATETIME:
        return FIELD_DATE
    if cat is TypeCategory.BOOLEAN:
        return FIELD_BOOLEAN
    if cat is TypeCategory.JSON:
        return FIELD_JSON
    return FIELD_TEXT


def infer_value_type(value: Any) -> str:
    """Infer the EAV field type of a sampled Python value."""
    if isinstance(value, bool):
        return FIELD_BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return FIELD_NUMBER
    if isinstance(value, (date, datetime)):
        return FIELD_DATE
    if isinstance(value, (dict, list)):
        return FIELD_JSON
    return FIELD_TEXT


def classify_conversion(source_type: str, field_type: str) -> ConversionSafety:
    """
    Classify the safety of storing *source_type* values as *field_type*.

    Args:
        source_type: Declared source column type (whole definition or keyword).
        field_type:  One of the EAV field types (``number``, ``date`` …).

    Examples::

        classify_conversion("INT", "number")           → SAFE
        classify_conversion("TIME", "date")            → LOSSY
        classify_conversion("NVARCHAR(50)", "number")  → UNSAFE
        classify_conversion("VARBINARY(16)", "text")   → LOSSY
    """
    cat = categorize(source_type)
    base = get_base_type(source_type)

    if field_type == FIELD_JSON:
        return ConversionSafety.SAFE

    if field_type == FIELD_TEXT:
        return ConversionSafety.LOSSY if cat is TypeCategory.BINARY else ConversionSafety.SAFE

    if field_type == FIELD_NUMBER:
        if cat in NUMERIC_CATEGORIES or cat is TypeCategory.BOOLEAN:
            return ConversionSafety.SAFE
        return ConversionSafety.UNSAFE

    if field_type == FIELD_DATE:
        if cat is TypeCategory.DATETIME:
            return ConversionSafety.LOSSY if base in ("time", "year") else ConversionSafety.SAFE
        return ConversionSafety.UNSAFE

    if field_type == FIELD_BOOLEAN:
        if cat is TypeCategory.BOOLEAN:
            return ConversionSafety.SAFE
        if cat is TypeCategory.INTEGER or cat is TypeCategory.STRING:
            return ConversionSafety.LOSSY
        return ConversionSafety.UNSAFE

    return ConversionSafety.UNSAFE
