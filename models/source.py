"""
models/source.py
----------------
Raw structural description of a source table as reported by a
``SourceReader``. The analyzer turns these into enriched, immutable
descriptors (see ``models/schema.py``).
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceColumn:
    name: str
    data_type: str
    nullable: bool = True
    default: str | None = None
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    is_identity: bool = False
    computed_expression: str | None = None
    is_unique: bool = False


@dataclass(frozen=True)
class SourceForeignKey:
    column: str
    target_table: str
    target_column: str
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"


@dataclass(frozen=True)
class SourceIndex:
    name: str
    columns: tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class SourceConstraint:
    """CHECK / UNIQUE / DEFAULT constraint as declared in the source."""
    name: str
    kind: str
    expression: str
    columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class SourceTrigger:
    name: str
    timing: str
    event: str
    body: str = ""


@dataclass(frozen=True)
class SourceTable:
    name: str
    columns: tuple[SourceColumn, ...]
    schema: str = "dbo"
    primary_key: tuple[str, ...] = ()
    foreign_keys: tuple[SourceForeignKey, ...] = ()
    indexes: tuple[SourceIndex, ...] = ()
    constraints: tuple[SourceConstraint, ...] = ()
    triggers: tuple[SourceTrigger, ...] = ()
