"""
connectors/base.py
------------------
Capability interfaces the engine depends on.

Design Decisions:
    * The engine never talks to a database driver directly. Concrete
      connectors implement ``SourceReader`` / ``TargetWriter`` and are
      injected by the caller.
    * Both interfaces are context managers so callers can use them with
      ``with`` statements and be guaranteed the connection is closed.
    * Readers raise ``ConnectivityError`` when the source is unreachable;
      writers raise ``TargetWriteError`` for a failed (retryable) write.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Sequence

from models.records import BusinessRuleRecord, EntityRecord, RelationshipRecord
from models.source import SourceTable

Row = dict[str, Any]
# (source_table, source_key, field, target_table, target_key)
UnresolvedReference = tuple[str, str, str, str, str]


def row_key_getter(order_key: str) -> Callable[[Row], Any]:
    """
    Key function for an ordering key; composite keys (``"a, b"``) yield tuples.
    """
    columns = [c.strip() for c in order_key.split(",")]
    if len(columns) == 1:
        return lambda row: row[columns[0]]
    return lambda row: tuple(row[c] for c in columns)


class SourceReader(ABC):
    """Read-only access to a conventional relational source."""

    name: str = "source"

    def __enter__(self) -> "SourceReader":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    @abstractmethod
    def connect(self) -> None:
        """Open the source. Raises ConnectivityError when unreachable."""

    def close(self) -> None:
        """Release the source (no-op by default)."""

    @abstractmethod
    def list_tables(self) -> list[str]:
        ...

    @abstractmethod
    def describe_table(self, table: str) -> SourceTable:
        ...

    @abstractmethod
    def count_rows(self, table: str) -> int:
        ...

    @abstractmethod
    def sample_rows(self, table: str, limit: int) -> list[Row]:
        ...

    @abstractmethod
    def read_batch(
        self, table: str, order_key: str, after_key: Any, limit: int
    ) -> list[Row]:
        """
        Return up to *limit* rows ordered by *order_key* whose key is
        strictly greater than *after_key* (all rows when it is None).
        A comma-joined *order_key* is composite; its cursor is a tuple.
        """


class TargetWriter(ABC):
    """Write access to the universal EAV target."""

    name: str = "target"

    def __enter__(self) -> "TargetWriter":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def connect(self) -> None:
        """Open the target (no-op by default)."""

    def close(self) -> None:
        """Release the target (no-op by default)."""

    @abstractmethod
    def missing_tables(self, required: Iterable[str]) -> list[str]:
        """Return the required EAV tables that do not exist in the target."""

    @abstractmethod
    def upsert_entities(self, records: Sequence[EntityRecord]) -> int:
        """Insert or replace entity records by key; returns rows written."""

    @abstractmethod
    def upsert_relationships(self, records: Sequence[RelationshipRecord]) -> int:
        ...

    @abstractmethod
    def record_business_rules(self, records: Sequence[BusinessRuleRecord]) -> int:
        ...

    @abstractmethod
    def refresh_indexes(self, entity_types: Iterable[str]) -> None:
        ...

    @abstractmethod
    def count_entities(
        self, migration_id: str | None = None, source_table: str | None = None
    ) -> int:
        ...

    @abstractmethod
    def count_relationships(
        self, migration_id: str | None = None, source_table: str | None = None
    ) -> int:
        ...

    @abstractmethod
    def unresolved_references(self, migration_id: str) -> list[UnresolvedReference]:
        ...

    @abstractmethod
    def delete_migration_rows(
        self, migration_id: str, source_tables: Iterable[str] | None = None
    ) -> int:
        """
        Delete rows tagged with *migration_id*.

        Scoped to *source_tables*, only entities and relationships go;
        without a scope the recorded business rules go as well.
        """

    @abstractmethod
    def delete_business_rules(
        self, migration_id: str, source_tables: Iterable[str] | None = None
    ) -> int:
        """Delete recorded business rules only, leaving entities in place."""
