"""
connectors/memory.py
--------------------
In-memory source and target connectors.

Used for tests, dry runs and as the reference behaviour every concrete
connector must match (cursor pagination, upsert-by-key, delete by
migration id).
"""
from __future__ import annotations

import bisect
import threading
from dataclasses import replace
from typing import Any, Iterable, Mapping, Sequence

from connectors.base import Row, SourceReader, TargetWriter, UnresolvedReference, row_key_getter
from core.errors import ConnectivityError, TargetWriteError
from logger import get_logger
from models.records import (
    REQUIRED_TARGET_TABLES,
    BusinessRuleRecord,
    EntityRecord,
    RelationshipRecord,
)
from models.source import SourceTable

log = get_logger(__name__)


def _sortable(key: Any) -> Any:
    """NULLs sort first inside composite keys, like ``ORDER BY ... NULLS FIRST``."""
    if isinstance(key, tuple):
        return tuple((v is not None, v) for v in key)
    return key


class InMemorySource(SourceReader):
    """
    Source backed by ``SourceTable`` definitions and lists of row dicts.

    Args:
        tables:     Table definitions in schema order.
        rows:       Optional ``{table: [row, ...]}``.
        row_counts: Optional reported counts for tables without rows.
        reachable:  When False, ``connect()`` raises ConnectivityError.
    """

    def __init__(
        self,
        tables: Iterable[SourceTable],
        rows: Mapping[str, list[Row]] | None = None,
        row_counts: Mapping[str, int] | None = None,
        name: str = "memory",
        reachable: bool = True,
    ) -> None:
        self.name = name
        self._tables = {t.name: t for t in tables}
        self._rows = {k: list(v) for k, v in (rows or {}).items()}
        self._row_counts = dict(row_counts or {})
        self._reachable = reachable
        self._connected = False
        self._sorted: dict[tuple[str, str], tuple[list[Any], list[Row]]] = {}
        self._lock = threading.Lock()

    def connect(self) -> None:
        if not self._reachable:
            raise ConnectivityError(f"Source '{self.name}' is not reachable.")
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise ConnectivityError(f"Source '{self.name}' is not connected. Call connect() first.")

    def _table(self, table: str) -> SourceTable:
        try:
            return self._tables[table]
        except KeyError:
            raise KeyError(f"Unknown source table '{table}'") from None

    def list_tables(self) -> list[str]:
        self._ensure_connected()
        return list(self._tables)

    def describe_table(self, table: str) -> SourceTable:
        self._ensure_connected()
        return self._table(table)

    def count_rows(self, table: str) -> int:
        self._ensure_connected()
        self._table(table)
        if table in self._rows:
            return len(self._rows[table])
        return self._row_counts.get(table, 0)

    def sample_rows(self, table: str, limit: int) -> list[Row]:
        self._ensure_connected()
        return [dict(r) for r in self._rows.get(table, [])[:limit]]

    def _sorted_rows(self, table: str, order_key: str) -> tuple[list[Any], list[Row]]:
        with self._lock:
            cached = self._sorted.get((table, order_key))
            if cached is None:
                key_of = row_key_getter(order_key)
                ordered = sorted(self._rows.get(table, []), key=lambda r: _sortable(key_of(r)))
                cached = ([_sortable(key_of(r)) for r in ordered], ordered)
                self._sorted[(table, order_key)] = cached
            return cached

    def read_batch(self, table: str, order_key: str, after_key: Any, limit: int) -> list[Row]:
        self._ensure_connected()
        keys, ordered = self._sorted_rows(table, order_key)
        if isinstance(after_key, list):
            after_key = tuple(after_key)
        start = 0 if after_key is None else bisect.bisect_right(keys, _sortable(after_key))
        return [dict(r) for r in ordered[start:start + limit]]


class InMemoryTarget(TargetWriter):
    """
    Thread-safe EAV target kept in dictionaries keyed by record ``key``.

    Args:
        tables: EAV tables that "exist"; leave one out to simulate a
                missing target schema.
    """

    def __init__(self, tables: Iterable[str] = REQUIRED_TARGET_TABLES, name: str = "memory") -> None:
        self.name = name
        self.tables = set(tables)
        self.entities: dict[tuple[str, str, str], EntityRecord] = {}
        self.relationships: dict[tuple[str, str, str], RelationshipRecord] = {}
        self.business_rules: dict[tuple[str, str, str], BusinessRuleRecord] = {}
        self.indexed_entity_types: list[str] = []
        self.write_calls = 0
        self._lock = threading.Lock()

    def missing_tables(self, required: Iterable[str]) -> list[str]:
        return [t for t in required if t not in self.tables]

    def _check_writable(self, table: str) -> None:
        if table not in self.tables:
            raise TargetWriteError(f"Target table '{table}' does not exist.")

    def upsert_entities(self, records: Sequence[EntityRecord]) -> int:
        with self._lock:
            self._check_writable("core_entities")
            self.write_calls += 1
            for record in records:
                self.entities[record.key] = replace(record)
        return len(records)

    def upsert_relationships(self, records: Sequence[RelationshipRecord]) -> int:
        with self._lock:
            self._check_writable("core_relationships")
            self.write_calls += 1
            for record in records:
                self.relationships[record.key] = replace(record)
        return len(records)

    def record_business_rules(self, records: Sequence[BusinessRuleRecord]) -> int:
        with self._lock:
            for record in records:
                self.business_rules[record.key] = replace(record)
        return len(records)

    def refresh_indexes(self, entity_types: Iterable[str]) -> None:
        with self._lock:
            for entity_type in entity_types:
                if entity_type not in self.indexed_entity_types:
                    self.indexed_entity_types.append(entity_type)

    @staticmethod
    def _matches(record: Any, migration_id: str | None, source_table: str | None) -> bool:
        if migration_id is not None and record.migration_id != migration_id:
            return False
        if source_table is not None and record.source_table != source_table:
            return False
        return True

    def count_entities(self, migration_id: str | None = None, source_table: str | None = None) -> int:
        with self._lock:
            return sum(1 for r in self.entities.values() if self._matches(r, migration_id, source_table))

    def count_relationships(
        self, migration_id: str | None = None, source_table: str | None = None
    ) -> int:
        with self._lock:
            return sum(
                1 for r in self.relationships.values() if self._matches(r, migration_id, source_table)
            )

    def unresolved_references(self, migration_id: str) -> list[UnresolvedReference]:
        with self._lock:
            known: set[tuple[str, str]] = set()
            for r in self.entities.values():
                known.add((r.source_table, r.source_key))
                known.add((r.source_table, r.entity_code))
            missing: list[UnresolvedReference] = []
            for r in self.entities.values():
                if r.migration_id != migration_id:
                    continue
                for field_name, (target_table, target_key) in sorted(r.references.items()):
                    if (target_table, target_key) not in known:
                        missing.append((r.source_table, r.source_key, field_name, target_table, target_key))
            for r in self.relationships.values():
                if r.migration_id != migration_id:
                    continue
                for table, key in ((r.from_table, r.from_key), (r.to_table, r.to_key)):
                    if (table, key) not in known:
                        missing.append((r.source_table, r.source_key, "relationship", table, key))
            return missing

    def delete_migration_rows(
        self, migration_id: str, source_tables: Iterable[str] | None = None
    ) -> int:
        tables = set(source_tables) if source_tables is not None else None
        deleted = 0
        with self._lock:
            stores = [self.entities, self.relationships]
            if tables is None:
                stores.append(self.business_rules)
            for store in stores:
                doomed = [
                    k for k, r in store.items()
                    if r.migration_id == migration_id and (tables is None or r.source_table in tables)
                ]
                for k in doomed:
                    del store[k]
                deleted += len(doomed)
        log.debug("Deleted %d row(s) tagged %s from in-memory target.", deleted, migration_id)
        return deleted

    def delete_business_rules(
        self, migration_id: str, source_tables: Iterable[str] | None = None
    ) -> int:
        tables = set(source_tables) if source_tables is not None else None
        with self._lock:
            doomed = [
                k for k, r in self.business_rules.items()
                if r.migration_id == migration_id and (tables is None or r.source_table in tables)
            ]
            for k in doomed:
                del self.business_rules[k]
        return len(doomed)
