"""
models/records.py
-----------------
Rows as handed to a ``TargetWriter``.

Every record carries the ``migration_id`` that wrote it (the rollback
handle) and an upsert ``key`` built from the organisation and source
coordinates, so replaying a batch overwrites instead of duplicating.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Target EAV tables the engine writes to
ENTITY_TABLE = "core_entities"
METADATA_TABLE = "core_metadata"
DYNAMIC_TABLE = "core_dynamic_data"
RELATIONSHIP_TABLE = "core_relationships"
REQUIRED_TARGET_TABLES = (ENTITY_TABLE, METADATA_TABLE, DYNAMIC_TABLE, RELATIONSHIP_TABLE)


@dataclass
class EntityRecord:
    organization_id: str
    migration_id: str
    entity_type: str
    source_table: str
    source_key: str
    entity_code: str
    entity_name: str | None = None
    identity: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    dynamic: dict[str, Any] = field(default_factory=dict)
    references: dict[str, tuple[str, str]] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.organization_id, self.source_table, self.source_key)


@dataclass
class RelationshipRecord:
    organization_id: str
    migration_id: str
    relationship_type: str
    source_table: str
    source_key: str
    from_table: str
    from_key: str
    to_table: str
    to_key: str

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.organization_id, self.source_table, self.source_key)


@dataclass
class BusinessRuleRecord:
    organization_id: str
    migration_id: str
    source_table: str
    rule_name: str
    rule_type: str
    target_rule: str
    enforcement: str = "advisory"

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.organization_id, self.source_table, self.rule_name)
