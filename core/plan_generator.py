"""
core/plan_generator.py
----------------------
Builds a phased, batched, rollback-aware ``MigrationPlan`` from a schema
analysis and its entity mapping.

Phase layout::

    pre-validation
      └─ master-data
           └─ transactional-data
                └─ relationships            (junction tables)
                     ├─ business-logic      (advisory rules)
                     └─ indexes
                          └─ post-validation

Design Decisions:
    * Master data is computed to a fixed point: tables without foreign keys,
      plus master/configuration tables whose references all point at master
      tables. Everything else that is not a junction is transactional.
    * Within a phase, tables are grouped into FK waves; a wave only depends
      on earlier waves, so tables of one wave may run in parallel.
    * Batches use the ordering key as a cursor. ``BatchPlan.offset`` is the
      nominal row offset of the batch and is only used for reporting.
"""
from __future__ import annotations

import logging
import math
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from config import CONFIG, MigrationConfig
from core.dependencies import dependency_waves
from core.errors import DependencyUnmetError
from logger import get_logger, log_event
from models.mapping import EntityCategory, EntityMapping, EntityMappingResult
from models.plan import (
    BatchPlan,
    BusinessRuleSpec,
    EmergencyRollback,
    FieldSpec,
    MigrationPhase,
    MigrationPlan,
    PhaseName,
    ReferenceSpec,
    RiskLevel,
    RollbackDescriptor,
    RollbackStep,
    TablePlan,
    TargetConfig,
)
from models.schema import SchemaAnalysisResult, TableDescriptor

if TYPE_CHECKING:
    from core.migration_log import MigrationLog

log = get_logger(__name__)

HIGH_RISK_ROWS = 1_000_000
MEDIUM_RISK_ROWS = 100_000
PHASE_OVERHEAD_SECONDS = 5.0
BATCH_OVERHEAD_SECONDS = 0.01

_P = PhaseName

PHASE_DEPENDENCIES: dict[PhaseName, tuple[PhaseName, ...]] = {
    _P.PRE_VALIDATION: (),
    _P.MASTER_DATA: (_P.PRE_VALIDATION,),
    _P.TRANSACTIONAL_DATA: (_P.MASTER_DATA,),
    _P.RELATIONSHIPS: (_P.MASTER_DATA, _P.TRANSACTIONAL_DATA),
    _P.BUSINESS_LOGIC: (_P.MASTER_DATA, _P.TRANSACTIONAL_DATA, _P.RELATIONSHIPS),
    _P.INDEXES: (_P.MASTER_DATA, _P.TRANSACTIONAL_DATA, _P.RELATIONSHIPS),
    _P.POST_VALIDATION: (
        _P.PRE_VALIDATION, _P.MASTER_DATA, _P.TRANSACTIONAL_DATA,
        _P.RELATIONSHIPS, _P.BUSINESS_LOGIC, _P.INDEXES,
    ),
}

_DESCRIPTIONS: dict[PhaseName, str] = {
    _P.PRE_VALIDATION: "Verify source connectivity, target EAV tables and data quality",
    _P.MASTER_DATA: "Migrate master and configuration entities",
    _P.TRANSACTIONAL_DATA: "Migrate transactional entities that reference master data",
    _P.RELATIONSHIPS: "Migrate junction tables as entity relationships",
    _P.BUSINESS_LOGIC: "Record translated business rules for review (advisory)",
    _P.INDEXES: "Refresh search indexes for migrated entity types",
    _P.POST_VALIDATION: "Verify completeness and referential integrity",
}

_CHECKS: dict[PhaseName, tuple[str, ...]] = {
    _P.PRE_VALIDATION: (
        "source connectivity", "target EAV tables present",
        "data quality gate", "phase dependencies complete",
    ),
    _P.POST_VALIDATION: ("row count completeness", "reference integrity"),
}

_MASTER_CATEGORIES = frozenset({EntityCategory.MASTER, EntityCategory.CONFIGURATION})


def new_migration_id(now: float | None = None) -> str:
    """``migration_<epoch ms>_<6 hex chars>``."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"migration_{millis}_{secrets.token_hex(3)}"


def ordering_key_for(table: TableDescriptor) -> tuple[str, str | None]:
    """
    Cursor and upsert key for *table*, plus a warning when it is not a PK.

    Order of preference: primary key, a unique index or unique column whose
    columns are all NOT NULL, then every column of the table. Fully
    identical rows still share a key under the last option.
    """
    if table.primary_key:
        return ", ".join(table.primary_key), None
    not_null = {c.name for c in table.columns if not c.nullable}
    candidates = [i.columns for i in table.indexes if i.unique and i.columns]
    candidates += [(c.name,) for c in table.columns if c.is_unique]
    for columns in candidates:
        if set(columns) <= not_null:
            key = ", ".join(columns)
            return key, f"No primary key; ordering by unique key '{key}'."
    key = ", ".join(c.name for c in table.columns)
    return key, (
        f"No primary key or unique key; ordering by all columns ({key}). "
        "Identical rows collapse into one entity."
    )


def compute_batches(total_rows: int, batch_size: int) -> list[BatchPlan]:
    """
    ⌈N/B⌉ batches; every batch is full except possibly the last.

    Example::

        compute_batches(2500, 1000) → sizes [1000, 1000, 500]
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    count = math.ceil(total_rows / batch_size) if total_rows > 0 else 0
    return [
        BatchPlan(
            batch_number=n + 1,
            offset=n * batch_size,
            size=min(batch_size, total_rows - n * batch_size),
        )
        for n in range(count)
    ]


def split_phases(
    schema: SchemaAnalysisResult, mapping: EntityMappingResult
) -> dict[PhaseName, list[str]]:
    """Assign each table to master-data, transactional-data or relationships."""
    names = set(schema.table_names)
    junctions = {t.name for t in schema.tables if t.is_junction}

    def refs(table: TableDescriptor) -> set[str]:
        return {r for r in table.referenced_tables if r in names}

    master = {t.name for t in schema.tables if t.name not in junctions and not refs(t)}
    changed = True
    while changed:
        changed = False
        for t in schema.tables:
            if t.name in master or t.name in junctions:
                continue
            m = mapping.get(t.name)
            if m is not None and m.category in _MASTER_CATEGORIES and refs(t) <= master:
                master.add(t.name)
                changed = True

    return {
        _P.MASTER_DATA: [t.name for t in schema.tables if t.name in master],
        _P.TRANSACTIONAL_DATA: [
            t.name for t in schema.tables if t.name not in master and t.name not in junctions
        ],
        _P.RELATIONSHIPS: [t.name for t in schema.tables if t.name in junctions],
    }


class MigrationPlanGenerator:
    """Generates ``MigrationPlan`` objects; holds no state between calls."""

    def __init__(self, config: MigrationConfig | None = None) -> None:
        self.config = config or CONFIG.migration

    def default_target_config(self) -> TargetConfig:
        return TargetConfig(
            organization_id=self.config.organization_id,
            batch_size=self.config.batch_size,
            parallel_workers=self.config.parallel_workers,
            rollback_window_hours=self.config.rollback_window_hours,
            assumed_rows_per_second=self.config.assumed_rows_per_second,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_migration_plan(
        self,
        schema: SchemaAnalysisResult,
        mapping: EntityMappingResult,
        target_config: TargetConfig | None = None,
        migration_log: "MigrationLog | None" = None,
    ) -> MigrationPlan:
        """
        Build the plan.

        Raises:
            DependencyUnmetError: The mapping and the schema disagree on
                                  which tables exist.
        """
        tc = target_config or self.default_target_config()
        self._check_coverage(schema, mapping)

        migration_id = tc.migration_id or new_migration_id()
        created_at = datetime.now(timezone.utc)
        buckets = split_phases(schema, mapping)

        phases: list[MigrationPhase] = []
        for order, name in enumerate(PhaseName, start=1):
            phase = MigrationPhase(
                name=name,
                order=order,
                description=_DESCRIPTIONS[name],
                dependencies=list(PHASE_DEPENDENCIES[name]),
                checks=list(_CHECKS.get(name, ())),
            )
            if name in buckets:
                phase.tables = self._table_plans(
                    name, buckets[name], schema, mapping, tc, migration_id, migration_log,
                )
                phase.entity_types = _distinct(t.entity_type for t in phase.tables)
                phase.risk = _phase_risk(phase, mapping)
                phase.rollback = _data_rollback(phase)
            phases.append(phase)

        migrated = [t for p in phases for t in p.tables]
        rules = [
            BusinessRuleSpec(
                rule_name=r.rule_name, source_table=r.source_table, rule_type=r.rule_type,
                target_rule=r.target_rule, enforcement=r.enforcement,
            )
            for m in mapping for r in m.business_rules
        ]
        by_name = {p.name: p for p in phases}
        business = by_name[_P.BUSINESS_LOGIC]
        business.rules = rules
        business.rollback = RollbackDescriptor(phase=_P.BUSINESS_LOGIC, steps=[
            RollbackStep(order=i, table_name=table, entity_type="",
                         description=f"Remove recorded rules of {table}")
            for i, table in enumerate(reversed(_distinct(r.source_table for r in rules)), start=1)
        ])
        indexes = by_name[_P.INDEXES]
        indexes.entity_types = _distinct(t.entity_type for t in migrated)

        total_rows = sum(t.total_rows for t in migrated)
        total_batches = sum(t.batch_count for t in migrated)
        duration = (
            total_rows / tc.assumed_rows_per_second
            + total_batches * BATCH_OVERHEAD_SECONDS
            + len(phases) * PHASE_OVERHEAD_SECONDS
        )

        risk = max((p.risk for p in phases), key=_RISK_RANK.__getitem__)
        if schema.data_quality.cleanup_required:
            risk = RiskLevel.HIGH

        plan = MigrationPlan(
            migration_id=migration_id,
            organization_id=tc.organization_id,
            source_name=schema.source_name,
            created_at=created_at,
            phases=phases,
            emergency_rollback=EmergencyRollback(
                migration_id=migration_id,
                window_hours=tc.rollback_window_hours,
                deadline=created_at + timedelta(hours=tc.rollback_window_hours),
                description="Delete every target row tagged with this migration id",
            ),
            required_target_tables=list(tc.required_tables),
            estimated_duration_seconds=round(duration, 1),
            complexity=schema.complexity.level if schema.complexity else "low",
            risk=risk,
            data_quality_score=schema.data_quality.score,
            cleanup_required=schema.data_quality.cleanup_required,
            needs_review_tables=[m.source_table for m in mapping if m.needs_review],
        )
        log_event(
            log, logging.INFO, "plan_generated",
            migration_id=migration_id, tables=len(migrated), rows=total_rows,
            batches=total_batches, risk=risk.value, duration_s=plan.estimated_duration_seconds,
        )
        return plan

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_coverage(schema: SchemaAnalysisResult, mapping: EntityMappingResult) -> None:
        schema_tables = set(schema.table_names)
        mapped_tables = {m.source_table for m in mapping}
        missing = [f"mapping for {t}" for t in schema.table_names if t not in mapped_tables]
        missing += [f"schema table {m.source_table}" for m in mapping if m.source_table not in schema_tables]
        if missing:
            raise DependencyUnmetError("plan generation", missing)

    def _table_plans(
        self,
        phase: PhaseName,
        tables: list[str],
        schema: SchemaAnalysisResult,
        mapping: EntityMappingResult,
        tc: TargetConfig,
        migration_id: str,
        migration_log: "MigrationLog | None",
    ) -> list[TablePlan]:
        members = set(tables)
        waves = dependency_waves({
            name: [r for r in schema.table(name).referenced_tables if r in members]
            for name in tables
        })
        plans: list[TablePlan] = []
        for wave_number, wave in enumerate(waves):
            for name in wave:
                plans.append(self._table_plan(
                    schema.table(name), mapping.get(name), phase, wave_number,
                    tc, migration_id, migration_log, set(schema.table_names),
                ))
        return plans

    @staticmethod
    def _table_plan(
        table: TableDescriptor,
        entity_mapping: EntityMapping,
        phase: PhaseName,
        wave: int,
        tc: TargetConfig,
        migration_id: str,
        migration_log: "MigrationLog | None",
        known_tables: set[str],
    ) -> TablePlan:
        warnings: list[str] = []
        ordering_key, key_warning = ordering_key_for(table)
        if key_warning:
            warnings.append(key_warning)
        if entity_mapping.needs_review:
            warnings.append(
                f"Mapping to '{entity_mapping.entity_type}' needs review "
                f"(confidence {entity_mapping.confidence:.2f})."
            )
        checkpoint = None
        if migration_log is not None:
            checkpoint = migration_log.latest_checkpoint(migration_id, phase.value, table.name)
        return TablePlan(
            table_name=table.name,
            entity_type=entity_mapping.entity_type,
            category=entity_mapping.category.value,
            ordering_key=ordering_key,
            total_rows=table.row_count,
            batch_size=tc.batch_size,
            wave=wave,
            junction=table.is_junction,
            fields=[
                FieldSpec(
                    source_column=f.source_column, target_field=f.target_field, tier=f.tier.value,
                    transformation=f.transformation, validation_rule=f.validation_rule,
                    data_type=f.data_type,
                )
                for f in entity_mapping.field_mappings
            ],
            references=[
                ReferenceSpec(column=fk.source_column, target_table=fk.target_table,
                              target_column=fk.target_column)
                for fk in table.foreign_keys
                if fk.target_table in known_tables
            ],
            batches=compute_batches(table.row_count, tc.batch_size),
            checkpoint=checkpoint,
            warnings=warnings,
        )


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------

_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def _distinct(values) -> list[str]:
    seen: list[str] = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


def _phase_risk(phase: MigrationPhase, mapping: EntityMappingResult) -> RiskLevel:
    review = any(getattr(mapping.get(t.table_name), "needs_review", False) for t in phase.tables)
    largest = max((t.total_rows for t in phase.tables), default=0)
    if review or largest > HIGH_RISK_ROWS:
        return RiskLevel.HIGH
    if largest > MEDIUM_RISK_ROWS:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _data_rollback(phase: MigrationPhase) -> RollbackDescriptor:
    """Steps undo the phase's tables in reverse execution order."""
    return RollbackDescriptor(phase=phase.name, steps=[
        RollbackStep(
            order=i,
            table_name=t.table_name,
            entity_type=t.entity_type,
            batch_count=t.batch_count,
            description=f"Delete {t.entity_type} rows migrated from {t.table_name} "
                        f"({t.batch_count} batch(es))",
        )
        for i, t in enumerate(reversed(phase.tables), start=1)
    ])
