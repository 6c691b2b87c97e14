"""
core/script_generator.py
------------------------
Generates human-readable SQL migration and rollback scripts from a plan.

Design Decisions:
    * Scripts document what the executor does; they are for review and for
      running by hand against a target without this tool. Each phase gets
      its own file so a DBA can apply (or skip) phases individually.
    * Every table is written as one keyset-paginated upsert template
      (``WHERE key > :last_key ORDER BY key LIMIT n``) followed by the
      matching ``migration_log`` insert, rather than one statement per batch.
    * Upserts conflict on ``(organization_id, source_table, source_key)`` so
      re-running a script is as idempotent as the executor.
    * The rollback script deletes by ``migration_id`` in reverse phase order,
      ending with the emergency full rollback.
"""
from __future__ import annotations

import datetime
from pathlib import Path

from logger import get_logger
from models.mapping import StorageTier
from models.plan import MigrationPhase, MigrationPlan, PhaseName, TablePlan
from models.records import DYNAMIC_TABLE, ENTITY_TABLE, METADATA_TABLE, RELATIONSHIP_TABLE

log = get_logger(__name__)

RULE_TABLE = "core_business_rules"
LOG_TABLE = "migration_log"

_HEADER_TEMPLATE = """\
-- EAV Migration Script
-- Migration    : {migration_id}
-- Organization : {organization_id}
-- Phase        : {phase} (#{order})
-- Depends on   : {dependencies}
-- Risk         : {risk}
-- Generated    : {timestamp}
--
-- ===================================================================
-- IMPORTANT: READ BEFORE RUNNING
-- ===================================================================
-- 1. Run the phases in numeric order; never skip a dependency.
-- 2. :last_key is the ordering key of the last committed batch
--    (NULL for the first batch). Repeat each batch until it returns
--    fewer than :batch_size rows.
-- 3. Run against a non-production target first.
-- ===================================================================
"""

_ENTITY_UPSERT = """\
INSERT INTO {entity_table}
    (organization_id, migration_id, entity_type, source_table, source_key,
     entity_code, entity_name)
SELECT '{org}', '{mid}', '{entity_type}', '{table}', {source_key},
       {code}, {name}
FROM {table}
WHERE :last_key IS NULL OR ({order_key}) > :last_key
ORDER BY {order_key}
LIMIT {batch_size}
ON CONFLICT (organization_id, source_table, source_key) DO UPDATE
    SET entity_code = EXCLUDED.entity_code,
        entity_name = EXCLUDED.entity_name,
        migration_id = EXCLUDED.migration_id;
"""

_RELATIONSHIP_UPSERT = """\
INSERT INTO {relationship_table}
    (organization_id, migration_id, relationship_type, source_table, source_key,
     from_table, from_key, to_table, to_key)
SELECT '{org}', '{mid}', '{entity_type}', '{table}', {source_key},
       '{from_table}', {from_col}, '{to_table}', {to_col}
FROM {table}
WHERE ({from_col}) IS NOT NULL AND ({to_col}) IS NOT NULL
  AND (:last_key IS NULL OR ({order_key}) > :last_key)
ORDER BY {order_key}
LIMIT {batch_size}
ON CONFLICT (organization_id, source_table, source_key) DO UPDATE
    SET migration_id = EXCLUDED.migration_id;
"""

_LOG_INSERT = """\
INSERT INTO {log_table}
    (migration_id, phase, table_name, operation, status, batch_number, last_key, rows_processed)
VALUES ('{mid}', '{phase}', '{table}', 'batch', 'completed', :batch_number, :last_key, :rows_processed);
"""


def _quote(value: str) -> str:
    return value.replace("'", "''")


def _source_key_expr(table: TablePlan) -> str:
    columns = table.ordering_columns
    if len(columns) == 1:
        return f"CAST({columns[0]} AS TEXT)"
    return " || '|' || ".join(f"COALESCE(CAST({c} AS TEXT), 'None')" for c in columns)


def _field_column(table: TablePlan, target_field: str) -> str | None:
    for spec in table.fields:
        if spec.target_field == target_field:
            return spec.source_column
    return None


def _attribute_block(table: TablePlan, plan: MigrationPlan) -> list[str]:
    """Per-attribute upserts into the metadata / dynamic tables."""
    lines: list[str] = []
    for spec in table.fields:
        if spec.target_field in ("entity_code", "entity_name"):
            continue
        if spec.tier == StorageTier.IDENTITY.value:
            lines.append(
                f"-- {spec.source_column} -> {ENTITY_TABLE}.identity->>'{spec.target_field}'"
                + (f" via {spec.transformation}" if spec.transformation else "")
            )
            continue
        store = METADATA_TABLE if spec.tier == StorageTier.ATTRIBUTE_METADATA.value else DYNAMIC_TABLE
        lines.append(
            f"INSERT INTO {store} (organization_id, migration_id, source_table, source_key, field_name, "
            f"data_type, field_value)\n"
            f"SELECT '{_quote(plan.organization_id)}', '{plan.migration_id}', '{table.table_name}', "
            f"{_source_key_expr(table)}, '{spec.target_field}', '{spec.data_type}', CAST({spec.source_column} AS TEXT)\n"
            f"FROM {table.table_name}\n"
            f"ON CONFLICT (organization_id, source_table, source_key, field_name) DO UPDATE\n"
            f"    SET field_value = EXCLUDED.field_value,\n"
            f"        migration_id = EXCLUDED.migration_id;"
            + (f"  -- {spec.transformation}" if spec.transformation else "")
        )
    return lines


def table_script(plan: MigrationPlan, phase: MigrationPhase, table: TablePlan) -> str:
    """Upsert + log statements for one table of *phase*."""
    header = (
        f"-- {table.table_name} -> {table.entity_type} "
        f"({table.total_rows} rows, {table.batch_count} batch(es) of {table.batch_size}, "
        f"wave {table.wave})"
    )
    parts = [header]
    for warning in table.warnings:
        parts.append(f"-- WARNING: {warning}")
    if not table.ordering_key:
        parts.append("-- Skipped: no ordering key.")
        return "\n".join(parts) + "\n"
    if table.checkpoint is not None:
        parts.append(
            f"-- Resume after batch {table.checkpoint.batch_number} "
            f"(last_key = {table.checkpoint.last_key!r})"
        )

    values = dict(
        org=_quote(plan.organization_id),
        mid=plan.migration_id,
        entity_type=table.entity_type,
        table=table.table_name,
        order_key=table.ordering_key,
        batch_size=table.batch_size,
        source_key=_source_key_expr(table),
    )
    if table.junction and len(table.references) >= 2:
        first, second = table.references[0], table.references[1]
        parts.append(_RELATIONSHIP_UPSERT.format(
            relationship_table=RELATIONSHIP_TABLE,
            from_table=first.target_table, from_col=first.column,
            to_table=second.target_table, to_col=second.column,
            **values,
        ))
    else:
        code = _field_column(table, "entity_code")
        name = _field_column(table, "entity_name")
        parts.append(_ENTITY_UPSERT.format(
            entity_table=ENTITY_TABLE,
            code=f"CAST({code} AS TEXT)" if code else values["source_key"],
            name=f"CAST({name} AS TEXT)" if name else "NULL",
            **values,
        ))
        parts.extend(_attribute_block(table, plan))
    parts.append(_LOG_INSERT.format(
        log_table=LOG_TABLE, mid=plan.migration_id, phase=phase.name.value, table=table.table_name,
    ))
    return "\n".join(parts)


def phase_script(plan: MigrationPlan, phase: MigrationPhase, timestamp: str | None = None) -> str:
    timestamp = timestamp or datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    parts = [_HEADER_TEMPLATE.format(
        migration_id=plan.migration_id,
        organization_id=plan.organization_id,
        phase=phase.name.value,
        order=phase.order,
        dependencies=", ".join(d.value for d in phase.dependencies) or "none",
        risk=phase.risk.value,
        timestamp=timestamp,
    )]
    if phase.description:
        parts.append(f"-- {phase.description}\n")
    for check in phase.checks:
        parts.append(f"-- CHECK: {check}")

    if phase.tables:
        parts.append("BEGIN;\n")
        parts.extend(table_script(plan, phase, t) for t in phase.tables)
        parts.append("COMMIT;")
    elif phase.name is PhaseName.BUSINESS_LOGIC:
        for rule in phase.rules:
            parts.append(
                f"INSERT INTO {RULE_TABLE} (organization_id, migration_id, source_table, "
                f"rule_name, rule_type, target_rule, enforcement)\n"
                f"VALUES ('{_quote(plan.organization_id)}', '{plan.migration_id}', "
                f"'{rule.source_table}', '{_quote(rule.rule_name)}', '{rule.rule_type}', "
                f"'{_quote(rule.target_rule)}', '{rule.enforcement}')\n"
                f"ON CONFLICT (organization_id, source_table, rule_name) DO NOTHING;"
            )
        if not phase.rules:
            parts.append("-- No business rules to record.")
    elif phase.name is PhaseName.INDEXES:
        for entity_type in phase.entity_types:
            parts.append(
                f"REINDEX INDEX CONCURRENTLY idx_{ENTITY_TABLE}_{entity_type};"
            )
    else:
        parts.append("-- Checks only; no data is written in this phase.")

    parts.append(
        f"\nINSERT INTO {LOG_TABLE} (migration_id, phase, table_name, operation, status)\n"
        f"VALUES ('{plan.migration_id}', '{phase.name.value}', '', 'phase', 'completed');\n"
    )
    return "\n".join(parts)


def rollback_script(plan: MigrationPlan, timestamp: str | None = None) -> str:
    timestamp = timestamp or datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    mid = plan.migration_id
    lines = [
        "-- EAV Rollback Script",
        f"-- Migration : {mid}",
        f"-- Generated : {timestamp}",
        "-- Run a section to undo that phase; sections are in reverse phase order.",
        "",
    ]
    for phase in reversed(plan.phases):
        if phase.rollback is None or not phase.rollback.steps:
            continue
        lines.append(f"-- Rollback {phase.name.value}")
        lines.append("BEGIN;")
        for step in sorted(phase.rollback.steps, key=lambda s: s.order):
            lines.append(f"-- {step.order}. {step.description}")
            if phase.name is PhaseName.BUSINESS_LOGIC:
                lines.append(
                    f"DELETE FROM {RULE_TABLE} WHERE migration_id = '{mid}' "
                    f"AND source_table = '{step.table_name}';"
                )
                continue
            for table in (RELATIONSHIP_TABLE, DYNAMIC_TABLE, METADATA_TABLE, ENTITY_TABLE):
                lines.append(
                    f"DELETE FROM {table} WHERE migration_id = '{mid}' "
                    f"AND source_table = '{step.table_name}';"
                )
        lines.append(
            f"INSERT INTO {LOG_TABLE} (migration_id, phase, table_name, operation, status) "
            f"VALUES ('{mid}', '{phase.name.value}', '', 'rollback', 'rolled_back');"
        )
        lines.append("COMMIT;\n")

    emergency = plan.emergency_rollback
    lines.append(
        f"-- Emergency rollback: valid until {emergency.deadline.isoformat()} "
        f"({emergency.window_hours}h window)"
    )
    lines.append("BEGIN;")
    for table in (RELATIONSHIP_TABLE, RULE_TABLE, DYNAMIC_TABLE, METADATA_TABLE, ENTITY_TABLE):
        lines.append(f"DELETE FROM {table} WHERE migration_id = '{mid}';")
    lines.append(
        f"INSERT INTO {LOG_TABLE} (migration_id, phase, table_name, operation, status) "
        f"VALUES ('{mid}', '', '', 'rollback', 'rolled_back');"
    )
    lines.append("COMMIT;")
    return "\n".join(lines) + "\n"


def generate_scripts(plan: MigrationPlan) -> dict[str, str]:
    """
    Build every script for *plan*.

    Returns:
        ``{filename: sql_text}``: one ``NN_<phase>.sql`` per phase plus
        ``rollback.sql``, in execution order.

    Example::

        scripts = generate_scripts(plan)
        print(scripts["02_master-data.sql"])
    """
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    scripts = {
        f"{phase.order:02d}_{phase.name.value}.sql": phase_script(plan, phase, timestamp)
        for phase in plan.phases
    }
    scripts["rollback.sql"] = rollback_script(plan, timestamp)
    return scripts


def write_scripts(plan: MigrationPlan, output_dir: Path | str = ".") -> list[Path]:
    """
    Write ``generate_scripts(plan)`` under ``<output_dir>/<migration_id>/``.

    Returns:
        Paths of the written files.
    """
    out_dir = Path(output_dir) / plan.migration_id
    out_dir.mkdir(parents=True, exist_ok=True)
    paths: list[Path] = []
    for filename, text in generate_scripts(plan).items():
        out_path = out_dir / filename
        out_path.write_text(text, encoding="utf-8")
        paths.append(out_path)
    log.info("Generated %d migration script(s) in %s", len(paths), out_dir)
    return paths
