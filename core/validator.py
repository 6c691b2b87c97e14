"""
core/validator.py
-----------------
Post-migration validation: completeness, referential integrity, advisory
business rules, mapping quality and throughput.

Design Decisions:
    * Every check appends ``ValidationFinding`` objects; nothing raises.
      The caller decides what a failed report means (the executor marks
      the run ``validation_failed``; the pipeline returns an ``Err``).
    * Counts come from the target when one is supplied, otherwise from
      the execution report, then from the migration log checkpoints.
      A shortfall is a failure; more than 10% missing is critical. A
      surplus is only a warning (rows added after analysis).
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Iterable, Mapping

from config import CONFIG, MigrationConfig
from connectors.base import TargetWriter
from core.entity_mapper import field_coverage_check
from logger import get_logger, log_event
from models.mapping import EntityMappingResult
from models.report import (
    ExecutionReport,
    ExecutionStatus,
    Impact,
    ValidationFinding,
    ValidationReport,
    ValidationStatus,
)
from models.schema import SchemaAnalysisResult

if TYPE_CHECKING:
    from core.migration_log import MigrationLog

log = get_logger(__name__)

CRITICAL_SHORTFALL_RATIO = 0.10
MIN_TIMED_SECONDS = 1.0

_COVERAGE_IMPACT = {
    ValidationStatus.PASSED: Impact.LOW,
    ValidationStatus.WARNING: Impact.MEDIUM,
    ValidationStatus.FAILED: Impact.HIGH,
}


def completeness_finding(table: str, expected: int, actual: int) -> ValidationFinding:
    """
    Compare a source row count against the migrated count.

    Example::

        completeness_finding("OCRD", 892, 890)
        → status FAILED, impact HIGH
    """
    if actual == expected:
        return ValidationFinding(
            check="Completeness", status=ValidationStatus.PASSED, impact=Impact.LOW,
            message=f"{actual} of {expected} row(s) migrated", table=table,
        )
    if actual > expected:
        return ValidationFinding(
            check="Completeness", status=ValidationStatus.WARNING, impact=Impact.MEDIUM,
            message=f"{actual} row(s) migrated but {expected} expected "
                    f"({actual - expected} extra)",
            recommendation=f"Re-count {table}; rows may have been added since analysis.",
            table=table,
        )
    missing = expected - actual
    impact = Impact.CRITICAL if expected and missing / expected > CRITICAL_SHORTFALL_RATIO else Impact.HIGH
    return ValidationFinding(
        check="Completeness", status=ValidationStatus.FAILED, impact=impact,
        message=f"{actual} of {expected} row(s) migrated ({missing} missing)",
        recommendation=f"Investigate the {missing} missing row(s) of {table} and re-run the table.",
        table=table,
    )


class Validator:
    """Builds ``ValidationReport`` objects for finished migrations."""

    def __init__(self, config: MigrationConfig | None = None) -> None:
        self.config = config or CONFIG.migration

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(
        self,
        schema: SchemaAnalysisResult,
        mapping: EntityMappingResult,
        execution_report: ExecutionReport,
        target: TargetWriter | None = None,
        migration_log: "MigrationLog | None" = None,
    ) -> ValidationReport:
        report = ValidationReport()
        for finding in self._execution_status(execution_report):
            report.add(finding)
        expected = {t.name: t.row_count for t in schema.tables}
        junctions = [t.name for t in schema.tables if t.is_junction]
        for finding in self.check_completeness(
            expected, execution_report, target, junctions, migration_log,
        ):
            report.add(finding)
        if target is not None:
            for finding in self.check_integrity(execution_report.migration_id, target):
                report.add(finding)
        for finding in self.check_mapping(schema, mapping):
            report.add(finding)
        for finding in self.check_business_rules(mapping):
            report.add(finding)
        for finding in self.check_performance(execution_report):
            report.add(finding)

        log_event(
            log, logging.INFO, "validation_completed",
            migration_id=execution_report.migration_id, status=report.overall_status.value,
            score=report.score, failures=len(report.failures()), warnings=len(report.warnings()),
        )
        return report

    def check_completeness(
        self,
        expected: Mapping[str, int],
        execution_report: ExecutionReport,
        target: TargetWriter | None = None,
        junction_tables: Iterable[str] = (),
        migration_log: "MigrationLog | None" = None,
    ) -> list[ValidationFinding]:
        """
        One completeness finding per table of *expected* (``{table: source rows}``).

        Junction tables are counted as relationships in the target. Without
        a target, tables missing from *execution_report* (phases skipped on
        resume) fall back to the checkpoints in *migration_log*.
        """
        junctions = set(junction_tables)
        return [
            completeness_finding(
                name, rows, self._migrated_count(
                    name, name in junctions, execution_report, target, migration_log,
                ),
            )
            for name, rows in expected.items()
        ]

    @staticmethod
    def check_integrity(migration_id: str, target: TargetWriter) -> list[ValidationFinding]:
        unresolved = target.unresolved_references(migration_id)
        if not unresolved:
            return [ValidationFinding(
                check="Referential Integrity", status=ValidationStatus.PASSED, impact=Impact.LOW,
                message="All references resolve to migrated entities",
            )]
        per_table = Counter(u[0] for u in unresolved)
        findings = []
        for table, count in per_table.items():
            examples = [f"{u[2]} → {u[3]}:{u[4]}" for u in unresolved if u[0] == table][:3]
            findings.append(ValidationFinding(
                check="Referential Integrity", status=ValidationStatus.FAILED, impact=Impact.HIGH,
                message=f"{count} unresolved reference(s), e.g. {'; '.join(examples)}",
                recommendation=f"Migrate the referenced rows before {table} or clean orphaned keys.",
                table=table,
            ))
        return findings

    @staticmethod
    def check_mapping(schema: SchemaAnalysisResult, mapping: EntityMappingResult) -> list[ValidationFinding]:
        findings: list[ValidationFinding] = []
        for m in mapping:
            if m.needs_review:
                findings.append(ValidationFinding(
                    check="Mapping Review", status=ValidationStatus.WARNING, impact=Impact.MEDIUM,
                    message=f"Mapped to '{m.entity_type}' at confidence {m.confidence:.2f} "
                            f"(threshold {mapping.threshold:.2f})",
                    recommendation=f"Confirm the entity type of {m.source_table}.",
                    table=m.source_table,
                ))
            table = schema.table(m.source_table)
            if table is not None:
                check = field_coverage_check(table, m)
                findings.append(ValidationFinding(
                    check="Field Coverage", status=check.status, impact=_COVERAGE_IMPACT[check.status],
                    message=check.message, table=m.source_table,
                    recommendation="" if check.status is ValidationStatus.PASSED
                    else f"Map the remaining columns of {m.source_table}.",
                ))
        return findings

    @staticmethod
    def check_business_rules(mapping: EntityMappingResult) -> list[ValidationFinding]:
        return [
            ValidationFinding(
                check="Business Rule", status=ValidationStatus.WARNING, impact=Impact.LOW,
                message=f"{rule.rule_name} ({rule.rule_type}) recorded as {rule.enforcement}: "
                        f"{rule.target_rule}",
                recommendation="Review advisory business rules before enforcing them.",
                table=rule.source_table,
            )
            for m in mapping for rule in m.business_rules
        ]

    def check_performance(self, execution_report: ExecutionReport) -> list[ValidationFinding]:
        findings: list[ValidationFinding] = []
        for result in execution_report.table_results():
            if result.elapsed_seconds < MIN_TIMED_SECONDS or not result.rows_processed:
                continue
            if result.rows_per_second < self.config.min_rows_per_second:
                findings.append(ValidationFinding(
                    check="Performance", status=ValidationStatus.WARNING, impact=Impact.LOW,
                    message=f"{result.rows_per_second:.0f} rows/s is below the "
                            f"{self.config.min_rows_per_second} rows/s floor",
                    recommendation="Increase the batch size or check target write latency.",
                    table=result.table_name,
                ))
        return findings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _execution_status(execution_report: ExecutionReport) -> list[ValidationFinding]:
        if execution_report.status in (ExecutionStatus.COMPLETED, ExecutionStatus.VALIDATION_FAILED):
            return []
        return [ValidationFinding(
            check="Execution Status", status=ValidationStatus.FAILED, impact=Impact.CRITICAL,
            message=f"Execution ended as '{execution_report.status.value}'",
            recommendation="Resume or roll back the migration before relying on the target.",
        )]

    @staticmethod
    def _migrated_count(
        table_name: str,
        is_junction: bool,
        execution_report: ExecutionReport,
        target: TargetWriter | None,
        migration_log: "MigrationLog | None" = None,
    ) -> int:
        if target is not None:
            if is_junction:
                return target.count_relationships(execution_report.migration_id, table_name)
            return target.count_entities(execution_report.migration_id, table_name)
        result = execution_report.table_result(table_name)
        if result is not None:
            return result.total_rows_migrated
        if migration_log is not None:
            return migration_log.rows_migrated(execution_report.migration_id, table_name)
        return 0
