"""
core/executor.py
----------------
Migration executor: runs a ``MigrationPlan`` against a source and an EAV
target, phase by phase, with checkpointed batches.

Design Decisions:
    * The executor is a plain class with injected dependencies (source,
      target, migration log, options). No global state.
    * Progress is reported via a callback (``progress_cb``) with the same
      ``(message, current, total)`` shape as the rest of the engine.
    * Phases run sequentially. Within a data phase, tables of one wave run
      in a bounded ``ThreadPoolExecutor``; batches of one table are always
      sequential so its checkpoint stays monotonic.
    * Cancellation is observed only between batches and between phases,
      never during a write, so the log is always a valid resume point.
    * Fatal pre-flight failures raise before any write, carrying the
      partial report. A failed table fails its phase; later phases that
      depend on it are skipped, earlier phases stay intact.
    * A source read error mid-table is a ``ConnectivityError`` for that
      table: it is logged as a failed batch and the run still returns a
      report.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from config import CONFIG
from connectors.base import Row, SourceReader, TargetWriter
from core.errors import (
    ConnectivityError,
    DataQualityError,
    DependencyUnmetError,
    ExecutionError,
    MigrationEngineError,
    RollbackWindowExpiredError,
    TargetSchemaMissingError,
    TargetWriteError,
)
from core.migration_log import OP_BATCH, OP_PHASE, OP_ROLLBACK, OP_TABLE, MigrationLog
from core.record_builder import (
    build_entity_record,
    build_relationship_record,
    build_rule_record,
    cursor_value,
)
from core.validator import Validator
from logger import get_logger, log_event
from models.plan import (
    LogStatus,
    MigrationPhase,
    MigrationPlan,
    PhaseName,
    TablePlan,
)
from models.report import (
    ExecutionReport,
    ExecutionStatus,
    Impact,
    PhaseResult,
    PhaseStatus,
    TableResult,
    ValidationFinding,
    ValidationReport,
    ValidationStatus,
)

log = get_logger(__name__)

ProgressCallback = Callable[[str, int, int], None]  # message, current, total

_PHASE_TO_LOG = {
    PhaseStatus.COMPLETED: LogStatus.COMPLETED,
    PhaseStatus.FAILED: LogStatus.FAILED,
    PhaseStatus.CANCELLED: LogStatus.CANCELLED,
    PhaseStatus.SKIPPED: LogStatus.SKIPPED,
}


@dataclass
class ExecutionOptions:
    """
    Runtime knobs for one execution.

    ``sleep`` is injectable so retry back-off can be observed in tests
    without waiting.
    """
    parallel_workers: int = field(default_factory=lambda: CONFIG.migration.parallel_workers)
    max_retries: int = field(default_factory=lambda: CONFIG.migration.max_retries)
    retry_delay: float = field(default_factory=lambda: CONFIG.migration.retry_delay)
    resume: bool = True
    cancel_event: threading.Event | None = None
    only_phases: Iterable[str] | None = None
    block_on_data_quality: bool = field(
        default_factory=lambda: CONFIG.migration.block_on_data_quality
    )
    progress_cb: ProgressCallback | None = None
    sleep: Callable[[float], None] = time.sleep

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MigrationExecutor:
    """
    Executes migration plans and their rollbacks.

    Args:
        source:        Connected-on-demand :class:`SourceReader`.
        target:        :class:`TargetWriter` for the EAV tables.
        migration_log: Checkpoint/log store; memory-only when omitted.
        options:       :class:`ExecutionOptions`.
        validator:     Used for post-validation completeness checks.

    Example::

        executor = MigrationExecutor(source, target, MigrationLog("run.jsonl"))
        report = executor.execute(plan)
        print(report.summary())
    """

    def __init__(
        self,
        source: SourceReader,
        target: TargetWriter,
        migration_log: MigrationLog | None = None,
        options: ExecutionOptions | None = None,
        validator: Validator | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._log = migration_log if migration_log is not None else MigrationLog()
        self._options = options or ExecutionOptions()
        self._validator = validator or Validator()
        self._progress_cb = self._options.progress_cb or self._default_progress

    @property
    def migration_log(self) -> MigrationLog:
        return self._log

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, plan: MigrationPlan) -> ExecutionReport:
        """
        Run every selected phase of *plan* and return the execution report.

        Raises:
            ConnectivityError:        Source or target unreachable.
            TargetSchemaMissingError: Required EAV tables absent.
            DataQualityError:         Cleanup required and blocking enabled.
            DependencyUnmetError:     A selected phase depends on a phase
                                      that neither runs now nor completed before.
        """
        mid = plan.migration_id
        report = ExecutionReport(migration_id=mid)
        selected = self._selected_phases(plan)
        log_event(log, logging.INFO, "execution_started", migration_id=mid,
                  phases=[p.value for p in selected], resume=self._options.resume)

        pre = PhaseResult(name=PhaseName.PRE_VALIDATION.value, started_at=_now())
        report.phases.append(pre)
        try:
            self._pre_validate(plan, selected, report)
        except MigrationEngineError as exc:
            pre.status = PhaseStatus.FAILED
            pre.error = str(exc)
            pre.finished_at = _now()
            self._log.record(mid, pre.name, OP_PHASE, LogStatus.FAILED,
                             started_at=pre.started_at, error_message=str(exc))
            report.abort(exc)
            exc.report = report
            log.error("Migration %s aborted in pre-validation: %s", mid, exc)
            self._close_connections()
            raise
        pre.status = PhaseStatus.COMPLETED
        pre.finished_at = _now()
        self._log.record(mid, pre.name, OP_PHASE, LogStatus.COMPLETED, started_at=pre.started_at)

        done = {PhaseName.PRE_VALIDATION}
        if self._options.resume:
            done |= {PhaseName(p) for p in self._log.completed_phases(mid, [n.value for n in PhaseName])}

        try:
            for phase in plan.phases:
                if phase.name is PhaseName.PRE_VALIDATION or phase.name not in selected:
                    continue
                if self._options.cancelled:
                    report.phases.append(self._cancelled_phase(mid, phase))
                    break
                if phase.name in done and phase.name is not PhaseName.POST_VALIDATION:
                    log.info("Phase '%s' already completed for %s; skipping.", phase.name.value, mid)
                    report.phases.append(PhaseResult(name=phase.name.value, status=PhaseStatus.COMPLETED))
                    continue
                missing = [d.value for d in phase.dependencies if d not in done]
                if missing:
                    report.phases.append(self._skip_phase(mid, phase, missing, report))
                    continue

                if phase.name is PhaseName.POST_VALIDATION:
                    result = self._post_validate(plan, report)
                else:
                    result = self._run_phase(plan, phase)
                report.phases.append(result)
                if result.status is PhaseStatus.COMPLETED:
                    done.add(phase.name)
                elif result.status is PhaseStatus.CANCELLED:
                    break
        finally:
            self._close_connections()

        report.status = self._overall_status(report)
        if report.validation is not None:
            report.attach_validation(report.validation)
        report.finished_at = _now()
        log_event(log, logging.INFO, "execution_finished", migration_id=mid,
                  status=report.status.value, rows=report.total_rows, complete=report.complete)
        return report

    def _selected_phases(self, plan: MigrationPlan) -> list[PhaseName]:
        names = [p.name for p in plan.phases]
        if self._options.only_phases is None:
            return names
        wanted = {PhaseName(p) for p in self._options.only_phases}
        return [n for n in names if n in wanted]

    def _pre_validate(self, plan: MigrationPlan, selected: list[PhaseName], report: ExecutionReport) -> None:
        try:
            self._source.connect()
            self._target.connect()
        except MigrationEngineError:
            raise
        except Exception as exc:
            raise ConnectivityError(f"Cannot connect: {exc}") from exc

        missing = self._target.missing_tables(plan.required_target_tables)
        if missing:
            raise TargetSchemaMissingError(missing)

        if plan.cleanup_required:
            message = (
                f"Source data quality score {plan.data_quality_score} requires cleanup "
                "before migration"
            )
            if self._options.block_on_data_quality:
                raise DataQualityError(message)
            report.findings.append(ValidationFinding(
                check="Data Quality", status=ValidationStatus.WARNING, impact=Impact.MEDIUM,
                message=message, recommendation="Clean the flagged source data and re-run the affected tables.",
            ))

        available = set(selected) | {PhaseName.PRE_VALIDATION}
        available |= {PhaseName(p) for p in self._log.completed_phases(plan.migration_id, [n.value for n in PhaseName])}
        for phase in plan.phases:
            if phase.name not in selected:
                continue
            unmet = [d.value for d in phase.dependencies if d not in available]
            if unmet:
                raise DependencyUnmetError(phase.name.value, unmet)

    def _close_connections(self) -> None:
        for name, conn in (("source", self._source), ("target", self._target)):
            try:
                conn.close()
            except Exception as exc:
                log.warning("Error closing %s: %s", name, exc)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_phase(self, plan: MigrationPlan, phase: MigrationPhase) -> PhaseResult:
        mid = plan.migration_id
        result = PhaseResult(name=phase.name.value, status=PhaseStatus.RUNNING, started_at=_now())
        self._log.record(mid, result.name, OP_PHASE, LogStatus.STARTED, started_at=result.started_at)
        log.info("Phase '%s' started (%d table(s)).", result.name, len(phase.tables))

        try:
            if phase.name is PhaseName.BUSINESS_LOGIC:
                records = [build_rule_record(r, plan.organization_id, mid) for r in phase.rules]
                if records:
                    self._target.record_business_rules(records)
                log.info("Recorded %d advisory business rule(s).", len(records))
                result.status = PhaseStatus.COMPLETED
            elif phase.name is PhaseName.INDEXES:
                self._target.refresh_indexes(phase.entity_types)
                result.status = PhaseStatus.COMPLETED
            else:
                result.status = self._run_waves(plan, phase, result)
        except MigrationEngineError as exc:
            result.status = PhaseStatus.FAILED
            result.error = str(exc)
            log.error("Phase '%s' failed: %s", result.name, exc)

        if result.status is PhaseStatus.FAILED and result.error is None:
            failed = [t.table_name for t in result.tables if t.status is PhaseStatus.FAILED]
            result.error = f"Failed table(s): {', '.join(failed)}"
        result.finished_at = _now()
        self._log.record(
            mid, result.name, OP_PHASE, _PHASE_TO_LOG[result.status],
            rows_processed=result.rows_processed, started_at=result.started_at,
            error_message=result.error,
        )
        log_event(log, logging.INFO, "phase_finished", migration_id=mid, phase=result.name,
                  status=result.status.value, rows=result.rows_processed)
        return result

    def _run_waves(self, plan: MigrationPlan, phase: MigrationPhase, result: PhaseResult) -> PhaseStatus:
        workers = max(1, self._options.parallel_workers)
        for wave_num, wave in enumerate(phase.waves(), start=1):
            log.debug("Phase '%s' wave %d: %s", phase.name.value, wave_num,
                      ", ".join(t.table_name for t in wave))
            if len(wave) == 1 or workers == 1:
                outcomes = [self._run_table(plan, phase, t) for t in wave]
            else:
                with ThreadPoolExecutor(max_workers=min(workers, len(wave))) as pool:
                    futures = [pool.submit(self._run_table, plan, phase, t) for t in wave]
                    outcomes = [f.result() for f in futures]
            result.tables.extend(outcomes)
            statuses = {t.status for t in outcomes}
            if PhaseStatus.FAILED in statuses:
                return PhaseStatus.FAILED
            if PhaseStatus.CANCELLED in statuses:
                return PhaseStatus.CANCELLED
        return PhaseStatus.COMPLETED

    def _skip_phase(
        self, mid: str, phase: MigrationPhase, missing: list[str], report: ExecutionReport
    ) -> PhaseResult:
        message = f"Skipped: unmet dependencies {', '.join(missing)}"
        log.warning("Phase '%s' %s.", phase.name.value, message.lower())
        report.findings.append(ValidationFinding(
            check="Phase Dependencies", status=ValidationStatus.FAILED, impact=Impact.HIGH,
            message=f"'{phase.name.value}' skipped; unmet dependencies: {', '.join(missing)}",
            recommendation="Fix the failed phase(s) and resume the migration.",
        ))
        self._log.record(mid, phase.name.value, OP_PHASE, LogStatus.SKIPPED, error_message=message)
        return PhaseResult(name=phase.name.value, status=PhaseStatus.SKIPPED, error=message)

    def _cancelled_phase(self, mid: str, phase: MigrationPhase) -> PhaseResult:
        log.warning("Migration %s cancelled before phase '%s'.", mid, phase.name.value)
        self._log.record(mid, phase.name.value, OP_PHASE, LogStatus.CANCELLED)
        return PhaseResult(name=phase.name.value, status=PhaseStatus.CANCELLED)

    def _post_validate(self, plan: MigrationPlan, report: ExecutionReport) -> PhaseResult:
        mid = plan.migration_id
        result = PhaseResult(name=PhaseName.POST_VALIDATION.value, status=PhaseStatus.RUNNING,
                             started_at=_now())
        self._log.record(mid, result.name, OP_PHASE, LogStatus.STARTED, started_at=result.started_at)

        table_plans = plan.table_plans()
        expected = {t.table_name: t.total_rows for t in table_plans}
        junctions = [t.table_name for t in table_plans if t.junction]
        validation = ValidationReport()
        for finding in self._validator.check_completeness(expected, report, self._target, junctions):
            validation.add(finding)
        for finding in self._validator.check_integrity(mid, self._target):
            validation.add(finding)
        report.validation = validation

        result.status = PhaseStatus.COMPLETED if validation.passed else PhaseStatus.FAILED
        if not validation.passed:
            result.error = f"{len(validation.failures())} validation check(s) failed"
            log.error("Post-validation failed for %s; rollback recommended.", mid)
        result.finished_at = _now()
        self._log.record(mid, result.name, OP_PHASE, _PHASE_TO_LOG[result.status],
                         started_at=result.started_at, error_message=result.error)
        return result

    @staticmethod
    def _overall_status(report: ExecutionReport) -> ExecutionStatus:
        statuses = [
            p.status for p in report.phases if p.name != PhaseName.POST_VALIDATION.value
        ]
        if PhaseStatus.CANCELLED in statuses:
            return ExecutionStatus.CANCELLED
        if PhaseStatus.FAILED in statuses or PhaseStatus.SKIPPED in statuses:
            return ExecutionStatus.FAILED
        return ExecutionStatus.COMPLETED

    # ------------------------------------------------------------------
    # Tables and batches
    # ------------------------------------------------------------------

    def _run_table(self, plan: MigrationPlan, phase: MigrationPhase, table: TablePlan) -> TableResult:
        mid, phase_name = plan.migration_id, phase.name.value
        result = TableResult(table_name=table.table_name, phase=phase_name, status=PhaseStatus.RUNNING)
        started = time.perf_counter()
        started_at = _now()

        checkpoint = None
        if self._options.resume:
            checkpoint = self._log.latest_checkpoint(mid, phase_name, table.table_name)
            if self._log.table_status(mid, phase_name, table.table_name) is LogStatus.COMPLETED:
                result.status = PhaseStatus.COMPLETED
                result.rows_from_checkpoint = checkpoint.rows_processed if checkpoint else 0
                result.start_batch = (checkpoint.batch_number if checkpoint else 0) + 1
                log.info("Table '%s' already completed; skipping.", table.table_name)
                return result

        if not table.ordering_key:
            result.status = PhaseStatus.COMPLETED
            result.warnings.append("No ordering key; table has no columns to migrate")
            log.warning("Table '%s' has no ordering key; nothing migrated.", table.table_name)
            self._log.record(mid, phase_name, OP_TABLE, LogStatus.COMPLETED, table.table_name,
                             started_at=started_at)
            return result

        batch_number = checkpoint.batch_number if checkpoint else 0
        after_key: Any = checkpoint.last_key if checkpoint else None
        if isinstance(after_key, list):
            after_key = tuple(after_key)
        result.rows_from_checkpoint = checkpoint.rows_processed if checkpoint else 0
        result.start_batch = batch_number + 1
        if checkpoint:
            log.info("Resuming '%s' at batch %d (%d row(s) already migrated).",
                     table.table_name, result.start_batch, result.rows_from_checkpoint)
        self._log.record(mid, phase_name, OP_TABLE, LogStatus.STARTED, table.table_name,
                         started_at=started_at, start_batch=result.start_batch)

        try:
            while True:
                if self._options.cancelled:
                    result.status = PhaseStatus.CANCELLED
                    log.warning("Table '%s' cancelled after batch %d.", table.table_name, batch_number)
                    break
                rows = self._read_batch(table, after_key)
                if not rows:
                    break
                batch_started = _now()
                next_key = self._next_key(rows, table)
                self._write_batch(plan, table, rows, result)
                batch_number += 1
                after_key = next_key
                result.rows_processed += len(rows)
                result.batches_completed += 1
                self._log.record(
                    mid, phase_name, OP_BATCH, LogStatus.COMPLETED, table.table_name,
                    batch_number=batch_number, last_key=after_key,
                    rows_processed=result.total_rows_migrated, started_at=batch_started,
                )
                self._progress_cb(
                    f"{table.table_name}: batch {batch_number}/{table.batch_count}",
                    batch_number, table.batch_count,
                )
                if len(rows) < table.batch_size:
                    break
        except MigrationEngineError as exc:
            result.status = PhaseStatus.FAILED
            result.errors.append(str(exc))
            self._log.record(
                mid, phase_name, OP_BATCH, LogStatus.FAILED, table.table_name,
                batch_number=batch_number + 1, last_key=after_key,
                rows_processed=result.total_rows_migrated, error_message=str(exc),
            )
            log.error("Table '%s' failed at batch %d: %s", table.table_name, batch_number + 1, exc)

        if result.status is PhaseStatus.RUNNING:
            result.status = PhaseStatus.COMPLETED
        result.elapsed_seconds = time.perf_counter() - started
        self._log.record(
            mid, phase_name, OP_TABLE, _PHASE_TO_LOG[result.status], table.table_name,
            rows_processed=result.total_rows_migrated, started_at=started_at,
            error_message="; ".join(result.errors) or None,
        )
        log.info("%s", result)
        return result

    def _read_batch(self, table: TablePlan, after_key: Any) -> list[Row]:
        """Driver errors become ConnectivityError so the table fails resumably."""
        try:
            return self._source.read_batch(table.table_name, table.ordering_key, after_key, table.batch_size)
        except MigrationEngineError:
            raise
        except Exception as exc:
            raise ConnectivityError(f"Reading {table.table_name} after key {after_key!r} failed: {exc}") from exc

    @staticmethod
    def _next_key(rows: list[Row], table: TablePlan) -> Any:
        try:
            return cursor_value(rows[-1], table)
        except KeyError as exc:
            raise ExecutionError(
                f"Row from {table.table_name} lacks ordering column {exc}; cannot advance the cursor"
            ) from exc

    def _write_batch(self, plan: MigrationPlan, table: TablePlan, rows: list[Row], result: TableResult) -> int:
        org, mid = plan.organization_id, plan.migration_id
        if table.junction:
            records = [build_relationship_record(r, table, org, mid) for r in rows]
            links = [r for r in records if r is not None]
            if len(links) < len(records):
                result.warnings.append(f"{len(records) - len(links)} link row(s) with a NULL side skipped")
            write = self._target.upsert_relationships
            payload: list[Any] = links
        else:
            write = self._target.upsert_entities
            payload = [build_entity_record(r, table, org, mid) for r in rows]

        max_retries = self._options.max_retries
        for attempt in range(max_retries + 1):
            try:
                return write(payload)
            except TargetWriteError as exc:
                if attempt == max_retries:
                    raise ExecutionError(
                        f"Batch write to {table.table_name} failed after {max_retries} "
                        f"retr{'y' if max_retries == 1 else 'ies'}: {exc}"
                    ) from exc
                result.retries += 1
                delay = self._options.retry_delay * (2 ** attempt)
                log.warning("Write to %s failed (%s); retry %d/%d in %.2fs.",
                            table.table_name, exc, attempt + 1, max_retries, delay)
                self._options.sleep(delay)
        return 0

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback_phase(self, plan: MigrationPlan, phase: PhaseName | str) -> int:
        """
        Undo one phase by its rollback descriptor; returns rows deleted.

        Data phases delete their tables' rows in reverse execution order;
        business-logic removes recorded rules only.
        """
        mid = plan.migration_id
        target_phase = plan.phase(phase)
        if target_phase is None:
            raise ValueError(f"Plan {mid} has no phase '{phase}'")
        name = target_phase.name.value
        steps = sorted(target_phase.rollback.steps, key=lambda s: s.order) if target_phase.rollback else []

        deleted = 0
        for step in steps:
            if target_phase.name is PhaseName.BUSINESS_LOGIC:
                count = self._target.delete_business_rules(mid, [step.table_name])
            else:
                count = self._target.delete_migration_rows(mid, [step.table_name])
            deleted += count
            self._log.record(mid, name, OP_ROLLBACK, LogStatus.ROLLED_BACK, step.table_name,
                             rows_processed=count)
            log.info("Rolled back %d row(s) of '%s' (%s).", count, step.table_name, name)
        self._log.record(mid, name, OP_ROLLBACK, LogStatus.ROLLED_BACK, rows_processed=deleted)
        log_event(log, logging.INFO, "phase_rolled_back", migration_id=mid, phase=name, rows=deleted)
        return deleted

    def rollback_all(self, plan: MigrationPlan) -> int:
        """Roll back every phase in reverse order; returns rows deleted."""
        return sum(self.rollback_phase(plan, p.name) for p in reversed(plan.phases))

    def emergency_rollback(self, plan: MigrationPlan, now: datetime | None = None) -> int:
        """
        Delete every row tagged with the migration id.

        Raises:
            RollbackWindowExpiredError: The window closed at
                ``plan.emergency_rollback.deadline``.
        """
        mid = plan.migration_id
        emergency = plan.emergency_rollback
        if not emergency.is_open(now):
            raise RollbackWindowExpiredError(
                f"Emergency rollback window for {mid} closed at {emergency.deadline.isoformat()}"
            )
        deleted = self._target.delete_migration_rows(mid)
        self._log.record(mid, "", OP_ROLLBACK, LogStatus.ROLLED_BACK, rows_processed=deleted,
                         emergency=True)
        log.warning("Emergency rollback of %s removed %d row(s).", mid, deleted)
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _default_progress(message: str, current: int, total: int) -> None:
        log.debug("[%d/%d] %s", current, total, message)
