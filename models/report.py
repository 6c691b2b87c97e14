"""
models/report.py
----------------
Execution and validation reports.

Design Decisions:
    * ``ValidationFinding`` is frozen: findings are appended to a report,
      never edited.
    * ``ExecutionReport.complete`` is derived, not stored. A run is only
      complete when every phase succeeded *and* an attached validation
      report passed, so a failed validation can never be overlooked.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ValidationStatus(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    VALIDATION_FAILED = "validation_failed"


_STATUS_RANK = {
    ValidationStatus.PASSED: 0,
    ValidationStatus.WARNING: 1,
    ValidationStatus.FAILED: 2,
}


def worst_status(statuses) -> ValidationStatus:
    """Return the most severe status in *statuses* (PASSED when empty)."""
    worst = ValidationStatus.PASSED
    for status in statuses:
        if _STATUS_RANK[status] > _STATUS_RANK[worst]:
            worst = status
    return worst


@dataclass(frozen=True)
class ValidationFinding:
    check: str
    status: ValidationStatus
    impact: Impact
    message: str = ""
    recommendation: str = ""
    table: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "check": self.check,
            "status": self.status.value,
            "impact": self.impact.value,
            "message": self.message,
            "recommendation": self.recommendation,
            "table": self.table,
        }


@dataclass
class ValidationReport:
    findings: list[ValidationFinding] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add(self, finding: ValidationFinding) -> None:
        self.findings.append(finding)

    @property
    def passed(self) -> bool:
        return not any(f.status is ValidationStatus.FAILED for f in self.findings)

    @property
    def overall_status(self) -> ValidationStatus:
        return worst_status(f.status for f in self.findings)

    @property
    def score(self) -> float:
        """Share of passed checks as a percentage (100 when nothing was checked)."""
        if not self.findings:
            return 100.0
        passed = sum(1 for f in self.findings if f.status is ValidationStatus.PASSED)
        return round(passed / len(self.findings) * 100, 1)

    def failures(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.status is ValidationStatus.FAILED]

    def warnings(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.status is ValidationStatus.WARNING]

    @property
    def recommendations(self) -> list[str]:
        recs: list[str] = []
        for f in self.findings:
            if f.status is not ValidationStatus.PASSED and f.recommendation and f.recommendation not in recs:
                recs.append(f.recommendation)
        if not self.passed:
            recs.append("Roll back this migration before retrying (failed validation checks).")
        return recs


@dataclass
class TableResult:
    """Outcome of migrating one table within one phase."""
    table_name: str
    phase: str
    status: PhaseStatus = PhaseStatus.PENDING
    rows_processed: int = 0
    rows_from_checkpoint: int = 0
    batches_completed: int = 0
    start_batch: int = 1
    retries: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def total_rows_migrated(self) -> int:
        return self.rows_from_checkpoint + self.rows_processed

    @property
    def rows_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.rows_processed / self.elapsed_seconds

    def __str__(self) -> str:
        return (
            f"{self.table_name} [{self.status.value}] "
            f"rows={self.total_rows_migrated} batches={self.batches_completed} "
            f"({self.elapsed_seconds:.2f}s)"
        )


@dataclass
class PhaseResult:
    name: str
    status: PhaseStatus = PhaseStatus.PENDING
    tables: list[TableResult] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    @property
    def rows_processed(self) -> int:
        return sum(t.total_rows_migrated for t in self.tables)


@dataclass
class ExecutionReport:
    migration_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    phases: list[PhaseResult] = field(default_factory=list)
    findings: list[ValidationFinding] = field(default_factory=list)
    validation: ValidationReport | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return (
            self.status is ExecutionStatus.COMPLETED
            and self.validation is not None
            and self.validation.passed
        )

    def phase(self, name: str) -> PhaseResult | None:
        for p in self.phases:
            if p.name == name:
                return p
        return None

    def table_results(self) -> list[TableResult]:
        return [t for p in self.phases for t in p.tables]

    def table_result(self, table_name: str) -> TableResult | None:
        for result in self.table_results():
            if result.table_name == table_name:
                return result
        return None

    @property
    def total_rows(self) -> int:
        return sum(p.rows_processed for p in self.phases)

    def attach_validation(self, validation: ValidationReport) -> None:
        """Attach a validation report; a failed validation blocks completion."""
        self.validation = validation
        if not validation.passed and self.status is ExecutionStatus.COMPLETED:
            self.status = ExecutionStatus.VALIDATION_FAILED

    def abort(self, error: BaseException) -> None:
        self.status = ExecutionStatus.ABORTED
        self.errors.append(str(error))
        self.finished_at = datetime.now(timezone.utc)

    def summary(self) -> str:
        lines = [
            f"Migration {self.migration_id}: {self.status.value}"
            f" ({self.total_rows} rows, complete={self.complete})"
        ]
        for p in self.phases:
            lines.append(f"  {p.name}: {p.status.value} ({p.rows_processed} rows)")
        if self.validation is not None:
            lines.append(
                f"  validation: {self.validation.overall_status.value} "
                f"(score {self.validation.score})"
            )
        for err in self.errors:
            lines.append(f"  error: {err}")
        return "\n".join(lines)
