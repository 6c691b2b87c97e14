"""
models/plan.py
--------------
Migration plan and migration-log models.

These are pydantic models so a plan (and every log entry) serialises to
JSON for persistence and forensic replay, and invalid values such as a
non-positive batch size are rejected when the plan is built.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from models.records import REQUIRED_TARGET_TABLES

# Cursor value of the ordering key; a list for composite keys
CursorKey = Union[int, str, List[Optional[Union[int, str]]]]


class PhaseName(str, Enum):
    PRE_VALIDATION = "pre-validation"
    MASTER_DATA = "master-data"
    TRANSACTIONAL_DATA = "transactional-data"
    RELATIONSHIPS = "relationships"
    BUSINESS_LOGIC = "business-logic"
    INDEXES = "indexes"
    POST_VALIDATION = "post-validation"


PHASE_ORDER: tuple[PhaseName, ...] = tuple(PhaseName)
DATA_PHASES: tuple[PhaseName, ...] = (
    PhaseName.MASTER_DATA,
    PhaseName.TRANSACTIONAL_DATA,
    PhaseName.RELATIONSHIPS,
)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LogStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


# ===== Migration log =====

class Checkpoint(BaseModel):
    """Last committed batch for one (migration, phase, table)."""
    migration_id: str
    phase: str
    table_name: str
    batch_number: int = Field(ge=0)
    last_key: Optional[CursorKey] = None
    rows_processed: int = Field(default=0, ge=0)


class LogEntry(BaseModel):
    """
    One append-only migration log row.

    ``operation`` is one of ``phase``, ``table``, ``batch`` or ``rollback``;
    phase-level rows leave ``table_name`` empty.
    """
    migration_id: str
    phase: str
    table_name: str = ""
    operation: str
    status: LogStatus
    batch_number: Optional[int] = None
    last_key: Optional[CursorKey] = None
    rows_processed: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: dict = Field(default_factory=dict)


# ===== Plan =====

class TargetConfig(BaseModel):
    """Target-side settings for plan generation."""
    organization_id: str = "default"
    batch_size: int = Field(default=1000, ge=1)
    parallel_workers: int = Field(default=4, ge=1)
    rollback_window_hours: int = Field(default=24, ge=0)
    assumed_rows_per_second: int = Field(default=5000, ge=1)
    required_tables: List[str] = Field(default_factory=lambda: list(REQUIRED_TARGET_TABLES))
    migration_id: Optional[str] = None


class BatchPlan(BaseModel):
    batch_number: int = Field(ge=1)
    offset: int = Field(ge=0)
    size: int = Field(ge=1)


class FieldSpec(BaseModel):
    source_column: str
    target_field: str
    tier: str
    transformation: Optional[str] = None
    validation_rule: Optional[str] = None
    data_type: str = "text"


class ReferenceSpec(BaseModel):
    column: str
    target_table: str
    target_column: str


class TablePlan(BaseModel):
    table_name: str
    entity_type: str
    category: str
    ordering_key: str
    total_rows: int = Field(ge=0)
    batch_size: int = Field(ge=1)
    wave: int = 0
    junction: bool = False
    fields: List[FieldSpec] = Field(default_factory=list)
    references: List[ReferenceSpec] = Field(default_factory=list)
    batches: List[BatchPlan] = Field(default_factory=list)
    checkpoint: Optional[Checkpoint] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def ordering_columns(self) -> List[str]:
        """``ordering_key`` split into its columns (composite keys are comma-joined)."""
        return [c.strip() for c in self.ordering_key.split(",")]

    @property
    def batch_count(self) -> int:
        return len(self.batches)

    @property
    def final_batch_size(self) -> int:
        return self.batches[-1].size if self.batches else 0

    @property
    def resume_batch(self) -> int:
        """Batch number execution starts from (1 for a fresh run)."""
        return (self.checkpoint.batch_number if self.checkpoint else 0) + 1


class BusinessRuleSpec(BaseModel):
    rule_name: str
    source_table: str
    rule_type: str
    target_rule: str
    enforcement: str = "advisory"


class RollbackStep(BaseModel):
    order: int
    table_name: str
    entity_type: str
    batch_count: int = 0
    description: str = ""


class RollbackDescriptor(BaseModel):
    phase: PhaseName
    steps: List[RollbackStep] = Field(default_factory=list)


class EmergencyRollback(BaseModel):
    migration_id: str
    window_hours: int
    deadline: datetime
    description: str = ""

    def is_open(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now <= self.deadline


class MigrationPhase(BaseModel):
    name: PhaseName
    order: int
    description: str = ""
    tables: List[TablePlan] = Field(default_factory=list)
    dependencies: List[PhaseName] = Field(default_factory=list)
    risk: RiskLevel = RiskLevel.LOW
    checks: List[str] = Field(default_factory=list)
    rules: List[BusinessRuleSpec] = Field(default_factory=list)
    entity_types: List[str] = Field(default_factory=list)
    rollback: Optional[RollbackDescriptor] = None

    def table(self, name: str) -> Optional[TablePlan]:
        for t in self.tables:
            if t.table_name == name:
                return t
        return None

    def waves(self) -> List[List[TablePlan]]:
        """Tables grouped by wave; a wave only depends on earlier waves."""
        grouped: dict[int, List[TablePlan]] = {}
        for t in self.tables:
            grouped.setdefault(t.wave, []).append(t)
        return [grouped[w] for w in sorted(grouped)]

    @property
    def total_rows(self) -> int:
        return sum(t.total_rows for t in self.tables)


class MigrationPlan(BaseModel):
    migration_id: str
    organization_id: str
    source_name: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    phases: List[MigrationPhase]
    emergency_rollback: EmergencyRollback
    required_target_tables: List[str] = Field(default_factory=lambda: list(REQUIRED_TARGET_TABLES))
    estimated_duration_seconds: float = 0.0
    complexity: str = "low"
    risk: RiskLevel = RiskLevel.LOW
    data_quality_score: int = 100
    cleanup_required: bool = False
    needs_review_tables: List[str] = Field(default_factory=list)

    def phase(self, name: PhaseName | str) -> Optional[MigrationPhase]:
        name = PhaseName(name)
        for p in self.phases:
            if p.name is name:
                return p
        return None

    def table_plans(self) -> List[TablePlan]:
        return [t for p in self.phases for t in p.tables]

    def table_plan(self, table_name: str) -> Optional[TablePlan]:
        for t in self.table_plans():
            if t.table_name == table_name:
                return t
        return None

    @property
    def total_batches(self) -> int:
        return sum(t.batch_count for t in self.table_plans())

    @property
    def total_rows(self) -> int:
        return sum(t.total_rows for t in self.table_plans())

    @property
    def estimated_duration(self) -> timedelta:
        return timedelta(seconds=self.estimated_duration_seconds)
