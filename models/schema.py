"""
models/schema.py
----------------
Immutable structural model produced by the Schema Analyzer.

Design Decision:
    Every descriptor is a frozen dataclass holding tuples, so a
    ``SchemaAnalysisResult`` is a snapshot: re-analysis produces a new
    object rather than mutating the old one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ColumnClassification(str, Enum):
    IDENTIFIER = "identifier"
    NAME = "name"
    DESCRIPTION = "description"
    AMOUNT = "amount"
    DATE = "date"
    FLAG = "flag"
    REFERENCE = "reference"
    OTHER = "other"


class RelationshipSemantics(str, Enum):
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"
    HIERARCHICAL = "hierarchical"
    SELF_REFERENCING = "self-referencing"


class TablePurpose(str, Enum):
    MASTER = "master"
    TRANSACTIONAL = "transactional"
    JUNCTION = "junction"
    CONFIGURATION = "configuration"
    AUDIT = "audit"
    LOOKUP = "lookup"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Points deducted from the data-quality score per issue
SEVERITY_PENALTY: dict[IssueSeverity, int] = {
    IssueSeverity.CRITICAL: 25,
    IssueSeverity.HIGH: 10,
    IssueSeverity.MEDIUM: 5,
    IssueSeverity.LOW: 1,
}


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    One analysed column.

    ``classification`` and ``confidence`` come from the name/type
    cross-check; ``needs_review`` is set when the two signals disagree.
    """
    name: str
    data_type: str
    nullable: bool = True
    default: str | None = None
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    is_identity: bool = False
    computed_expression: str | None = None
    is_primary_key: bool = False
    is_unique: bool = False
    is_foreign_key: bool = False
    classification: ColumnClassification = ColumnClassification.OTHER
    business_meaning: str = ""
    suggested_field: str = ""
    confidence: float = 0.5
    needs_review: bool = False
    # distinct / non-null values in the sample; None when the sample was too small
    sample_distinct_ratio: float | None = None


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"
    semantics: RelationshipSemantics = RelationshipSemantics.ONE_TO_MANY

    @property
    def is_self_reference(self) -> bool:
        return self.source_table == self.target_table


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    columns: tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class ConstraintDescriptor:
    name: str
    kind: str
    expression: str
    columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class TriggerDescriptor:
    name: str
    timing: str
    event: str
    body: str = ""


@dataclass(frozen=True)
class TableDescriptor:
    name: str
    columns: tuple[ColumnDescriptor, ...]
    schema: str = "dbo"
    primary_key: tuple[str, ...] = ()
    foreign_keys: tuple[ForeignKeyDescriptor, ...] = ()
    indexes: tuple[IndexDescriptor, ...] = ()
    constraints: tuple[ConstraintDescriptor, ...] = ()
    triggers: tuple[TriggerDescriptor, ...] = ()
    row_count: int = 0
    estimated_size_bytes: int = 0
    business_purpose: TablePurpose = TablePurpose.MASTER
    data_patterns: tuple[str, ...] = ()

    def column(self, name: str) -> ColumnDescriptor | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def business_columns(self) -> tuple[ColumnDescriptor, ...]:
        """Columns that are neither keys nor generated."""
        return tuple(
            c for c in self.columns
            if not (c.is_primary_key or c.is_foreign_key or c.is_identity)
        )

    @property
    def is_junction(self) -> bool:
        return self.business_purpose is TablePurpose.JUNCTION

    @property
    def referenced_tables(self) -> tuple[str, ...]:
        """Distinct FK targets other than the table itself, in declaration order."""
        seen: list[str] = []
        for fk in self.foreign_keys:
            if not fk.is_self_reference and fk.target_table not in seen:
                seen.append(fk.target_table)
        return tuple(seen)


@dataclass(frozen=True)
class DataQualityIssue:
    table: str
    severity: IssueSeverity
    description: str
    column: str | None = None
    recommendation: str = ""


@dataclass(frozen=True)
class DataQualityReport:
    score: int
    issues: tuple[DataQualityIssue, ...] = ()
    cleanup_required: bool = False

    def count(self, severity: IssueSeverity) -> int:
        return sum(1 for i in self.issues if i.severity is severity)


@dataclass(frozen=True)
class BusinessRule:
    """A constraint or trigger extracted from the source as a candidate rule."""
    name: str
    table: str
    rule_type: str
    expression: str
    columns: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class ComplexityEstimate:
    level: str
    score: int
    estimated_effort_hours: float
    factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisOptions:
    include_business_logic: bool = True
    analyze_relationships: bool = True
    extract_constraints: bool = True
    sample_data_rows: int | None = None
    industry_context: str | None = None
    business_context: str | None = None


@dataclass(frozen=True)
class SchemaAnalysisResult:
    source_name: str
    tables: tuple[TableDescriptor, ...]
    relationships: tuple[ForeignKeyDescriptor, ...]
    data_quality: DataQualityReport
    business_rules: tuple[BusinessRule, ...] = ()
    complexity: ComplexityEstimate | None = None
    recommendations: tuple[str, ...] = ()
    summary: str = ""
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    vocabulary_version: str = ""
    analyzed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    def table(self, name: str) -> TableDescriptor | None:
        for tbl in self.tables:
            if tbl.name == name:
                return tbl
        return None

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self.tables)

    @property
    def total_rows(self) -> int:
        return sum(t.row_count for t in self.tables)
