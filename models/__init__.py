"""models/__init__.py"""
from models.mapping import (
    GENERIC_ENTITY_TYPE,
    AlternativeMapping,
    BusinessRuleMapping,
    EntityCategory,
    EntityMapping,
    EntityMappingResult,
    FieldMapping,
    MappingCheck,
    MappingStrategy,
    RelationshipNote,
    StorageTier,
    load_mapping_result,
    save_mapping_result,
)
from models.plan import (
    Checkpoint,
    LogEntry,
    LogStatus,
    MigrationPhase,
    MigrationPlan,
    PhaseName,
    RiskLevel,
    TablePlan,
    TargetConfig,
)
from models.records import BusinessRuleRecord, EntityRecord, RelationshipRecord
from models.report import (
    ExecutionReport,
    ExecutionStatus,
    Impact,
    PhaseStatus,
    TableResult,
    ValidationFinding,
    ValidationReport,
    ValidationStatus,
)
from models.result import Err, ErrorKind, Ok
from models.schema import (
    AnalysisOptions,
    ColumnClassification,
    ColumnDescriptor,
    DataQualityIssue,
    DataQualityReport,
    ForeignKeyDescriptor,
    IssueSeverity,
    RelationshipSemantics,
    SchemaAnalysisResult,
    TableDescriptor,
    TablePurpose,
)
from models.source import SourceColumn, SourceForeignKey, SourceTable

__all__ = [
    "GENERIC_ENTITY_TYPE",
    "AlternativeMapping",
    "BusinessRuleMapping",
    "EntityCategory",
    "EntityMapping",
    "EntityMappingResult",
    "FieldMapping",
    "MappingCheck",
    "MappingStrategy",
    "RelationshipNote",
    "StorageTier",
    "load_mapping_result",
    "save_mapping_result",
    "Checkpoint",
    "LogEntry",
    "LogStatus",
    "MigrationPhase",
    "MigrationPlan",
    "PhaseName",
    "RiskLevel",
    "TablePlan",
    "TargetConfig",
    "BusinessRuleRecord",
    "EntityRecord",
    "RelationshipRecord",
    "ExecutionReport",
    "ExecutionStatus",
    "Impact",
    "PhaseStatus",
    "TableResult",
    "ValidationFinding",
    "ValidationReport",
    "ValidationStatus",
    "Err",
    "ErrorKind",
    "Ok",
    "AnalysisOptions",
    "ColumnClassification",
    "ColumnDescriptor",
    "DataQualityIssue",
    "DataQualityReport",
    "ForeignKeyDescriptor",
    "IssueSeverity",
    "RelationshipSemantics",
    "SchemaAnalysisResult",
    "TableDescriptor",
    "TablePurpose",
    "SourceColumn",
    "SourceForeignKey",
    "SourceTable",
]
