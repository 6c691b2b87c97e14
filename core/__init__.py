"""core/__init__.py"""
from core.errors import (
    ConnectivityError,
    DataQualityError,
    DependencyUnmetError,
    ExecutionError,
    InsufficientSignalError,
    MigrationEngineError,
    RollbackWindowExpiredError,
    SchemaValidationError,
    TargetSchemaMissingError,
    TargetWriteError,
    UnsupportedSchemaError,
    ValidationFailureError,
)
from core.schema_parser import parse_schema_file, parse_schema_text, SchemaParseError
from core.type_converter import TypeCategory, categorize
from core.vocabulary import DEFAULT_VOCABULARY, EntityPattern, Vocabulary
from core.schema_analyzer import SchemaAnalyzer
from core.entity_mapper import EntityTypeMapper
from core.plan_generator import MigrationPlanGenerator, compute_batches
from core.migration_log import MigrationLog
from core.executor import ExecutionOptions, MigrationExecutor
from core.validator import Validator
from core.script_generator import generate_scripts, write_scripts
from core.pipeline import MigrationPipeline

__all__ = [
    "ConnectivityError",
    "DataQualityError",
    "DependencyUnmetError",
    "ExecutionError",
    "InsufficientSignalError",
    "MigrationEngineError",
    "RollbackWindowExpiredError",
    "SchemaValidationError",
    "TargetSchemaMissingError",
    "TargetWriteError",
    "UnsupportedSchemaError",
    "ValidationFailureError",
    "parse_schema_file",
    "parse_schema_text",
    "SchemaParseError",
    "TypeCategory",
    "categorize",
    "DEFAULT_VOCABULARY",
    "EntityPattern",
    "Vocabulary",
    "SchemaAnalyzer",
    "EntityTypeMapper",
    "MigrationPlanGenerator",
    "compute_batches",
    "MigrationLog",
    "ExecutionOptions",
    "MigrationExecutor",
    "Validator",
    "generate_scripts",
    "write_scripts",
    "MigrationPipeline",
]
