"""
core/errors.py
--------------
Exception hierarchy for the migration engine.

Every exception carries an :class:`ErrorKind` so the pipeline facade can
turn it into a tagged ``Err`` without inspecting the class. Fatal errors
raised before any write may carry the partial report built so far.
"""
from __future__ import annotations

from typing import Any

from models.result import ErrorKind


class MigrationEngineError(Exception):
    """Base class for engine failures."""

    kind: ErrorKind = ErrorKind.EXECUTION

    def __init__(self, message: str, *, report: Any = None) -> None:
        super().__init__(message)
        self.report = report


class ConnectivityError(MigrationEngineError):
    """The source or target cannot be reached."""
    kind = ErrorKind.CONNECTIVITY


class SchemaValidationError(MigrationEngineError):
    kind = ErrorKind.SCHEMA_VALIDATION


class UnsupportedSchemaError(SchemaValidationError):
    """The source exposes no analysable tables."""


class TargetSchemaMissingError(SchemaValidationError):
    """Required target EAV tables are absent."""

    def __init__(self, missing: list[str], *, report: Any = None) -> None:
        super().__init__(
            f"Target schema is missing required table(s): {', '.join(missing)}",
            report=report,
        )
        self.missing = list(missing)


class DataQualityError(MigrationEngineError):
    """Raised only when data-quality blocking is enabled."""
    kind = ErrorKind.DATA_QUALITY


class InsufficientSignalError(MigrationEngineError):
    """No classification signal for a table; handled as a soft warning."""
    kind = ErrorKind.CLASSIFICATION_UNCERTAINTY

    def __init__(self, table: str) -> None:
        super().__init__(
            f"No table-name, column or relationship signal for '{table}'; "
            "falling back to the generic entity type."
        )
        self.table = table


class ExecutionError(MigrationEngineError):
    """A batch could not be written after all retries."""
    kind = ErrorKind.EXECUTION


class TargetWriteError(ExecutionError):
    """Raised by a TargetWriter for a failed (retryable) write."""


class DependencyUnmetError(ExecutionError):
    """A phase's prerequisite phase has not completed."""

    def __init__(self, phase: str, missing: list[str], *, report: Any = None) -> None:
        super().__init__(
            f"'{phase}' has unmet dependencies: {', '.join(missing)}",
            report=report,
        )
        self.phase = phase
        self.missing = list(missing)


class RollbackWindowExpiredError(ExecutionError):
    """The emergency rollback window for a migration has closed."""


class ValidationFailureError(MigrationEngineError):
    """Post-migration validation failed; the migration is not complete."""
    kind = ErrorKind.VALIDATION_FAILURE
