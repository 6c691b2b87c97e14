"""
core/pipeline.py
----------------
Facade over the engine: analyse → map → plan → execute → validate.

Design Decisions:
    * Every step returns ``Ok(value)`` or ``Err(kind, message, error, report)``;
      engine exceptions are converted at this boundary so callers branch on
      a value instead of catching a hierarchy.
    * Only :class:`MigrationEngineError` is converted. Programming errors
      (``TypeError``, ``KeyError`` …) still propagate.
    * Components are injectable so tests can swap a vocabulary or a
      validator without touching the facade.
"""
from __future__ import annotations

from pathlib import Path

from config import CONFIG, AppConfig
from connectors.base import SourceReader, TargetWriter
from core.entity_mapper import EntityTypeMapper
from core.errors import MigrationEngineError, ValidationFailureError
from core.executor import ExecutionOptions, MigrationExecutor
from core.migration_log import MigrationLog
from core.plan_generator import MigrationPlanGenerator
from core.schema_analyzer import SchemaAnalyzer
from core.script_generator import write_scripts
from core.validator import Validator
from core.vocabulary import DEFAULT_VOCABULARY, Vocabulary
from logger import get_logger
from models.mapping import EntityMappingResult, save_mapping_result
from models.plan import MigrationPlan, TargetConfig
from models.report import ExecutionReport, ValidationReport
from models.result import Err, Ok, Result
from models.schema import AnalysisOptions, SchemaAnalysisResult

log = get_logger(__name__)


class MigrationPipeline:
    """
    One object per source/target pair.

    Args:
        source:        Source connector.
        target:        EAV target connector (needed for execute/validate).
        vocabulary:    Entity vocabulary for analysis and mapping.
        migration_log: Shared log; defaults to ``MIGRATION_LOG_FILE``.
        config:        Application configuration.

    Example::

        pipeline = MigrationPipeline(source, target)
        result = pipeline.run(industry_context="manufacturing")
        if result.ok:
            print(result.value.summary())
        else:
            print(result.kind.value, result.message)
    """

    def __init__(
        self,
        source: SourceReader,
        target: TargetWriter | None = None,
        vocabulary: Vocabulary = DEFAULT_VOCABULARY,
        migration_log: MigrationLog | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.config = config or CONFIG
        self.source = source
        self.target = target
        self.migration_log = (
            migration_log if migration_log is not None
            else MigrationLog(self.config.migration.migration_log_file)
        )
        self.analyzer = SchemaAnalyzer(vocabulary, self.config.analysis)
        self.mapper = EntityTypeMapper(vocabulary, self.config.analysis)
        self.planner = MigrationPlanGenerator(self.config.migration)
        self.validator = Validator(self.config.migration)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def analyze(self, options: AnalysisOptions | None = None) -> Result[SchemaAnalysisResult]:
        try:
            return Ok(self.analyzer.analyze(self.source, options))
        except MigrationEngineError as exc:
            log.error("Analysis failed: %s", exc)
            return Err.from_exception(exc)

    def map_schema(
        self,
        analysis: SchemaAnalysisResult,
        business_context: str | None = None,
        industry_context: str | None = None,
        confidence_threshold: float | None = None,
        save_to: Path | str | None = None,
    ) -> Result[EntityMappingResult]:
        """Map every analysed table; optionally persist the result as JSON."""
        try:
            mapping = self.mapper.generate_mapping(
                analysis, business_context, industry_context, confidence_threshold,
            )
        except MigrationEngineError as exc:
            log.error("Mapping failed: %s", exc)
            return Err.from_exception(exc)
        if save_to is not None:
            self.save_mapping(mapping, save_to)
        return Ok(mapping)

    def save_mapping(self, mapping: EntityMappingResult, path: Path | str | None = None) -> Path:
        """Write *mapping* as JSON (default ``MAPPING_FILE``) for review or reuse."""
        out_path = Path(path) if path is not None else self.config.migration.mapping_file
        save_mapping_result(out_path, mapping)
        log.info("Mapping saved to %s", out_path)
        return out_path

    def plan(
        self,
        analysis: SchemaAnalysisResult,
        mapping: EntityMappingResult,
        target_config: TargetConfig | None = None,
    ) -> Result[MigrationPlan]:
        try:
            return Ok(self.planner.generate_migration_plan(
                analysis, mapping, target_config, self.migration_log,
            ))
        except MigrationEngineError as exc:
            log.error("Planning failed: %s", exc)
            return Err.from_exception(exc)

    def write_scripts(self, plan: MigrationPlan, output_dir: Path | str | None = None) -> list[Path]:
        """SQL scripts for *plan* under ``<output_dir or SCRIPTS_DIR>/<migration_id>/``."""
        return write_scripts(plan, output_dir if output_dir is not None else self.config.migration.scripts_dir)

    def execute(
        self, plan: MigrationPlan, options: ExecutionOptions | None = None
    ) -> Result[ExecutionReport]:
        if self.target is None:
            raise ValueError("A target connector is required to execute a plan")
        executor = MigrationExecutor(
            self.source, self.target, self.migration_log, options, self.validator,
        )
        try:
            return Ok(executor.execute(plan))
        except MigrationEngineError as exc:
            return Err.from_exception(exc)

    def validate(
        self,
        analysis: SchemaAnalysisResult,
        mapping: EntityMappingResult,
        execution_report: ExecutionReport,
    ) -> Result[ValidationReport]:
        """Full validation; a failed report is an ``Err`` carrying the report."""
        report = self.validator.validate(
            analysis, mapping, execution_report, self.target, self.migration_log,
        )
        execution_report.attach_validation(report)
        if not report.passed:
            exc = ValidationFailureError(
                f"{len(report.failures())} validation check(s) failed for "
                f"{execution_report.migration_id}",
                report=report,
            )
            return Err.from_exception(exc)
        return Ok(report)

    # ------------------------------------------------------------------
    # End to end
    # ------------------------------------------------------------------

    def run(
        self,
        business_context: str | None = None,
        industry_context: str | None = None,
        target_config: TargetConfig | None = None,
        options: ExecutionOptions | None = None,
    ) -> Result[ExecutionReport]:
        """
        Analyse, map, plan, execute and validate in one call.

        Returns ``Ok(execution_report)`` only when the migration is complete;
        a failed validation returns a ``validation_failure`` ``Err`` whose
        report is the execution report.
        """
        analysis = self.analyze()
        if not analysis.ok:
            return analysis
        mapping = self.map_schema(analysis.value, business_context, industry_context)
        if not mapping.ok:
            return mapping
        plan = self.plan(analysis.value, mapping.value, target_config)
        if not plan.ok:
            return plan
        executed = self.execute(plan.value, options)
        if not executed.ok:
            return executed

        report = executed.value
        validated = self.validate(analysis.value, mapping.value, report)
        if not validated.ok:
            return Err.from_exception(ValidationFailureError(
                f"Migration {report.migration_id} is not complete: {validated.message}",
                report=report,
            ))
        log.info("%s", report.summary())
        return Ok(report)
