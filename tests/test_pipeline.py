"""
tests/test_pipeline.py
----------------------
Unit tests for core/pipeline.py (the Ok / Err facade).
Run with: python -m pytest tests/
"""
from __future__ import annotations

from pathlib import Path

import pytest

from config import AppConfig, MigrationConfig
from connectors.memory import InMemorySource, InMemoryTarget
from core.errors import TargetSchemaMissingError
from core.executor import ExecutionOptions, MigrationExecutor
from core.migration_log import MigrationLog
from core.pipeline import MigrationPipeline
from models.mapping import load_mapping_result
from models.plan import TargetConfig
from models.report import ExecutionStatus, ValidationStatus
from models.result import Err, ErrorKind, Ok
from tests.conftest import OCRD, customer_rows

MID = "migration_1_abcdef"


class DriftingSource(InMemorySource):
    """Reports two more rows than it can actually read."""

    def count_rows(self, table: str) -> int:
        return super().count_rows(table) + 2


@pytest.fixture
def options() -> ExecutionOptions:
    return ExecutionOptions(parallel_workers=1, max_retries=0, block_on_data_quality=False,
                            sleep=lambda s: None)


@pytest.fixture
def pipeline(source, target) -> MigrationPipeline:
    return MigrationPipeline(source, target, migration_log=MigrationLog())


class TestSteps:
    def test_analyze_ok(self, pipeline) -> None:
        result = pipeline.analyze()
        assert isinstance(result, Ok)
        assert [t.name for t in result.value.tables] == ["OCRD", "T2", "T1"]

    def test_analyze_unreachable_is_connectivity_err(self, tables) -> None:
        pipeline = MigrationPipeline(InMemorySource(tables, reachable=False), migration_log=MigrationLog())
        result = pipeline.analyze()
        assert isinstance(result, Err)
        assert result.kind is ErrorKind.CONNECTIVITY
        assert not result.ok

    def test_map_schema_saves_json(self, pipeline, tmp_path: Path) -> None:
        analysis = pipeline.analyze().unwrap()
        path = tmp_path / "entity_mappings.json"
        mapping = pipeline.map_schema(analysis, industry_context="manufacturing", save_to=path).unwrap()
        saved = load_mapping_result(path)
        assert saved.industry_context == "manufacturing"
        assert [m.source_table for m in saved] == [m.source_table for m in mapping]

    def test_configured_output_locations(self, source, target_config, tmp_path: Path) -> None:
        config = AppConfig(migration=MigrationConfig(
            mapping_file=tmp_path / "mappings.json", scripts_dir=tmp_path / "sql",
        ))
        pipeline = MigrationPipeline(source, migration_log=MigrationLog(), config=config)
        analysis = pipeline.analyze().unwrap()
        mapping = pipeline.map_schema(analysis).unwrap()

        assert pipeline.save_mapping(mapping) == tmp_path / "mappings.json"
        assert len(load_mapping_result(tmp_path / "mappings.json")) == 3

        plan = pipeline.plan(analysis, mapping, target_config).unwrap()
        paths = pipeline.write_scripts(plan)
        assert (tmp_path / "sql" / MID / "rollback.sql") in paths

    def test_plan_ok(self, pipeline, target_config) -> None:
        analysis = pipeline.analyze().unwrap()
        mapping = pipeline.map_schema(analysis).unwrap()
        plan = pipeline.plan(analysis, mapping, target_config).unwrap()
        assert plan.migration_id == MID
        assert plan.total_rows == 85

    def test_execute_requires_target(self, source) -> None:
        pipeline = MigrationPipeline(source, migration_log=MigrationLog())
        analysis = pipeline.analyze().unwrap()
        plan = pipeline.plan(analysis, pipeline.map_schema(analysis).unwrap()).unwrap()
        with pytest.raises(ValueError):
            pipeline.execute(plan)

    def test_execute_missing_schema_is_err_with_report(self, source, target_config, options) -> None:
        pipeline = MigrationPipeline(source, InMemoryTarget(tables=[]), migration_log=MigrationLog())
        analysis = pipeline.analyze().unwrap()
        plan = pipeline.plan(analysis, pipeline.map_schema(analysis).unwrap(), target_config).unwrap()
        result = pipeline.execute(plan, options)
        assert result.kind is ErrorKind.SCHEMA_VALIDATION
        assert isinstance(result.error, TargetSchemaMissingError)
        assert result.report.status is ExecutionStatus.ABORTED
        with pytest.raises(TargetSchemaMissingError):
            result.unwrap()


    def test_source_read_error_returns_failed_report(self, target, target_config, options) -> None:
        class ResetSource(InMemorySource):
            def read_batch(self, table, order_key, after_key, limit):
                raise OSError("socket reset by peer")

        pipeline = MigrationPipeline(ResetSource([OCRD], rows={"OCRD": customer_rows(20)}), target,
                                     migration_log=MigrationLog())
        analysis = pipeline.analyze().unwrap()
        plan = pipeline.plan(analysis, pipeline.map_schema(analysis).unwrap(), target_config).unwrap()
        result = pipeline.execute(plan, options)

        assert isinstance(result, Ok)
        assert result.value.status is ExecutionStatus.FAILED
        assert "socket reset by peer" in result.value.table_result("OCRD").errors[0]
        assert target.write_calls == 0

    def test_validate_without_target_uses_log_after_resume(self, source, target, target_config, options) -> None:
        migration_log = MigrationLog()
        executing = MigrationPipeline(source, target, migration_log=migration_log)
        analysis = executing.analyze().unwrap()
        mapping = executing.map_schema(analysis).unwrap()
        plan = executing.plan(analysis, mapping, target_config).unwrap()
        executing.execute(plan, options).unwrap()

        resumed = MigrationExecutor(source, target, migration_log, options).execute(plan)
        assert resumed.table_results() == []
        offline = MigrationPipeline(source, migration_log=migration_log)
        validation = offline.validate(analysis, mapping, resumed)
        assert isinstance(validation, Ok)
        assert all(f.status is not ValidationStatus.FAILED for f in validation.value.findings)


class TestRun:
    def test_end_to_end(self, pipeline, target, target_config, options) -> None:
        result = pipeline.run(target_config=target_config, options=options)
        assert isinstance(result, Ok)
        report = result.value
        assert report.complete
        assert report.validation.passed
        assert target.count_entities(MID) == 85

    def test_row_shortfall_is_validation_failure(self, target_config, options) -> None:
        source = DriftingSource([OCRD], rows={"OCRD": customer_rows(890)})
        target = InMemoryTarget()
        pipeline = MigrationPipeline(source, target, migration_log=MigrationLog())
        result = pipeline.run(target_config=target_config, options=options)

        assert isinstance(result, Err)
        assert result.kind is ErrorKind.VALIDATION_FAILURE
        assert result.report.status is ExecutionStatus.VALIDATION_FAILED
        assert not result.report.complete
        assert target.count_entities(MID) == 890

    def test_unreachable_source_stops_before_planning(self, tables, target) -> None:
        pipeline = MigrationPipeline(InMemorySource(tables, reachable=False), target,
                                     migration_log=MigrationLog())
        result = pipeline.run(target_config=TargetConfig(organization_id="acme"))
        assert result.kind is ErrorKind.CONNECTIVITY
        assert target.write_calls == 0
