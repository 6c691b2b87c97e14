"""
tests/test_script_generator.py
------------------------------
Unit tests for core/script_generator.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from pathlib import Path

import pytest

from core.entity_mapper import EntityTypeMapper
from core.migration_log import OP_BATCH, MigrationLog
from core.plan_generator import MigrationPlanGenerator
from core.schema_analyzer import SchemaAnalyzer
from core.script_generator import (
    generate_scripts,
    phase_script,
    rollback_script,
    table_script,
    write_scripts,
)
from models.plan import LogStatus
from tests.conftest import CRD_ITM, OCRD, OITM, build_plan, customer_rows, item_rows, link_rows

MID = "migration_1_abcdef"


@pytest.fixture
def plan(tables, rows):
    return build_plan(tables, rows)[2]


class TestGenerateScripts:
    def test_one_file_per_phase_plus_rollback(self, plan) -> None:
        scripts = generate_scripts(plan)
        assert list(scripts) == [
            "01_pre-validation.sql",
            "02_master-data.sql",
            "03_transactional-data.sql",
            "04_relationships.sql",
            "05_business-logic.sql",
            "06_indexes.sql",
            "07_post-validation.sql",
            "rollback.sql",
        ]

    def test_header(self, plan) -> None:
        text = generate_scripts(plan)["02_master-data.sql"]
        assert f"-- Migration    : {MID}" in text
        assert "-- Organization : acme" in text
        assert "-- Depends on   : pre-validation" in text
        assert "-- Risk         : high" in text

    def test_master_data_upserts(self, plan) -> None:
        text = generate_scripts(plan)["02_master-data.sql"]
        assert text.count("INSERT INTO core_entities") == 2
        assert "ON CONFLICT (organization_id, source_table, source_key)" in text
        assert "ORDER BY CardCode" in text
        assert "LIMIT 10" in text
        assert "BEGIN;" in text and "COMMIT;" in text

    def test_business_rules_and_indexes(self, plan) -> None:
        scripts = generate_scripts(plan)
        assert "'CK_OCRD_Balance'" in scripts["05_business-logic.sql"]
        assert "idx_core_entities_sales_order" in scripts["06_indexes.sql"]
        assert "Checks only" in scripts["01_pre-validation.sql"]

    def test_every_phase_logs_completion(self, plan) -> None:
        for name, text in generate_scripts(plan).items():
            if name != "rollback.sql":
                assert "'phase', 'completed'" in text


class TestTableScript:
    def test_junction_writes_relationships(self) -> None:
        plan = build_plan(
            [OCRD, OITM, CRD_ITM],
            {"OCRD": customer_rows(3), "OITM": item_rows(3), "CRD_ITM": link_rows()},
        )[2]
        phase = plan.phase("relationships")
        text = table_script(plan, phase, plan.table_plan("CRD_ITM"))
        assert "INSERT INTO core_relationships" in text
        assert "'OCRD', CardCode, 'OITM', ItemCode" in text
        assert "ORDER BY CardCode, ItemCode" in text

    def test_checkpoint_noted(self, source, target_config) -> None:
        log = MigrationLog()
        log.record(MID, "master-data", OP_BATCH, LogStatus.COMPLETED, "OCRD",
                   batch_number=2, last_key="C0020", rows_processed=20)
        analysis = SchemaAnalyzer().analyze(source)
        plan = MigrationPlanGenerator().generate_migration_plan(
            analysis, EntityTypeMapper().generate_mapping(analysis), target_config, log,
        )
        text = table_script(plan, plan.phase("master-data"), plan.table_plan("OCRD"))
        assert "-- Resume after batch 2 (last_key = 'C0020')" in text

    def test_timestamp_is_passed_through(self, plan) -> None:
        text = phase_script(plan, plan.phase("indexes"), timestamp="2024-01-01 00:00:00")
        assert "-- Generated    : 2024-01-01 00:00:00" in text


class TestRollbackScript:
    def test_reverse_phase_order(self, plan) -> None:
        text = rollback_script(plan, timestamp="2024-01-01 00:00:00")
        business = text.index("-- Rollback business-logic")
        transactional = text.index("-- Rollback transactional-data")
        master = text.index("-- Rollback master-data")
        assert business < transactional < master

    def test_data_rollback_keeps_rules(self, plan) -> None:
        text = rollback_script(plan)
        master = text[text.index("-- Rollback master-data"):text.index("-- Emergency rollback")]
        assert "core_business_rules" not in master
        assert f"DELETE FROM core_entities WHERE migration_id = '{MID}' AND source_table = 'OCRD';" in master

    def test_emergency_section(self, plan) -> None:
        text = rollback_script(plan)
        emergency = text[text.index("-- Emergency rollback"):]
        assert plan.emergency_rollback.deadline.isoformat() in emergency
        assert f"DELETE FROM core_business_rules WHERE migration_id = '{MID}';" in emergency


def test_write_scripts(plan, tmp_path: Path) -> None:
    paths = write_scripts(plan, tmp_path)
    assert len(paths) == 8
    assert all(p.parent == tmp_path / MID for p in paths)
    assert (tmp_path / MID / "rollback.sql").read_text(encoding="utf-8").startswith("-- EAV Rollback Script")
