"""
tests/test_plan_generator.py
-----------------------------
Unit tests for core/plan_generator.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import re
from datetime import timedelta

import pytest

from connectors.memory import InMemorySource
from core.errors import DependencyUnmetError
from core.migration_log import OP_BATCH, MigrationLog
from core.plan_generator import compute_batches, new_migration_id
from models.plan import LogStatus, MigrationPlan, PhaseName, RiskLevel, TargetConfig
from models.source import SourceColumn, SourceIndex, SourceTable
from tests.conftest import CRD_ITM, OCRD, OITM, T2, build_plan, customer_rows, item_rows, link_rows


@pytest.fixture
def planned(tables, rows):
    return build_plan(tables, rows)


# ---------------------------------------------------------------------------
# Batch law
# ---------------------------------------------------------------------------

class TestComputeBatches:
    def test_sizes(self) -> None:
        assert [b.size for b in compute_batches(2500, 1000)] == [1000, 1000, 500]

    def test_offsets_and_numbers(self) -> None:
        batches = compute_batches(25, 10)
        assert [(b.batch_number, b.offset) for b in batches] == [(1, 0), (2, 10), (3, 20)]

    @pytest.mark.parametrize("rows, size, count", [
        (0, 1000, 0),
        (1, 1000, 1),
        (1000, 1000, 1),
        (1001, 1000, 2),
        (2_500_000, 1000, 2500),
    ])
    def test_count_is_ceiling(self, rows: int, size: int, count: int) -> None:
        batches = compute_batches(rows, size)
        assert len(batches) == count
        assert sum(b.size for b in batches) == rows

    def test_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError):
            compute_batches(10, 0)


def test_migration_id_format() -> None:
    assert re.fullmatch(r"migration_\d+_[0-9a-f]{6}", new_migration_id())
    assert new_migration_id(now=1.5).startswith("migration_1500_")


# ---------------------------------------------------------------------------
# Plan structure
# ---------------------------------------------------------------------------

class TestPlanStructure:
    def test_seven_phases_in_order(self, planned) -> None:
        plan = planned[2]
        assert [p.name for p in plan.phases] == list(PhaseName)
        assert [p.order for p in plan.phases] == list(range(1, 8))

    def test_dependencies(self, planned) -> None:
        plan = planned[2]
        assert plan.phase("master-data").dependencies == [PhaseName.PRE_VALIDATION]
        assert plan.phase("transactional-data").dependencies == [PhaseName.MASTER_DATA]
        assert PhaseName.INDEXES in plan.phase("post-validation").dependencies

    def test_tables_split_into_phases(self, planned) -> None:
        plan = planned[2]
        assert [t.table_name for t in plan.phase("master-data").tables] == ["OCRD", "T1"]
        assert [t.table_name for t in plan.phase("transactional-data").tables] == ["T2"]
        assert plan.phase("relationships").tables == []

    def test_batches_per_table(self, planned) -> None:
        plan = planned[2]
        assert plan.table_plan("OCRD").batch_count == 3
        assert plan.table_plan("T1").batch_count == 1
        assert plan.table_plan("T2").batch_count == 5
        assert plan.total_batches == 9
        assert plan.total_rows == 85

    def test_ordering_key_and_fields(self, planned) -> None:
        t2 = planned[2].table_plan("T2")
        assert t2.ordering_key == "DocEntry"
        assert [r.target_table for r in t2.references] == ["OCRD"]
        assert {f.target_field for f in t2.fields} == {"entity_code", "card_code", "doc_total", "doc_date"}

    def test_review_tables_raise_risk(self, planned) -> None:
        plan = planned[2]
        assert plan.needs_review_tables == ["T2", "T1"]
        assert plan.phase("master-data").risk is RiskLevel.HIGH
        assert plan.risk is RiskLevel.HIGH
        assert any("needs review" in w for w in plan.table_plan("T1").warnings)

    def test_rollback_descriptors_reverse_execution(self, planned) -> None:
        plan = planned[2]
        steps = plan.phase("master-data").rollback.steps
        assert [(s.order, s.table_name) for s in steps] == [(1, "T1"), (2, "OCRD")]
        assert steps[1].batch_count == 3

    def test_business_rules_and_indexes(self, planned) -> None:
        plan = planned[2]
        business = plan.phase("business-logic")
        assert [r.rule_name for r in business.rules] == ["CK_OCRD_Balance"]
        assert [s.table_name for s in business.rollback.steps] == ["OCRD"]
        assert plan.phase("indexes").entity_types == ["customer", "generic_entity", "sales_order"]

    def test_emergency_rollback_window(self, planned) -> None:
        plan = planned[2]
        assert plan.emergency_rollback.migration_id == plan.migration_id
        assert plan.emergency_rollback.deadline - plan.created_at == timedelta(hours=24)
        assert plan.emergency_rollback.is_open(plan.created_at)
        assert not plan.emergency_rollback.is_open(plan.created_at + timedelta(hours=25))

    def test_pydantic_round_trip(self, planned) -> None:
        plan = planned[2]
        assert MigrationPlan.model_validate_json(plan.model_dump_json()) == plan


class TestLargeAndSpecialTables:
    def test_large_table(self) -> None:
        _, _, plan = build_plan([OCRD], row_counts={"OCRD": 2_500_000}, batch_size=1000)
        table = plan.table_plan("OCRD")
        assert table.batch_count == 2500
        assert table.final_batch_size == 1000
        assert plan.phase("master-data").risk is RiskLevel.HIGH
        assert plan.estimated_duration_seconds == pytest.approx(500 + 25 + 35)

    def test_junction_goes_to_relationships(self) -> None:
        _, _, plan = build_plan(
            [OCRD, OITM, CRD_ITM],
            {"OCRD": customer_rows(5), "OITM": item_rows(5), "CRD_ITM": link_rows()},
        )
        link = plan.table_plan("CRD_ITM")
        assert plan.phase("relationships").tables == [link]
        assert link.junction
        assert link.ordering_key == "CardCode, ItemCode"
        assert link.ordering_columns == ["CardCode", "ItemCode"]

    def test_same_wave_for_independent_masters(self) -> None:
        _, _, plan = build_plan(
            [OCRD, OITM, CRD_ITM],
            {"OCRD": customer_rows(5), "OITM": item_rows(5), "CRD_ITM": link_rows()},
        )
        waves = plan.phase("master-data").waves()
        assert [[t.table_name for t in w] for w in waves] == [["OCRD", "OITM"]]

    def test_no_primary_key_orders_by_all_columns(self) -> None:
        table = SourceTable(name="NOPK", columns=(SourceColumn("Fld1", "INT"), SourceColumn("Fld2", "INT")))
        _, _, plan = build_plan([table], row_counts={"NOPK": 5})
        nopk = plan.table_plan("NOPK")
        assert nopk.ordering_key == "Fld1, Fld2"
        assert nopk.ordering_columns == ["Fld1", "Fld2"]
        assert any("No primary key or unique key" in w for w in nopk.warnings)

    @pytest.mark.parametrize("columns, indexes, expected", [
        ((SourceColumn("Code", "NVARCHAR", nullable=False, is_unique=True), SourceColumn("Fld2", "INT")),
         (), "Code"),
        ((SourceColumn("Fld1", "INT", nullable=False), SourceColumn("Fld2", "INT", nullable=False)),
         (SourceIndex("UX_NOPK", ("Fld1", "Fld2"), unique=True),), "Fld1, Fld2"),
        ((SourceColumn("Code", "NVARCHAR", is_unique=True), SourceColumn("Fld2", "INT")),
         (), "Code, Fld2"),
    ], ids=["unique-column", "unique-index", "nullable-unique-ignored"])
    def test_no_primary_key_prefers_not_null_unique_key(self, columns, indexes, expected) -> None:
        table = SourceTable(name="NOPK", columns=columns, indexes=indexes)
        _, _, plan = build_plan([table], row_counts={"NOPK": 5})
        assert plan.table_plan("NOPK").ordering_key == expected


class TestPlanGeneration:
    def test_deterministic_apart_from_timestamps(self, analyzer, mapper, planner, source, target_config) -> None:
        analysis = analyzer.analyze(source)
        mapping = mapper.generate_mapping(analysis)
        first = planner.generate_migration_plan(analysis, mapping, target_config)
        second = planner.generate_migration_plan(analysis, mapping, target_config)
        exclude = {"created_at": True, "emergency_rollback": {"deadline"}}
        assert first.model_dump(exclude=exclude) == second.model_dump(exclude=exclude)

    def test_generated_migration_id(self, analyzer, mapper, planner, source) -> None:
        analysis = analyzer.analyze(source)
        plan = planner.generate_migration_plan(
            analysis, mapper.generate_mapping(analysis), TargetConfig(organization_id="acme"),
        )
        assert plan.migration_id.startswith("migration_")
        assert plan.organization_id == "acme"

    def test_mapping_must_cover_schema(self, analyzer, mapper, planner) -> None:
        full = analyzer.analyze(InMemorySource([OCRD, T2]))
        partial = analyzer.analyze(InMemorySource([OCRD]))
        with pytest.raises(DependencyUnmetError, match="mapping for T2"):
            planner.generate_migration_plan(full, mapper.generate_mapping(partial))

    def test_checkpoint_from_log(self, analyzer, mapper, planner, source, target_config) -> None:
        log = MigrationLog()
        log.record(target_config.migration_id, "master-data", OP_BATCH, LogStatus.COMPLETED, "OCRD",
                   batch_number=2, last_key="C0020", rows_processed=20)
        analysis = analyzer.analyze(source)
        plan = planner.generate_migration_plan(
            analysis, mapper.generate_mapping(analysis), target_config, log,
        )
        ocrd = plan.table_plan("OCRD")
        assert ocrd.checkpoint.last_key == "C0020"
        assert ocrd.resume_batch == 3
        assert plan.table_plan("T2").resume_batch == 1

    def test_cleanup_required_forces_high_risk(self) -> None:
        rows = customer_rows(5) + [{"CardCode": "N/A", "CardName": "x", "Balance": 1}]
        _, _, plan = build_plan([OCRD], {"OCRD": rows})
        assert plan.cleanup_required
        assert plan.risk is RiskLevel.HIGH
