"""
tests/test_schema_analyzer.py
------------------------------
Unit tests for core/schema_analyzer.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from connectors.memory import InMemorySource
from core.errors import ConnectivityError, UnsupportedSchemaError
from core.schema_analyzer import (
    SchemaAnalyzer,
    classify_column,
    detect_patterns,
    is_junction_table,
    score_data_quality,
)
from models.schema import (
    AnalysisOptions,
    ColumnClassification,
    DataQualityIssue,
    IssueSeverity,
    RelationshipSemantics,
    TablePurpose,
)
from models.source import SourceColumn, SourceForeignKey, SourceTable, SourceTrigger
from tests.conftest import CRD_ITM, OCRD, OITM, T1, T2, customer_rows, item_rows, link_rows


_CC = ColumnClassification


# ---------------------------------------------------------------------------
# classify_column
# ---------------------------------------------------------------------------

class TestClassifyColumn:
    def test_foreign_key_always_reference(self) -> None:
        col = SourceColumn("CardCode", "NVARCHAR(15)")
        assert classify_column(col, is_foreign_key=True) == (_CC.REFERENCE, 0.9, False)

    def test_identifier_primary_key(self) -> None:
        col = SourceColumn("CardCode", "NVARCHAR(15)", nullable=False)
        assert classify_column(col, is_primary_key=True, is_unique=True) == (_CC.IDENTIFIER, 0.9, False)

    def test_amount_agrees_with_numeric(self) -> None:
        cls, conf, review = classify_column(SourceColumn("DocTotal", "NUMERIC(19,6)"))
        assert cls is _CC.AMOUNT and conf == 0.85 and not review

    def test_name_type_conflict_needs_review(self) -> None:
        cls, conf, review = classify_column(SourceColumn("DocDate", "NVARCHAR(20)"))
        assert cls is _CC.DATE
        assert conf == 0.35
        assert review

    def test_unknown_name_primary_key_is_identifier(self) -> None:
        assert classify_column(SourceColumn("Fld1", "INT"), is_primary_key=True)[0] is _CC.IDENTIFIER

    def test_unknown_name_falls_back_to_type(self) -> None:
        assert classify_column(SourceColumn("Fld3", "DATETIME"))[0] is _CC.DATE
        assert classify_column(SourceColumn("Fld4", "BIT"))[0] is _CC.FLAG
        assert classify_column(SourceColumn("Fld2", "NVARCHAR(20)"))[0] is _CC.OTHER

    def test_single_char_flag(self) -> None:
        cls, _, review = classify_column(SourceColumn("validFor", "CHAR(1)", max_length=1))
        assert cls is _CC.FLAG and not review


# ---------------------------------------------------------------------------
# Structural helpers
# ---------------------------------------------------------------------------

class TestStructure:
    def test_link_table_is_junction(self) -> None:
        assert is_junction_table(CRD_ITM)

    def test_table_with_business_columns_is_not_junction(self) -> None:
        assert not is_junction_table(T2)

    def test_audit_columns_do_not_break_junction(self) -> None:
        table = SourceTable(
            name="LINK",
            columns=CRD_ITM.columns + (SourceColumn("UserSign", "INT"),),
            primary_key=CRD_ITM.primary_key,
            foreign_keys=CRD_ITM.foreign_keys,
        )
        assert is_junction_table(table)

    def test_sap_naming_and_composite_key(self) -> None:
        assert "sap-b1-naming" in detect_patterns(OCRD, (), [])
        assert "composite-key" in detect_patterns(CRD_ITM, (), [])
        assert "sap-b1-naming" not in detect_patterns(T1, (), [])


# ---------------------------------------------------------------------------
# score_data_quality
# ---------------------------------------------------------------------------

class TestDataQuality:
    @staticmethod
    def _issues(severity: IssueSeverity, count: int) -> list[DataQualityIssue]:
        return [DataQualityIssue("T", severity, f"issue {n}") for n in range(count)]

    def test_clean_source_scores_100(self) -> None:
        report = score_data_quality([])
        assert report.score == 100
        assert not report.cleanup_required

    def test_penalties(self) -> None:
        issues = self._issues(IssueSeverity.HIGH, 2) + self._issues(IssueSeverity.LOW, 3)
        assert score_data_quality(issues).score == 77

    def test_any_critical_requires_cleanup(self) -> None:
        assert score_data_quality(self._issues(IssueSeverity.CRITICAL, 1)).cleanup_required

    def test_more_than_five_high_requires_cleanup(self) -> None:
        assert not score_data_quality(self._issues(IssueSeverity.HIGH, 5)).cleanup_required
        assert score_data_quality(self._issues(IssueSeverity.HIGH, 6)).cleanup_required

    def test_score_floors_at_zero(self) -> None:
        assert score_data_quality(self._issues(IssueSeverity.CRITICAL, 5)).score == 0


# ---------------------------------------------------------------------------
# SchemaAnalyzer.analyze
# ---------------------------------------------------------------------------

class TestAnalyze:
    def test_tables_in_schema_order(self, analyzer, source) -> None:
        result = analyzer.analyze(source)
        assert result.table_names == ("OCRD", "T2", "T1")
        assert result.source_name == "sapb1"

    def test_row_counts(self, analyzer, source) -> None:
        result = analyzer.analyze(source)
        assert result.table("OCRD").row_count == 30
        assert result.table("T2").row_count == 50
        assert result.total_rows == 85

    def test_clean_fixture_has_full_score(self, analyzer, source) -> None:
        result = analyzer.analyze(source)
        assert result.data_quality.score == 100
        assert not result.data_quality.cleanup_required

    def test_column_classification(self, analyzer, source) -> None:
        orders = analyzer.analyze(source).table("T2")
        assert orders.column("DocEntry").classification is _CC.IDENTIFIER
        assert orders.column("CardCode").classification is _CC.REFERENCE
        assert orders.column("DocTotal").classification is _CC.AMOUNT
        assert orders.column("DocDate").classification is _CC.DATE

    def test_relationship_semantics(self, analyzer, source) -> None:
        result = analyzer.analyze(source)
        assert len(result.relationships) == 1
        fk = result.relationships[0]
        assert (fk.source_table, fk.target_table) == ("T2", "OCRD")
        assert fk.semantics is RelationshipSemantics.ONE_TO_MANY

    def test_purposes(self, analyzer, source) -> None:
        result = analyzer.analyze(source)
        assert result.table("OCRD").business_purpose is TablePurpose.MASTER
        assert result.table("T2").business_purpose is TablePurpose.TRANSACTIONAL

    def test_junction_semantics(self, analyzer) -> None:
        src = InMemorySource(
            [OCRD, OITM, CRD_ITM],
            rows={"OCRD": customer_rows(5), "OITM": item_rows(5), "CRD_ITM": link_rows()},
        )
        link = analyzer.analyze(src).table("CRD_ITM")
        assert link.is_junction
        assert {fk.semantics for fk in link.foreign_keys} == {RelationshipSemantics.MANY_TO_MANY}

    def test_self_reference_is_hierarchical(self, analyzer) -> None:
        table = SourceTable(
            name="OHEM",
            columns=(SourceColumn("empID", "INT", nullable=False), SourceColumn("manager", "INT")),
            primary_key=("empID",),
            foreign_keys=(SourceForeignKey("manager", "OHEM", "empID"),),
        )
        result = analyzer.analyze(InMemorySource([table]))
        assert result.relationships[0].semantics is RelationshipSemantics.HIERARCHICAL
        assert "hierarchical" in result.table("OHEM").data_patterns

    def test_business_rules_extracted(self, analyzer, source) -> None:
        rules = analyzer.analyze(source).business_rules
        assert [(r.name, r.rule_type) for r in rules] == [("CK_OCRD_Balance", "check")]

    def test_business_logic_can_be_disabled(self, analyzer, source) -> None:
        result = analyzer.analyze(source, AnalysisOptions(include_business_logic=False))
        assert result.business_rules == ()

    def test_triggers_become_rules_and_recommendation(self, analyzer) -> None:
        table = SourceTable(
            name="OITM",
            columns=OITM.columns,
            primary_key=OITM.primary_key,
            triggers=(SourceTrigger("TR_OITM", "AFTER", "UPDATE"),),
        )
        result = analyzer.analyze(InMemorySource([table]))
        assert [r.rule_type for r in result.business_rules] == ["trigger"]
        assert any("Triggers" in r for r in result.recommendations)

    def test_placeholder_in_required_column_is_critical(self, analyzer) -> None:
        rows = customer_rows(5) + [{"CardCode": "N/A", "CardName": "x", "Balance": 0}]
        result = analyzer.analyze(InMemorySource([OCRD], rows={"OCRD": rows}))
        severities = [i.severity for i in result.data_quality.issues]
        assert IssueSeverity.CRITICAL in severities
        assert result.data_quality.cleanup_required

    def test_missing_primary_key_is_high(self, analyzer) -> None:
        table = SourceTable(name="NOPK", columns=(SourceColumn("Fld1", "INT"),))
        result = analyzer.analyze(InMemorySource([table], row_counts={"NOPK": 3}))
        assert [i.severity for i in result.data_quality.issues] == [IssueSeverity.HIGH]
        assert result.data_quality.score == 90

    def test_reported_row_counts_without_rows(self, analyzer) -> None:
        result = analyzer.analyze(InMemorySource([OCRD], row_counts={"OCRD": 2_500_000}))
        assert result.table("OCRD").row_count == 2_500_000
        assert any("large tables" in f for f in result.complexity.factors)

    def test_deterministic(self, analyzer, source) -> None:
        first = analyzer.analyze(source)
        second = analyzer.analyze(source)
        assert first.tables == second.tables
        assert first.data_quality == second.data_quality


class TestAnalyzeFailures:
    def test_unreachable_source(self, analyzer, tables) -> None:
        with pytest.raises(ConnectivityError):
            analyzer.analyze(InMemorySource(tables, reachable=False))

    def test_empty_source(self, analyzer) -> None:
        with pytest.raises(UnsupportedSchemaError):
            analyzer.analyze(InMemorySource([]))

    def test_driver_failure_wrapped_and_source_closed(self, analyzer) -> None:
        source = MagicMock()
        source.name = "broken"
        source.list_tables.side_effect = RuntimeError("socket closed")
        with pytest.raises(ConnectivityError, match="socket closed"):
            analyzer.analyze(source)
        source.close.assert_called_once()

    def test_connect_failure_wrapped(self, analyzer) -> None:
        source = MagicMock()
        source.name = "broken"
        source.connect.side_effect = OSError("connection refused")
        with pytest.raises(ConnectivityError, match="connection refused"):
            analyzer.analyze(source)
        source.list_tables.assert_not_called()
