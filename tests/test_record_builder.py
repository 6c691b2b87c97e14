"""
tests/test_record_builder.py
-----------------------------
Unit tests for core/record_builder.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from core.record_builder import (
    apply_transformation,
    build_entity_record,
    build_relationship_record,
    build_rule_record,
    cursor_value,
    source_key,
)
from models.plan import BusinessRuleSpec, FieldSpec, ReferenceSpec, TablePlan


def _orders_plan() -> TablePlan:
    return TablePlan(
        table_name="T2",
        entity_type="sales_order",
        category="transactional",
        ordering_key="DocEntry",
        total_rows=1,
        batch_size=10,
        fields=[
            FieldSpec(source_column="DocEntry", target_field="entity_code", tier="identity"),
            FieldSpec(source_column="CardCode", target_field="card_code", tier="attribute-metadata"),
            FieldSpec(source_column="DocTotal", target_field="doc_total", tier="dynamic-property",
                      transformation="to_decimal", data_type="number"),
            FieldSpec(source_column="DocDate", target_field="doc_date", tier="dynamic-property",
                      transformation="to_iso_date", data_type="date"),
        ],
        references=[ReferenceSpec(column="CardCode", target_table="OCRD", target_column="CardCode")],
    )


def _link_plan() -> TablePlan:
    return TablePlan(
        table_name="CRD_ITM",
        entity_type="product",
        category="relationship",
        ordering_key="CardCode, ItemCode",
        total_rows=1,
        batch_size=10,
        junction=True,
        references=[
            ReferenceSpec(column="CardCode", target_table="OCRD", target_column="CardCode"),
            ReferenceSpec(column="ItemCode", target_table="OITM", target_column="ItemCode"),
        ],
    )


class TestTransformations:
    @pytest.mark.parametrize("name, value, expected", [
        ("trim", "  C0001 ", "C0001"),
        ("trim", 5, 5),
        ("to_decimal", "10.50", Decimal("10.50")),
        ("to_decimal", True, Decimal(1)),
        ("to_decimal", "abc", "abc"),
        ("to_iso_date", datetime(2024, 1, 2, 3, 4), "2024-01-02T03:04:00"),
        ("to_iso_date", date(2024, 1, 2), "2024-01-02"),
        ("to_iso_date", "0000-00-00", None),
        ("to_iso_date", "not a date", "not a date"),
        ("to_bool", "Y", True),
        ("to_bool", "n", False),
        ("to_bool", 0, False),
        ("to_bool", "maybe", "maybe"),
        (None, " x ", " x "),
        ("unknown", " x ", " x "),
    ])
    def test_apply(self, name, value, expected) -> None:
        assert apply_transformation(name, value) == expected

    def test_none_passes_through(self) -> None:
        for name in ("trim", "to_decimal", "to_iso_date", "to_bool"):
            assert apply_transformation(name, None) is None


class TestEntityRecord:
    def test_tiers_and_references(self) -> None:
        row = {"DocEntry": 7, "CardCode": "C0001", "DocTotal": "21", "DocDate": datetime(2024, 1, 8)}
        record = build_entity_record(row, _orders_plan(), "acme", "m1")
        assert record.key == ("acme", "T2", "7")
        assert record.entity_code == "7"
        assert record.metadata == {"card_code": "C0001"}
        assert record.dynamic == {"doc_total": Decimal("21"), "doc_date": "2024-01-08T00:00:00"}
        assert record.references == {"card_code": ("OCRD", "C0001")}

    def test_null_reference_not_recorded(self) -> None:
        row = {"DocEntry": 8, "CardCode": None, "DocTotal": None, "DocDate": None}
        record = build_entity_record(row, _orders_plan(), "acme", "m1")
        assert record.references == {}
        assert record.dynamic == {"doc_total": None, "doc_date": None}

    def test_empty_code_falls_back_to_source_key(self) -> None:
        plan = TablePlan(
            table_name="OCRD", entity_type="customer", category="master",
            ordering_key="CardCode", total_rows=1, batch_size=1,
            fields=[
                FieldSpec(source_column="CardCode", target_field="entity_code", tier="identity",
                          transformation="trim"),
                FieldSpec(source_column="CardName", target_field="entity_name", tier="identity",
                          transformation="trim"),
            ],
        )
        record = build_entity_record({"CardCode": "  ", "CardName": " Acme "}, plan, "acme", "m1")
        assert record.entity_code == "  "
        assert record.entity_name == "Acme"


class TestRelationshipRecord:
    def test_composite_cursor_and_key(self) -> None:
        row = {"CardCode": "C0001", "ItemCode": "I00002"}
        plan = _link_plan()
        assert cursor_value(row, plan) == ("C0001", "I00002")
        assert source_key(row, plan) == "C0001|I00002"

    def test_link(self) -> None:
        record = build_relationship_record({"CardCode": "C0001", "ItemCode": "I00002"},
                                           _link_plan(), "acme", "m1")
        assert (record.from_table, record.from_key) == ("OCRD", "C0001")
        assert (record.to_table, record.to_key) == ("OITM", "I00002")
        assert record.relationship_type == "product"

    def test_null_side_skipped(self) -> None:
        row = {"CardCode": "C0001", "ItemCode": None}
        assert build_relationship_record(row, _link_plan(), "acme", "m1") is None


class TestRuleRecord:
    def test_rule(self) -> None:
        spec = BusinessRuleSpec(rule_name="CK_OCRD_Balance", source_table="OCRD",
                                rule_type="check", target_rule="validate: balance >= 0")
        record = build_rule_record(spec, "acme", "m1")
        assert record.enforcement == "advisory"
        assert record.migration_id == "m1"
        assert record.key[0] == "acme"
