"""
tests/conftest.py
-----------------
Shared fixtures: a small SAP-style source (customers, orders, items,
a customer/item link table and an unrecognisable table) and helpers to
analyse, map and plan it.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Sequence

import pytest

from connectors.memory import InMemorySource, InMemoryTarget
from core.entity_mapper import EntityTypeMapper
from core.errors import TargetWriteError
from core.plan_generator import MigrationPlanGenerator
from core.schema_analyzer import SchemaAnalyzer
from models.plan import TargetConfig
from models.source import SourceColumn, SourceConstraint, SourceForeignKey, SourceTable


# ---------------------------------------------------------------------------
# Table definitions
# ---------------------------------------------------------------------------

OCRD = SourceTable(
    name="OCRD",
    columns=(
        SourceColumn("CardCode", "NVARCHAR(15)", nullable=False, max_length=15),
        SourceColumn("CardName", "NVARCHAR(100)", max_length=100),
        SourceColumn("Balance", "NUMERIC(19,6)", precision=19, scale=6),
    ),
    primary_key=("CardCode",),
    constraints=(
        SourceConstraint("CK_OCRD_Balance", "check", "Balance >= 0", ("Balance",)),
    ),
)

T2 = SourceTable(
    name="T2",
    columns=(
        SourceColumn("DocEntry", "INT", nullable=False),
        SourceColumn("CardCode", "NVARCHAR(15)", max_length=15),
        SourceColumn("DocTotal", "NUMERIC(19,6)", precision=19, scale=6),
        SourceColumn("DocDate", "DATETIME"),
    ),
    primary_key=("DocEntry",),
    foreign_keys=(SourceForeignKey("CardCode", "OCRD", "CardCode"),),
)

T1 = SourceTable(
    name="T1",
    columns=(
        SourceColumn("Fld1", "INT", nullable=False),
        SourceColumn("Fld2", "NVARCHAR(20)", max_length=20),
    ),
    primary_key=("Fld1",),
)

OITM = SourceTable(
    name="OITM",
    columns=(
        SourceColumn("ItemCode", "NVARCHAR(20)", nullable=False, max_length=20),
        SourceColumn("ItemName", "NVARCHAR(100)", max_length=100),
    ),
    primary_key=("ItemCode",),
)

CRD_ITM = SourceTable(
    name="CRD_ITM",
    columns=(
        SourceColumn("CardCode", "NVARCHAR(15)", nullable=False, max_length=15),
        SourceColumn("ItemCode", "NVARCHAR(20)", nullable=False, max_length=20),
    ),
    primary_key=("CardCode", "ItemCode"),
    foreign_keys=(
        SourceForeignKey("CardCode", "OCRD", "CardCode"),
        SourceForeignKey("ItemCode", "OITM", "ItemCode"),
    ),
)


def customer_rows(count: int = 30) -> list[dict]:
    return [
        {"CardCode": f"C{n:04d}", "CardName": f"  Customer {n}  ", "Balance": f"{n * 10}.50"}
        for n in range(1, count + 1)
    ]


def order_rows(count: int = 50, customers: int = 30) -> list[dict]:
    return [
        {
            "DocEntry": n,
            "CardCode": f"C{(n % customers) + 1:04d}",
            "DocTotal": Decimal(n) * 3,
            "DocDate": datetime(2024, 1, 1 + n % 28),
        }
        for n in range(1, count + 1)
    ]


def item_rows(count: int = 10) -> list[dict]:
    return [{"ItemCode": f"I{n:05d}", "ItemName": f"Item {n}"} for n in range(1, count + 1)]


def link_rows() -> list[dict]:
    return [
        {"CardCode": f"C{c:04d}", "ItemCode": f"I{i:05d}"}
        for c in range(1, 4) for i in range(1, 4)
    ]


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FlakyTarget(InMemoryTarget):
    """In-memory target whose entity writes start failing after *fail_after* calls."""

    def __init__(self, fail_after: int | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_after = fail_after
        self.attempts = 0

    def upsert_entities(self, records):
        self.attempts += 1
        if self.fail_after is not None and self.attempts > self.fail_after:
            raise TargetWriteError("simulated target outage")
        return super().upsert_entities(records)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tables() -> list[SourceTable]:
    return [OCRD, T2, T1]


@pytest.fixture
def rows() -> dict[str, list[dict]]:
    return {
        "OCRD": customer_rows(),
        "T2": order_rows(),
        "T1": [{"Fld1": n, "Fld2": f"x{n}"} for n in range(1, 6)],
    }


@pytest.fixture
def source(tables, rows) -> InMemorySource:
    return InMemorySource(tables, rows=rows, name="sapb1")


@pytest.fixture
def target() -> InMemoryTarget:
    return InMemoryTarget()


@pytest.fixture
def analyzer() -> SchemaAnalyzer:
    return SchemaAnalyzer()


@pytest.fixture
def mapper() -> EntityTypeMapper:
    return EntityTypeMapper()


@pytest.fixture
def planner() -> MigrationPlanGenerator:
    return MigrationPlanGenerator()


@pytest.fixture
def target_config() -> TargetConfig:
    return TargetConfig(organization_id="acme", batch_size=10, migration_id="migration_1_abcdef")


def build_plan(
    source_tables: Sequence[SourceTable],
    source_rows: dict[str, list[dict]] | None = None,
    row_counts: dict[str, int] | None = None,
    batch_size: int = 10,
    threshold: float = 0.8,
):
    """Analyse, map and plan an in-memory source; returns (analysis, mapping, plan)."""
    src = InMemorySource(source_tables, rows=source_rows, row_counts=row_counts)
    analysis = SchemaAnalyzer().analyze(src)
    mapping = EntityTypeMapper().generate_mapping(analysis, confidence_threshold=threshold)
    plan = MigrationPlanGenerator().generate_migration_plan(
        analysis, mapping,
        TargetConfig(organization_id="acme", batch_size=batch_size, migration_id="migration_1_abcdef"),
    )
    return analysis, mapping, plan
