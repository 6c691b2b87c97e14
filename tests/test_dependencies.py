"""
tests/test_dependencies.py
---------------------------
Unit tests for core/dependencies.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from core.dependencies import dependency_waves, topological_order


class TestDependencyWaves:
    def test_chain(self) -> None:
        deps = {"lines": ["orders"], "orders": ["customers"], "customers": []}
        assert dependency_waves(deps) == [["customers"], ["orders"], ["lines"]]

    def test_independent_tables_share_a_wave(self) -> None:
        deps = {"OCRD": [], "OITM": [], "CRD_ITM": ["OCRD", "OITM"]}
        assert dependency_waves(deps) == [["OCRD", "OITM"], ["CRD_ITM"]]

    def test_unknown_and_self_references_ignored(self) -> None:
        deps = {"OHEM": ["OHEM", "OUDP"], "T1": []}
        assert dependency_waves(deps) == [["OHEM", "T1"]]

    def test_cycle_released_in_schema_order(self) -> None:
        deps = {"A": ["B"], "B": ["A"], "C": ["A"]}
        assert dependency_waves(deps) == [["A"], ["B", "C"]]

    def test_topological_order_flattens(self) -> None:
        deps = {"T2": ["OCRD"], "OCRD": [], "T1": []}
        assert topological_order(deps) == ["OCRD", "T1", "T2"]

    def test_empty(self) -> None:
        assert dependency_waves({}) == []
