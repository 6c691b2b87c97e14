"""
core/dependencies.py
--------------------
Foreign-key dependency ordering shared by the mapper and the plan generator.

Design Decisions:
    * Referenced tables come before referencing ones. Ties keep schema
      order, so the same schema always yields the same order.
    * Self references and references to tables outside the given set are
      ignored.
    * A cycle is broken by releasing the first remaining table (in schema
      order) on its own; a warning is logged.
"""
from __future__ import annotations

from typing import Iterable, Mapping

from logger import get_logger

log = get_logger(__name__)


def dependency_waves(dependencies: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """
    Group tables into waves; every table depends only on earlier waves.

    Args:
        dependencies: ``{table: referenced tables}`` in schema order.

    Example::

        dependency_waves({"lines": ["orders"], "orders": ["customers"], "customers": []})
        → [["customers"], ["orders"], ["lines"]]
    """
    remaining = {
        table: {d for d in deps if d in dependencies and d != table}
        for table, deps in dependencies.items()
    }
    done: set[str] = set()
    waves: list[list[str]] = []
    while remaining:
        wave = [t for t, deps in remaining.items() if deps <= done]
        if not wave:
            first = next(iter(remaining))
            log.warning(
                "Foreign key cycle among %s; releasing '%s' first.",
                ", ".join(sorted(remaining)), first,
            )
            wave = [first]
        waves.append(wave)
        done.update(wave)
        for table in wave:
            del remaining[table]
    return waves


def topological_order(dependencies: Mapping[str, Iterable[str]]) -> list[str]:
    """Flattened :func:`dependency_waves`."""
    return [table for wave in dependency_waves(dependencies) for table in wave]
