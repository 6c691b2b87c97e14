"""
connectors/schema_file.py
-------------------------
Source reader over a plain-text schema snapshot (see ``core/schema_parser``),
optionally paired with row data, for offline analysis and planning.
"""
from __future__ import annotations

from pathlib import Path
from typing import Mapping

from connectors.base import Row
from connectors.memory import InMemorySource
from core.errors import ConnectivityError
from core.schema_parser import SchemaParseError, parse_schema_file


class SchemaFileSource(InMemorySource):
    """
    Reads table structure from a snapshot file on ``connect()``.

    Row counts come from ``@rows`` directives unless *rows* are supplied.
    """

    def __init__(self, path: str | Path, rows: Mapping[str, list[Row]] | None = None) -> None:
        self.path = Path(path)
        super().__init__(tables=(), rows=rows, name=self.path.name)
        self._loaded = False

    def connect(self) -> None:
        if not self._loaded:
            if not self.path.exists():
                raise ConnectivityError(f"Schema snapshot '{self.path}' does not exist.")
            try:
                parsed = parse_schema_file(self.path)
            except SchemaParseError as exc:
                raise ConnectivityError(str(exc)) from exc
            self._tables = {name: p.table for name, p in parsed.items()}
            self._row_counts = {name: p.row_count for name, p in parsed.items()}
            self._loaded = True
        super().connect()
