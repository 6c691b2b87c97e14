"""
core/schema_parser.py
---------------------
Parses plain-text schema snapshot files into source table structures.

A snapshot lets a schema be analysed, mapped and planned without a live
connection (for reviews, tests and offline planning).

File Format (supported)::

    Table: OCRD
      @rows 1250
      CardCode   NVARCHAR(15) NOT NULL PRIMARY KEY
      CardName   NVARCHAR(100)
      GroupCode  SMALLINT REFERENCES OCRG(GroupCode) ON DELETE RESTRICT
      Balance    NUMERIC(19,6) NOT NULL DEFAULT 0
      LineTotal  NUMERIC(19,6) AS (Quantity * Price)
      @index IX_OCRD_Name (CardName)
      @check CK_OCRD_Balance (Balance >= 0)
      @trigger TR_OCRD_Audit AFTER UPDATE
      # comments are ignored (lines starting with # or --)

Directives (lines starting with ``@``):
    @rows N                 Row count reported for the table.
    @schema NAME            Owning schema (default ``dbo``).
    @primary_key (a, b)     Composite primary key.
    @index NAME (cols)      Secondary index.
    @unique NAME (cols)     Unique constraint.
    @check NAME (expr)      CHECK constraint.
    @trigger NAME TIMING EVENT
                            Trigger declaration.

Design Decisions:
    * The parser is a pure function (no side effects) to simplify testing.
    * Regex is kept minimal; full SQL parsing is out of scope.
    * Duplicate table definitions: last wins. Duplicate column names: last wins.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import NamedTuple

from core.type_converter import get_base_type, get_length
from logger import get_logger
from models.source import (
    SourceColumn,
    SourceConstraint,
    SourceForeignKey,
    SourceIndex,
    SourceTable,
    SourceTrigger,
)

log = get_logger(__name__)

_TABLE_RE = re.compile(r"^\s*Table\s*:\s*(\w+)\s*$", re.IGNORECASE)
_COL_RE = re.compile(r"^\s*[`'\"\[]?(\w+)[`'\"\]]?\s+(.+)")
_COMMENT_RE = re.compile(r"^\s*(#|--)")
_DIRECTIVE_RE = re.compile(r"^@(\w+)\s*(.*)$")
_NAMED_LIST_RE = re.compile(r"^(\w+)\s*\((.*)\)\s*$")
_REFERENCES_RE = re.compile(r"REFERENCES\s+[`\"\[]?(\w+)[`\"\]]?\s*\(\s*[`\"\[]?(\w+)[`\"\]]?\s*\)", re.IGNORECASE)
_ON_ACTION_RE = re.compile(
    r"ON\s+(DELETE|UPDATE)\s+(CASCADE|SET\s+NULL|SET\s+DEFAULT|NO\s+ACTION|RESTRICT)",
    re.IGNORECASE,
)
_COMPUTED_RE = re.compile(r"\bAS\s*\((.*)\)", re.IGNORECASE)
_DEFAULT_RE = re.compile(
    r"DEFAULT\s+((?:'(?:[^']|\\')*'|\"(?:[^\"]|\\\")*\"|[\w.\-]+)|NULL)",
    re.IGNORECASE,
)


class SchemaParseError(Exception):
    """Raised when a schema file cannot be read or is fundamentally invalid."""


class ColumnDefinition(NamedTuple):
    """Structured breakdown of a column definition string."""
    name: str
    raw_definition: str
    data_type: str
    base_type: str
    is_nullable: bool
    is_primary_key: bool
    is_unique: bool
    is_identity: bool
    default_value: str | None
    computed_expression: str | None
    foreign_key: SourceForeignKey | None


class ParsedTable(NamedTuple):
    table: SourceTable
    row_count: int


# {table_name: ParsedTable}
ParsedSchema = dict[str, ParsedTable]


def parse_column_definition(col_name: str, definition: str) -> ColumnDefinition:
    """
    Extract structured attributes from a raw column definition string.

    This is a best-effort extraction; it does *not* attempt full SQL parsing.

    Args:
        col_name:   Column name.
        definition: The raw definition string, e.g. ``"NVARCHAR(15) NOT NULL"``.
    """
    defn_upper = definition.upper()
    parts = definition.split()
    data_type = parts[0] if parts else ""
    # Keep "NUMERIC(19, 6)" together when the type has a spaced argument list
    if "(" in data_type and ")" not in data_type:
        data_type = definition[: definition.index(")") + 1]

    is_pk = "PRIMARY KEY" in defn_upper
    is_nullable = "NOT NULL" not in defn_upper and not is_pk
    is_unique = "UNIQUE" in defn_upper
    is_identity = any(tok in defn_upper for tok in ("AUTO_INCREMENT", "IDENTITY", "SERIAL"))

    default_value: str | None = None
    default_match = _DEFAULT_RE.search(definition)
    if default_match:
        raw = default_match.group(1)
        default_value = None if raw.upper() == "NULL" else raw.strip("'\"")

    computed_match = _COMPUTED_RE.search(definition)
    computed = computed_match.group(1).strip() if computed_match else None

    foreign_key: SourceForeignKey | None = None
    ref_match = _REFERENCES_RE.search(definition)
    if ref_match:
        actions = {m.group(1).upper(): " ".join(m.group(2).upper().split())
                   for m in _ON_ACTION_RE.finditer(definition)}
        foreign_key = SourceForeignKey(
            column=col_name,
            target_table=ref_match.group(1),
            target_column=ref_match.group(2),
            on_delete=actions.get("DELETE", "NO ACTION"),
            on_update=actions.get("UPDATE", "NO ACTION"),
        )

    return ColumnDefinition(
        name=col_name,
        raw_definition=definition,
        data_type=data_type,
        base_type=get_base_type(data_type),
        is_nullable=is_nullable,
        is_primary_key=is_pk,
        is_unique=is_unique,
        is_identity=is_identity,
        default_value=default_value,
        computed_expression=computed,
        foreign_key=foreign_key,
    )


class _TableBuilder:
    """Accumulates one ``Table:`` block while parsing."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.schema = "dbo"
        self.row_count = 0
        self.columns: dict[str, ColumnDefinition] = {}
        self.primary_key: tuple[str, ...] = ()
        self.indexes: list[SourceIndex] = []
        self.constraints: list[SourceConstraint] = []
        self.triggers: list[SourceTrigger] = []

    def build(self) -> ParsedTable:
        columns: list[SourceColumn] = []
        foreign_keys: list[SourceForeignKey] = []
        for col in self.columns.values():
            length, scale = get_length(col.data_type)
            is_char = col.base_type.endswith("char") or col.base_type in ("varchar2", "nvarchar2")
            columns.append(SourceColumn(
                name=col.name,
                data_type=col.data_type,
                nullable=col.is_nullable,
                default=col.default_value,
                max_length=length if is_char else None,
                precision=None if is_char else length,
                scale=None if is_char else scale,
                is_identity=col.is_identity,
                computed_expression=col.computed_expression,
                is_unique=col.is_unique,
            ))
            if col.foreign_key is not None:
                foreign_keys.append(col.foreign_key)

        primary_key = self.primary_key or tuple(
            c.name for c in self.columns.values() if c.is_primary_key
        )
        table = SourceTable(
            name=self.name,
            schema=self.schema,
            columns=tuple(columns),
            primary_key=primary_key,
            foreign_keys=tuple(foreign_keys),
            indexes=tuple(self.indexes),
            constraints=tuple(self.constraints),
            triggers=tuple(self.triggers),
        )
        return ParsedTable(table=table, row_count=self.row_count)


def _split_columns(raw: str) -> tuple[str, ...]:
    return tuple(c.strip().strip("`\"[]") for c in raw.split(",") if c.strip())


def _apply_directive(builder: _TableBuilder, name: str, args: str, line_num: int) -> str | None:
    """Apply one ``@directive``; returns an error message for bad syntax."""
    name = name.lower()
    if name == "rows":
        if not args.strip().isdigit():
            return f"Line {line_num}: @rows expects an integer → {args!r}"
        builder.row_count = int(args.strip())
    elif name == "schema":
        builder.schema = args.strip() or builder.schema
    elif name == "primary_key":
        builder.primary_key = _split_columns(args.strip().strip("()"))
    elif name in ("index", "unique"):
        match = _NAMED_LIST_RE.match(args.strip())
        if not match:
            return f"Line {line_num}: @{name} expects NAME (columns) → {args!r}"
        cols = _split_columns(match.group(2))
        builder.indexes.append(SourceIndex(name=match.group(1), columns=cols, unique=name == "unique"))
        if name == "unique":
            builder.constraints.append(SourceConstraint(
                name=match.group(1), kind="unique", expression=", ".join(cols), columns=cols,
            ))
    elif name == "check":
        match = _NAMED_LIST_RE.match(args.strip())
        if not match:
            return f"Line {line_num}: @check expects NAME (expression) → {args!r}"
        expression = match.group(2).strip()
        cols = tuple(c for c in builder.columns if re.search(rf"\b{re.escape(c)}\b", expression))
        builder.constraints.append(SourceConstraint(
            name=match.group(1), kind="check", expression=expression, columns=cols,
        ))
    elif name == "trigger":
        tokens = args.split()
        if len(tokens) < 3:
            return f"Line {line_num}: @trigger expects NAME TIMING EVENT → {args!r}"
        builder.triggers.append(SourceTrigger(
            name=tokens[0], timing=tokens[1].upper(), event=tokens[2].upper(),
            body=" ".join(tokens[3:]),
        ))
    else:
        return f"Line {line_num}: unknown directive @{name}"
    return None


def parse_schema_text(text: str, origin: str = "<string>") -> ParsedSchema:
    """
    Parse snapshot text and return ``{table_name: ParsedTable}``.

    Unrecognised lines are collected and logged as a single warning.
    """
    builders: dict[str, _TableBuilder] = {}
    current: _TableBuilder | None = None
    errors: list[str] = []

    for line_num, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or _COMMENT_RE.match(stripped):
            continue

        table_match = _TABLE_RE.match(stripped)
        if table_match:
            name = table_match.group(1)
            if name in builders:
                log.debug(
                    "Duplicate table definition '%s' at line %d; overwriting.", name, line_num,
                )
            current = _TableBuilder(name)
            builders[name] = current
            continue

        if current is None:
            log.debug("Line %d is outside any Table block; skipped: %s", line_num, stripped)
            continue

        directive = _DIRECTIVE_RE.match(stripped)
        if directive:
            error = _apply_directive(current, directive.group(1), directive.group(2), line_num)
            if error:
                errors.append(error)
            continue

        col_match = _COL_RE.match(stripped)
        if col_match:
            col_name = col_match.group(1)
            current.columns[col_name] = parse_column_definition(col_name, col_match.group(2).strip())
        else:
            errors.append(f"Line {line_num}: unrecognised column syntax → {stripped!r}")

    if errors:
        log.warning("Schema parse warnings in '%s':\n  %s", origin, "\n  ".join(errors))

    schema = {name: builder.build() for name, builder in builders.items()}
    log.info(
        "Parsed schema snapshot '%s': %d table(s), %d column(s) total.",
        origin,
        len(schema),
        sum(len(p.table.columns) for p in schema.values()),
    )
    return schema


def parse_schema_file(file_path: str | Path) -> ParsedSchema:
    """
    Parse a schema snapshot file.

    Args:
        file_path: Path to the ``.txt`` snapshot file.

    Returns:
        ``{table_name: ParsedTable}``; empty if the file does not exist.

    Raises:
        SchemaParseError: If the file cannot be read.
    """
    path = Path(file_path)
    if not path.exists():
        log.warning("Schema file not found: %s", path)
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SchemaParseError(f"Cannot read schema file '{path}': {exc}") from exc
    return parse_schema_text(text, origin=path.name)
