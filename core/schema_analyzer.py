"""
core/schema_analyzer.py
-----------------------
Reads a source through a ``SourceReader`` and produces an immutable
``SchemaAnalysisResult``: classified columns, relationship semantics,
table purposes, data-quality issues, candidate business rules and a
complexity estimate.

Design Decisions:
    * Analysis is all-or-nothing. Structure, counts and samples are read
      first; any connector failure aborts before a result is built.
    * Column classification cross-checks two independent signals: the
      tokenised column name and the declared type category. Agreement
      raises confidence, disagreement flags the column for review.
    * Every helper below is a pure function of its inputs so the rules
      can be unit tested without a source.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, Iterable, Sequence

from config import CONFIG, AnalysisConfig
from connectors.base import Row, SourceReader
from core.errors import ConnectivityError, MigrationEngineError, UnsupportedSchemaError
from core.type_converter import (
    CHARACTER_CATEGORIES,
    NUMERIC_CATEGORIES,
    TypeCategory,
    categorize,
)
from core.vocabulary import DEFAULT_VOCABULARY, Vocabulary, normalize, snake_case, tokenize
from logger import get_logger, log_event
from models.schema import (
    SEVERITY_PENALTY,
    AnalysisOptions,
    BusinessRule,
    ColumnClassification,
    ColumnDescriptor,
    ComplexityEstimate,
    ConstraintDescriptor,
    DataQualityIssue,
    DataQualityReport,
    ForeignKeyDescriptor,
    IndexDescriptor,
    IssueSeverity,
    RelationshipSemantics,
    SchemaAnalysisResult,
    TableDescriptor,
    TablePurpose,
    TriggerDescriptor,
)
from models.source import SourceColumn, SourceTable

log = get_logger(__name__)

_CC = ColumnClassification

# Type categories that corroborate each name-based classification.
_TYPE_AGREEMENT: dict[ColumnClassification, frozenset[TypeCategory]] = {
    _CC.IDENTIFIER: frozenset({TypeCategory.INTEGER, TypeCategory.STRING,
                               TypeCategory.UUID, TypeCategory.DECIMAL}),
    _CC.NAME: CHARACTER_CATEGORIES,
    _CC.DESCRIPTION: CHARACTER_CATEGORIES,
    _CC.AMOUNT: NUMERIC_CATEGORIES,
    _CC.DATE: frozenset({TypeCategory.DATETIME}),
    _CC.FLAG: frozenset({TypeCategory.BOOLEAN, TypeCategory.INTEGER}),
    _CC.REFERENCE: frozenset({TypeCategory.INTEGER, TypeCategory.STRING,
                              TypeCategory.UUID, TypeCategory.DECIMAL}),
}

# Rough per-value widths (bytes) used for the size estimate.
_CATEGORY_WIDTH: dict[TypeCategory, int] = {
    TypeCategory.INTEGER: 8,
    TypeCategory.DECIMAL: 16,
    TypeCategory.FLOAT: 8,
    TypeCategory.STRING: 32,
    TypeCategory.TEXT: 256,
    TypeCategory.DATETIME: 8,
    TypeCategory.BOOLEAN: 1,
    TypeCategory.BINARY: 512,
    TypeCategory.JSON: 256,
    TypeCategory.UUID: 16,
    TypeCategory.OTHER: 16,
}

_SAP_NAME_RE = re.compile(r"^(O[A-Z]{3}|[A-Z]{3}\d{1,2})$")
_SOFT_DELETE_TOKENS = frozenset({"deleted", "active", "inactive", "canceled", "cancelled", "valid"})
_LARGE_TABLE_ROWS = 1_000_000
_MIN_RATIO_SAMPLE = 20


# ---------------------------------------------------------------------------
# Column classification
# ---------------------------------------------------------------------------

def name_signal(name: str, vocabulary: Vocabulary = DEFAULT_VOCABULARY) -> ColumnClassification | None:
    """
    Classification suggested by the column name alone.

    The last token is the strongest hint (``customer_id`` is an identifier,
    ``order_date`` a date), then the first (``is_active``), then any other.
    """
    tokens = tokenize(name)
    if not tokens:
        return None
    ordered = [tokens[-1], tokens[0], *tokens[1:-1]]
    for token in ordered:
        for classification, words in vocabulary.column_keywords:
            if token in words:
                return classification
    return None


def _type_agrees(classification: ColumnClassification, category: TypeCategory,
                 max_length: int | None) -> bool | None:
    """True/False for agreement, None when the type carries no signal."""
    if category is TypeCategory.OTHER:
        return None
    if classification is _CC.FLAG and category is TypeCategory.STRING:
        return max_length is not None and max_length <= 1
    return category in _TYPE_AGREEMENT.get(classification, frozenset())


def classify_column(
    column: SourceColumn,
    *,
    is_primary_key: bool = False,
    is_unique: bool = False,
    is_foreign_key: bool = False,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
) -> tuple[ColumnClassification, float, bool]:
    """
    Return ``(classification, confidence, needs_review)`` for one column.

    A declared foreign key always wins: the column is a reference.
    """
    if is_foreign_key:
        return _CC.REFERENCE, 0.9, False

    category = categorize(column.data_type)
    by_name = name_signal(column.name, vocabulary)

    if by_name is None:
        if is_primary_key:
            return _CC.IDENTIFIER, 0.8, False
        if category is TypeCategory.DATETIME:
            return _CC.DATE, 0.6, False
        if category is TypeCategory.BOOLEAN:
            return _CC.FLAG, 0.6, False
        return _CC.OTHER, 0.5, False

    agrees = _type_agrees(by_name, category, column.max_length)
    if agrees is None:
        return by_name, 0.6, False
    if not agrees:
        return by_name, 0.35, True

    structural = is_primary_key or is_unique
    if by_name is _CC.IDENTIFIER and structural:
        return by_name, 0.9, False
    if by_name is _CC.NAME and not column.nullable:
        return by_name, 0.9, False
    return by_name, 0.85, False


def distinct_ratio(samples: Sequence[Row], column: str) -> float | None:
    """Distinct share of non-null sampled values, or None below the minimum sample."""
    values = [r.get(column) for r in samples if r.get(column) is not None]
    if len(values) < _MIN_RATIO_SAMPLE:
        return None
    return round(len(set(map(str, values))) / len(values), 4)


def _business_meaning(classification: ColumnClassification, table: str,
                      structural: bool, fk_target: str | None) -> str:
    if classification is _CC.IDENTIFIER:
        return f"Unique identifier of {table}" if structural else f"Identifier code on {table}"
    if classification is _CC.REFERENCE:
        return f"Reference to {fk_target}" if fk_target else "Reference to a related record"
    return {
        _CC.NAME: f"Display name of {table}",
        _CC.DESCRIPTION: f"Free-text description of {table}",
        _CC.AMOUNT: f"Monetary or quantity amount on {table}",
        _CC.DATE: f"Date or time attribute of {table}",
        _CC.FLAG: f"Boolean status flag of {table}",
    }.get(classification, "Unclassified attribute")


def _suggested_field(column: str, classification: ColumnClassification, structural: bool) -> str:
    if classification is _CC.IDENTIFIER and structural:
        return "entity_code"
    if classification is _CC.NAME:
        return "entity_name"
    return snake_case(column)


# ---------------------------------------------------------------------------
# Relationships, purpose and patterns
# ---------------------------------------------------------------------------

def _is_audit_column(name: str, vocabulary: Vocabulary) -> bool:
    return normalize(name) in vocabulary.audit_columns


def is_junction_table(table: SourceTable, vocabulary: Vocabulary = DEFAULT_VOCABULARY) -> bool:
    """Exactly two foreign keys and no business columns of its own."""
    if len(table.foreign_keys) != 2:
        return False
    structural = set(table.primary_key) | {fk.column for fk in table.foreign_keys}
    business = [
        c for c in table.columns
        if c.name not in structural and not c.is_identity and not _is_audit_column(c.name, vocabulary)
    ]
    return not business


def relationship_semantics(
    table: SourceTable,
    column: str,
    target_table: str,
    *,
    junction: bool,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
) -> RelationshipSemantics:
    if target_table == table.name:
        if set(tokenize(column)) & vocabulary.hierarchy_tokens:
            return RelationshipSemantics.HIERARCHICAL
        return RelationshipSemantics.SELF_REFERENCING
    if junction:
        return RelationshipSemantics.MANY_TO_MANY
    return RelationshipSemantics.ONE_TO_MANY


def infer_purpose(
    table: SourceTable,
    columns: Sequence[ColumnDescriptor],
    *,
    junction: bool,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
) -> TablePurpose:
    if junction:
        return TablePurpose.JUNCTION
    tokens = set(tokenize(table.name))
    for purpose, words in vocabulary.table_purpose_keywords:
        if tokens & words:
            return purpose
    non_self_fks = [fk for fk in table.foreign_keys if fk.target_table != table.name]
    has_amount = any(c.classification is _CC.AMOUNT for c in columns)
    has_date = any(c.classification is _CC.DATE and not _is_audit_column(c.name, vocabulary)
                   for c in columns)
    if non_self_fks and has_amount:
        return TablePurpose.TRANSACTIONAL
    if has_amount and has_date and not table.primary_key:
        return TablePurpose.TRANSACTIONAL
    return TablePurpose.MASTER


def detect_patterns(
    table: SourceTable,
    columns: Sequence[ColumnDescriptor],
    samples: Sequence[Row],
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
) -> tuple[str, ...]:
    patterns: list[str] = []
    if _SAP_NAME_RE.match(table.name):
        patterns.append("sap-b1-naming")
    if any(_is_audit_column(c.name, vocabulary) for c in columns):
        patterns.append("audit-columns")
    if any(c.classification is _CC.FLAG and set(tokenize(c.name)) & _SOFT_DELETE_TOKENS
           for c in columns):
        patterns.append("soft-delete")
    if any(fk.target_table == table.name for fk in table.foreign_keys):
        patterns.append("hierarchical")
    if any({"currency", "curr"} & set(tokenize(c.name)) for c in columns):
        patterns.append("multi-currency")
    if len(table.primary_key) > 1:
        patterns.append("composite-key")
    if samples:
        half = len(samples) / 2
        if any(sum(1 for r in samples if r.get(c.name) is None) > half for c in columns):
            patterns.append("sparse-columns")
    return tuple(patterns)


# ---------------------------------------------------------------------------
# Data quality
# ---------------------------------------------------------------------------

def score_data_quality(issues: Iterable[DataQualityIssue]) -> DataQualityReport:
    """
    Score = 100 minus severity penalties, floored at 0.

    Cleanup is required when any critical issue exists or more than five
    high-severity issues do.
    """
    issues = tuple(issues)
    score = max(0, 100 - sum(SEVERITY_PENALTY[i.severity] for i in issues))
    critical = sum(1 for i in issues if i.severity is IssueSeverity.CRITICAL)
    high = sum(1 for i in issues if i.severity is IssueSeverity.HIGH)
    return DataQualityReport(score=score, issues=issues, cleanup_required=critical > 0 or high > 5)


def _is_sentinel(value: Any, vocabulary: Vocabulary) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in vocabulary.null_sentinels


def table_quality_issues(
    table: TableDescriptor,
    samples: Sequence[Row],
    known_tables: Iterable[str],
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
) -> list[DataQualityIssue]:
    issues: list[DataQualityIssue] = []
    known = set(known_tables)
    name = table.name

    if not table.primary_key:
        issues.append(DataQualityIssue(
            table=name, severity=IssueSeverity.HIGH,
            description="Table has no primary key",
            recommendation="Add a primary key or a NOT NULL unique column; batching otherwise "
                           "keys on every column and identical rows collapse.",
        ))
    for fk in table.foreign_keys:
        if fk.target_table not in known:
            issues.append(DataQualityIssue(
                table=name, severity=IssueSeverity.HIGH, column=fk.source_column,
                description=f"Foreign key references unknown table '{fk.target_table}'",
                recommendation="Include the referenced table or drop the reference.",
            ))
    if table.row_count == 0:
        issues.append(DataQualityIssue(
            table=name, severity=IssueSeverity.LOW, description="Table is empty",
        ))

    for col in table.columns:
        if samples and not col.nullable and col.computed_expression is None:
            bad = sum(1 for row in samples if col.name in row and _is_sentinel(row[col.name], vocabulary))
            if bad:
                issues.append(DataQualityIssue(
                    table=name, severity=IssueSeverity.CRITICAL, column=col.name,
                    description=f"{bad} sampled row(s) hold NULL or placeholder values "
                                f"in non-nullable column",
                    recommendation="Clean placeholder values before migrating.",
                ))
        if samples and col.classification is _CC.IDENTIFIER and (
            col.is_unique or (col.is_primary_key and len(table.primary_key) == 1)
        ):
            values = [row.get(col.name) for row in samples if row.get(col.name) is not None]
            dupes = [v for v, n in Counter(values).items() if n > 1]
            if dupes:
                issues.append(DataQualityIssue(
                    table=name, severity=IssueSeverity.MEDIUM, column=col.name,
                    description=f"{len(dupes)} duplicate value(s) in unique identifier sample",
                    recommendation="Deduplicate codes; the target keys entities by code.",
                ))
        if col.classification is _CC.IDENTIFIER and col.nullable and not col.is_primary_key \
                and col.suggested_field == "entity_code":
            issues.append(DataQualityIssue(
                table=name, severity=IssueSeverity.MEDIUM, column=col.name,
                description="Code column allows NULL",
                recommendation="Declare the code column NOT NULL.",
            ))
        if col.needs_review:
            issues.append(DataQualityIssue(
                table=name, severity=IssueSeverity.LOW, column=col.name,
                description=f"Column name suggests '{col.classification.value}' but type "
                            f"'{col.data_type}' disagrees",
                recommendation="Confirm the column's meaning before mapping.",
            ))
    return issues


# ---------------------------------------------------------------------------
# Business rules and complexity
# ---------------------------------------------------------------------------

def extract_business_rules(table: TableDescriptor, options: AnalysisOptions) -> list[BusinessRule]:
    if not options.include_business_logic:
        return []
    rules: list[BusinessRule] = []
    if options.extract_constraints:
        for con in table.constraints:
            rules.append(BusinessRule(
                name=con.name, table=table.name, rule_type=con.kind,
                expression=con.expression, columns=con.columns,
                description=f"{con.kind.upper()} constraint on {table.name}",
            ))
        for col in table.columns:
            if col.default is not None:
                rules.append(BusinessRule(
                    name=f"DF_{table.name}_{col.name}", table=table.name, rule_type="default",
                    expression=f"{col.name} DEFAULT {col.default}", columns=(col.name,),
                    description=f"Default value for {col.name}",
                ))
    for col in table.columns:
        if col.computed_expression:
            rules.append(BusinessRule(
                name=f"CC_{table.name}_{col.name}", table=table.name, rule_type="computed",
                expression=f"{col.name} = {col.computed_expression}", columns=(col.name,),
                description=f"Computed column {col.name}",
            ))
    for trg in table.triggers:
        rules.append(BusinessRule(
            name=trg.name, table=table.name, rule_type="trigger",
            expression=f"{trg.timing} {trg.event}" + (f": {trg.body}" if trg.body else ""),
            description=f"Trigger {trg.name} on {table.name}",
        ))
    return rules


def estimate_complexity(
    tables: Sequence[TableDescriptor], rules: Sequence[BusinessRule]
) -> ComplexityEstimate:
    fks = sum(len(t.foreign_keys) for t in tables)
    triggers = sum(len(t.triggers) for t in tables)
    large = [t.name for t in tables if t.row_count > _LARGE_TABLE_ROWS]
    score = len(tables) * 2 + fks * 3 + triggers * 5 + len(rules) + len(large) * 10

    factors = [f"{len(tables)} table(s)", f"{fks} foreign key(s)"]
    if triggers:
        factors.append(f"{triggers} trigger(s) to re-implement")
    if rules:
        factors.append(f"{len(rules)} candidate business rule(s)")
    if large:
        factors.append(f"large tables: {', '.join(large)}")

    level = "low" if score < 30 else "medium" if score < 80 else "high"
    hours = round(len(tables) * 0.5 + fks * 0.25 + triggers * 2 + len(rules) * 0.25
                  + len(large) * 4, 1)
    return ComplexityEstimate(level=level, score=score, estimated_effort_hours=hours,
                              factors=tuple(factors))


def _recommendations(tables: Sequence[TableDescriptor], quality: DataQualityReport) -> list[str]:
    recs: list[str] = []
    if quality.cleanup_required:
        recs.append("Resolve critical data-quality issues before executing the migration.")
    review = [f"{t.name}.{c.name}" for t in tables for c in t.columns if c.needs_review]
    if review:
        recs.append(f"Review {len(review)} column(s) with conflicting name/type signals: "
                    + ", ".join(review[:5]) + ("..." if len(review) > 5 else ""))
    no_pk = [t.name for t in tables if not t.primary_key]
    if no_pk:
        recs.append("Add primary keys to: " + ", ".join(no_pk))
    if any(t.triggers for t in tables):
        recs.append("Triggers are not migrated; re-implement them as business rules.")
    large = [t.name for t in tables if t.row_count > _LARGE_TABLE_ROWS]
    if large:
        recs.append("Schedule large tables off-peak: " + ", ".join(large))
    return recs


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class SchemaAnalyzer:
    """
    Builds a ``SchemaAnalysisResult`` from a ``SourceReader``.

    Args:
        vocabulary: Classification vocabulary (defaults to the generic one).
        config:     Analysis settings (sample size, split threshold).
    """

    def __init__(self, vocabulary: Vocabulary = DEFAULT_VOCABULARY,
                 config: AnalysisConfig | None = None) -> None:
        self.vocabulary = vocabulary
        self.config = config or CONFIG.analysis

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, source: SourceReader, options: AnalysisOptions | None = None) -> SchemaAnalysisResult:
        """
        Analyse every table the source exposes.

        Raises:
            ConnectivityError:      Source unreachable or failed mid-read.
            UnsupportedSchemaError: Source exposes no tables.
        """
        options = options or AnalysisOptions()
        limit = options.sample_data_rows
        if limit is None:
            limit = self.config.sample_rows
        log.info("Analysing source '%s' (sample rows: %d).", source.name, limit)

        raw_tables, counts, samples = self._read_source(source, max(0, limit))
        known = [t.name for t in raw_tables]

        tables: list[TableDescriptor] = []
        relationships: list[ForeignKeyDescriptor] = []
        issues: list[DataQualityIssue] = []
        rules: list[BusinessRule] = []
        for raw in raw_tables:
            table = self.describe(raw, counts.get(raw.name, 0), samples.get(raw.name, []), options)
            tables.append(table)
            if options.analyze_relationships:
                relationships.extend(table.foreign_keys)
            issues.extend(table_quality_issues(table, samples.get(raw.name, []), known, self.vocabulary))
            rules.extend(extract_business_rules(table, options))

        quality = score_data_quality(issues)
        complexity = estimate_complexity(tables, rules)
        result = SchemaAnalysisResult(
            source_name=source.name,
            tables=tuple(tables),
            relationships=tuple(relationships),
            data_quality=quality,
            business_rules=tuple(rules),
            complexity=complexity,
            recommendations=tuple(_recommendations(tables, quality)),
            summary=(
                f"{len(tables)} table(s), {sum(len(t.columns) for t in tables)} column(s), "
                f"{len(relationships)} relationship(s), {sum(t.row_count for t in tables):,} row(s); "
                f"data quality {quality.score}/100, complexity {complexity.level}."
            ),
            options=options,
            vocabulary_version=self.vocabulary.version,
        )
        log_event(
            log, logging.INFO, "schema_analyzed",
            source=source.name, tables=len(tables), relationships=len(relationships),
            dq_score=quality.score, cleanup_required=quality.cleanup_required,
        )
        return result

    def describe(
        self,
        raw: SourceTable,
        row_count: int,
        samples: Sequence[Row],
        options: AnalysisOptions | None = None,
    ) -> TableDescriptor:
        """Build the descriptor for one source table."""
        options = options or AnalysisOptions()
        vocab = self.vocabulary
        junction = options.analyze_relationships and is_junction_table(raw, vocab)

        fk_by_column = {fk.column: fk for fk in raw.foreign_keys}
        unique_cols = {c.name for c in raw.columns if c.is_unique}
        unique_cols |= {ix.columns[0] for ix in raw.indexes if ix.unique and len(ix.columns) == 1}
        single_pk = raw.primary_key[0] if len(raw.primary_key) == 1 else None

        columns: list[ColumnDescriptor] = []
        width = 0
        for col in raw.columns:
            is_pk = col.name in raw.primary_key
            is_unique = col.name in unique_cols or col.name == single_pk
            fk = fk_by_column.get(col.name)
            classification, confidence, review = classify_column(
                col, is_primary_key=is_pk, is_unique=is_unique,
                is_foreign_key=fk is not None, vocabulary=vocab,
            )
            structural = is_pk or is_unique
            columns.append(ColumnDescriptor(
                name=col.name,
                data_type=col.data_type,
                nullable=col.nullable,
                default=col.default,
                max_length=col.max_length,
                precision=col.precision,
                scale=col.scale,
                is_identity=col.is_identity,
                computed_expression=col.computed_expression,
                is_primary_key=is_pk,
                is_unique=is_unique,
                is_foreign_key=fk is not None,
                classification=classification,
                business_meaning=_business_meaning(
                    classification, raw.name, structural, fk.target_table if fk else None
                ),
                suggested_field=_suggested_field(col.name, classification, structural),
                confidence=confidence,
                needs_review=review,
                sample_distinct_ratio=distinct_ratio(samples, col.name),
            ))
            width += col.max_length or _CATEGORY_WIDTH[categorize(col.data_type)]

        foreign_keys = tuple(
            ForeignKeyDescriptor(
                source_table=raw.name,
                source_column=fk.column,
                target_table=fk.target_table,
                target_column=fk.target_column,
                on_delete=fk.on_delete,
                on_update=fk.on_update,
                semantics=(
                    relationship_semantics(raw, fk.column, fk.target_table,
                                           junction=junction, vocabulary=vocab)
                    if options.analyze_relationships else RelationshipSemantics.ONE_TO_MANY
                ),
            )
            for fk in raw.foreign_keys
        )

        return TableDescriptor(
            name=raw.name,
            schema=raw.schema,
            columns=tuple(columns),
            primary_key=raw.primary_key,
            foreign_keys=foreign_keys,
            indexes=tuple(IndexDescriptor(i.name, i.columns, i.unique) for i in raw.indexes),
            constraints=tuple(
                ConstraintDescriptor(c.name, c.kind, c.expression, c.columns) for c in raw.constraints
            ) if options.extract_constraints else (),
            triggers=tuple(
                TriggerDescriptor(t.name, t.timing, t.event, t.body) for t in raw.triggers
            ),
            row_count=row_count,
            estimated_size_bytes=row_count * width,
            business_purpose=infer_purpose(raw, columns, junction=junction, vocabulary=vocab),
            data_patterns=detect_patterns(raw, columns, samples, vocab),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _read_source(
        source: SourceReader, limit: int
    ) -> tuple[list[SourceTable], dict[str, int], dict[str, list[Row]]]:
        """Read structure, counts and samples, closing the source afterwards."""
        try:
            source.connect()
            names = source.list_tables()
            if not names:
                raise UnsupportedSchemaError(f"Source '{source.name}' exposes no tables.")
            tables = [source.describe_table(n) for n in names]
            counts = {n: source.count_rows(n) for n in names}
            samples = {n: source.sample_rows(n, limit) for n in names} if limit else {}
        except MigrationEngineError:
            raise
        except Exception as exc:
            raise ConnectivityError(f"Failed reading source '{source.name}': {exc}") from exc
        finally:
            source.close()
        log.debug("Read %d table(s) from '%s'.", len(tables), source.name)
        return tables, counts, samples
