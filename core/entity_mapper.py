"""
core/entity_mapper.py
---------------------
Maps every analysed source table to a universal entity type, assigns its
columns to EAV storage tiers and chooses a migration strategy.

Scoring fuses four inspectable signals per candidate pattern:

    ========================  ======  =======================================
    Signal                    Weight  Score
    ========================  ======  =======================================
    table name                0.30    exact 0.95, prefix/suffix 0.85,
                                      substring 0.75
    column names              0.35    0.45 per matching column (max 0.95)
    relationships             0.15    0.9 for an FK to a confidently mapped
                                      parent type, 0.95 for two or more
    context                   0.20    0.95 for the requested industry (or a
                                      business context naming the type),
                                      0.75 for generic patterns
    ========================  ======  =======================================

The weighted sum is divided by the total weight of the signals that apply
to the table: name and columns always, relationships when the table has
foreign keys, context when an industry or business context is supplied.

Design Decisions:
    * Tables are scored in FK dependency order so a child can see how its
      parents were mapped; results are returned in schema order.
    * Ties prefer industry-specific patterns, then vocabulary order.
    * A table with no signal at all maps to ``generic_entity`` at 0.2.
      ``InsufficientSignalError`` is raised and caught here; it becomes a
      warning on the result rather than aborting the whole mapping.
    * Business rules are translated for review only (``advisory``).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from config import CONFIG, AnalysisConfig
from core.dependencies import topological_order
from core.errors import InsufficientSignalError
from core.type_converter import (
    FIELD_BOOLEAN,
    FIELD_DATE,
    FIELD_NUMBER,
    ConversionSafety,
    TypeCategory,
    categorize,
    classify_conversion,
    field_type_for,
)
from core.vocabulary import DEFAULT_VOCABULARY, EntityPattern, Vocabulary, normalize, snake_case, tokenize
from logger import get_logger, log_event
from models.mapping import (
    GENERIC_ENTITY_TYPE,
    AlternativeMapping,
    BusinessRuleMapping,
    EntityCategory,
    EntityMapping,
    EntityMappingResult,
    FieldMapping,
    MappingCheck,
    MappingStrategy,
    RelationshipNote,
    StorageTier,
)
from models.report import ValidationStatus
from models.schema import (
    BusinessRule,
    ColumnClassification,
    ColumnDescriptor,
    SchemaAnalysisResult,
    TableDescriptor,
)

log = get_logger(__name__)

W_TABLE_NAME = 0.30
W_COLUMNS = 0.35
W_RELATIONSHIP = 0.15
W_CONTEXT = 0.20

FALLBACK_CONFIDENCE = 0.2
MAX_ALTERNATIVES = 2
LOW_CARDINALITY_RATIO = 0.1

_CC = ColumnClassification

_TRANSFORMATIONS: dict[ColumnClassification, str] = {
    _CC.AMOUNT: "to_decimal",
    _CC.DATE: "to_iso_date",
    _CC.FLAG: "to_bool",
    _CC.NAME: "trim",
}
_TRANSFORMED_FIELD_TYPE = {
    "to_decimal": FIELD_NUMBER,
    "to_iso_date": FIELD_DATE,
    "to_bool": FIELD_BOOLEAN,
}

# (target rule template, confidence) per extracted rule type
_RULE_TRANSLATIONS: dict[str, tuple[str, float]] = {
    "check": ("validate: {expr}", 0.6),
    "unique": ("unique({expr})", 0.8),
    "default": ("default: {expr}", 0.7),
    "computed": ("derive: {expr}", 0.5),
    "trigger": ("review trigger {name}: {expr}", 0.3),
}


@dataclass(frozen=True)
class CandidateScore:
    """Signal breakdown for one (table, pattern) pair."""
    pattern: EntityPattern
    table_name: float
    columns: float
    matched_columns: tuple[str, ...]
    relationship: float
    context: float
    score: float

    @property
    def has_signal(self) -> bool:
        return self.table_name > 0 or self.columns > 0 or self.relationship > 0


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

def table_name_signal(table: str, pattern: EntityPattern) -> float:
    name = normalize(table)
    best = 0.0
    for candidate in pattern.table_names:
        if name == candidate:
            return 0.95
        if len(candidate) < 3:
            continue
        if name.startswith(candidate) or name.endswith(candidate):
            best = max(best, 0.85)
        elif candidate in name:
            best = max(best, 0.75)
    return best


def column_signal(table: TableDescriptor, pattern: EntityPattern) -> tuple[float, tuple[str, ...]]:
    matched = tuple(c.name for c in table.columns if normalize(c.name) in pattern.column_patterns)
    return min(0.95, 0.45 * len(matched)), matched


def relationship_signal(
    table: TableDescriptor,
    pattern: EntityPattern,
    mapped: dict[str, EntityMapping],
    threshold: float,
) -> float:
    hits = 0
    for fk in table.foreign_keys:
        if fk.is_self_reference:
            continue
        parent = mapped.get(fk.target_table)
        if parent is not None and parent.confidence >= threshold and parent.entity_type in pattern.parents:
            hits += 1
    if hits >= 2:
        return 0.95
    return 0.9 if hits else 0.0


def context_signal(
    pattern: EntityPattern, industry: str | None, business_context: str | None
) -> float:
    if industry and pattern.industry and normalize(pattern.industry) == normalize(industry):
        return 0.95
    if business_context:
        words = set(tokenize(business_context)) | {normalize(w) for w in business_context.split()}
        if set(pattern.entity_type.split("_")) <= words or pattern.table_names & words:
            return 0.95
    return 0.0 if pattern.is_industry_specific else 0.75


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------

class EntityTypeMapper:
    """
    Produces an ``EntityMappingResult`` from a ``SchemaAnalysisResult``.

    Args:
        vocabulary: Entity patterns and column keywords.
        config:     Analysis settings (split threshold).
    """

    def __init__(self, vocabulary: Vocabulary = DEFAULT_VOCABULARY,
                 config: AnalysisConfig | None = None) -> None:
        self.vocabulary = vocabulary
        self.config = config or CONFIG.analysis

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_mapping(
        self,
        analysis: SchemaAnalysisResult,
        business_context: str | None = None,
        industry_context: str | None = None,
        confidence_threshold: float | None = None,
    ) -> EntityMappingResult:
        threshold = (
            CONFIG.migration.confidence_threshold if confidence_threshold is None
            else confidence_threshold
        )
        industry = industry_context or analysis.options.industry_context
        business = business_context or analysis.options.business_context
        warnings: list[str] = []

        if industry and normalize(industry) not in {normalize(i) for i in self.vocabulary.industries}:
            warnings.append(f"Unknown industry context '{industry}'; using generic patterns only.")
            log.warning("Unknown industry context '%s'; using generic patterns only.", industry)
        patterns = self.vocabulary.patterns_for(industry)
        context_applies = bool(industry or business)

        order = topological_order({t.name: t.referenced_tables for t in analysis.tables})
        mapped: dict[str, EntityMapping] = {}
        for name in order:
            table = analysis.table(name)
            try:
                mapped[name] = self.map_table(
                    table, patterns, mapped, analysis, threshold,
                    industry, business, context_applies,
                )
            except InsufficientSignalError as exc:
                log.warning("%s", exc)
                warnings.append(str(exc))
                mapped[name] = self._fallback(table, mapped, analysis, threshold)

        result = EntityMappingResult(
            mappings=[mapped[t.name] for t in analysis.tables],
            threshold=threshold,
            industry_context=industry,
            business_context=business,
            warnings=warnings,
        )
        summary = result.summary
        log_event(
            log, logging.INFO, "schema_mapped",
            tables=summary.total_tables, high_confidence=summary.high_confidence,
            needs_review=summary.needs_review, average_confidence=summary.average_confidence,
        )
        return result

    def score_candidates(
        self,
        table: TableDescriptor,
        patterns: Sequence[EntityPattern],
        mapped: dict[str, EntityMapping],
        threshold: float,
        industry: str | None = None,
        business: str | None = None,
        context_applies: bool = False,
    ) -> list[CandidateScore]:
        """All candidates with at least one structural signal, best first."""
        has_fks = any(not fk.is_self_reference for fk in table.foreign_keys)
        total_weight = W_TABLE_NAME + W_COLUMNS
        if has_fks:
            total_weight += W_RELATIONSHIP
        if context_applies:
            total_weight += W_CONTEXT

        scored: list[tuple[CandidateScore, int]] = []
        for position, pattern in enumerate(patterns):
            name_score = table_name_signal(table.name, pattern)
            col_score, matched = column_signal(table, pattern)
            rel_score = relationship_signal(table, pattern, mapped, threshold) if has_fks else 0.0
            ctx_score = context_signal(pattern, industry, business) if context_applies else 0.0
            weighted = W_TABLE_NAME * name_score + W_COLUMNS * col_score
            weighted += W_RELATIONSHIP * rel_score + W_CONTEXT * ctx_score
            candidate = CandidateScore(
                pattern=pattern, table_name=name_score, columns=col_score,
                matched_columns=matched, relationship=rel_score, context=ctx_score,
                score=round(weighted / total_weight, 4),
            )
            if candidate.has_signal:
                scored.append((candidate, position))

        scored.sort(key=lambda item: (-item[0].score, not item[0].pattern.is_industry_specific, item[1]))
        return [c for c, _ in scored]

    def map_table(
        self,
        table: TableDescriptor,
        patterns: Sequence[EntityPattern],
        mapped: dict[str, EntityMapping],
        analysis: SchemaAnalysisResult,
        threshold: float,
        industry: str | None = None,
        business: str | None = None,
        context_applies: bool = False,
    ) -> EntityMapping:
        """
        Map one table.

        Raises:
            InsufficientSignalError: No pattern has any signal for the table.
        """
        candidates = self.score_candidates(
            table, patterns, mapped, threshold, industry, business, context_applies,
        )
        if not candidates:
            raise InsufficientSignalError(table.name)

        best = candidates[0]
        category = EntityCategory.RELATIONSHIP if table.is_junction else best.pattern.category
        mapping = self._build_mapping(
            table, best.pattern.entity_type, best.score, _reasoning(best), category,
            mapped, analysis, threshold,
        )
        mapping.alternatives = [
            AlternativeMapping(c.pattern.entity_type, c.score, _reasoning(c))
            for c in candidates[1:1 + MAX_ALTERNATIVES]
            if c.score > 0
        ]
        log.debug(
            "Mapped %s → %s (%.3f)%s", table.name, mapping.entity_type, mapping.confidence,
            " [review]" if mapping.needs_review else "",
        )
        return mapping

    # ------------------------------------------------------------------
    # Field tiers
    # ------------------------------------------------------------------

    def field_mappings(self, table: TableDescriptor) -> list[FieldMapping]:
        """Assign every migratable column of *table* to a storage tier."""
        code = _code_column(table)
        name = next((c for c in table.columns if c.classification is _CC.NAME), None)
        used: set[str] = set()
        fields: list[FieldMapping] = []

        for col in table.columns:
            if col.computed_expression is not None:
                continue
            if code is not None and col.name == code.name:
                target, tier = "entity_code", StorageTier.IDENTITY
            elif name is not None and col.name == name.name:
                target, tier = "entity_name", StorageTier.IDENTITY
            elif col.is_primary_key or col.is_unique:
                target, tier = snake_case(col.name), StorageTier.IDENTITY
            elif self._is_low_cardinality(col):
                target, tier = snake_case(col.name), StorageTier.ATTRIBUTE_METADATA
            else:
                target, tier = snake_case(col.name), StorageTier.DYNAMIC_PROPERTY

            target = _unique_name(target, used)
            transformation = _TRANSFORMATIONS.get(col.classification)
            if target == "entity_code" and categorize(col.data_type) in (TypeCategory.STRING, TypeCategory.TEXT):
                transformation = "trim"
            fields.append(FieldMapping(
                source_column=col.name,
                target_field=target,
                tier=tier,
                transformation=transformation,
                validation_rule=_validation_rule(col, target),
                data_type=_TRANSFORMED_FIELD_TYPE.get(transformation or "", field_type_for(col.data_type)),
            ))
        return fields

    def _is_low_cardinality(self, col: ColumnDescriptor) -> bool:
        if col.classification in (_CC.FLAG, _CC.REFERENCE):
            return True
        if set(tokenize(col.name)) & self.vocabulary.low_cardinality_tokens:
            return True
        return col.sample_distinct_ratio is not None and col.sample_distinct_ratio <= LOW_CARDINALITY_RATIO

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fallback(
        self,
        table: TableDescriptor,
        mapped: dict[str, EntityMapping],
        analysis: SchemaAnalysisResult,
        threshold: float,
    ) -> EntityMapping:
        category = EntityCategory.RELATIONSHIP if table.is_junction else EntityCategory.GENERIC
        return self._build_mapping(
            table, GENERIC_ENTITY_TYPE, FALLBACK_CONFIDENCE,
            "No table-name, column or relationship signal; generic fallback.",
            category, mapped, analysis, threshold,
        )

    def _build_mapping(
        self,
        table: TableDescriptor,
        entity_type: str,
        confidence: float,
        reasoning: str,
        category: EntityCategory,
        mapped: dict[str, EntityMapping],
        analysis: SchemaAnalysisResult,
        threshold: float,
    ) -> EntityMapping:
        fields = self.field_mappings(table)
        mapping = EntityMapping(
            source_table=table.name,
            entity_type=entity_type,
            confidence=confidence,
            reasoning=reasoning,
            category=category,
            field_mappings=fields,
            business_rules=_translate_rules(
                [r for r in analysis.business_rules if r.table == table.name], fields,
            ),
            relationships=[
                RelationshipNote(
                    source_column=fk.source_column,
                    target_table=fk.target_table,
                    target_column=fk.target_column,
                    cardinality=fk.semantics.value,
                    target_entity_type=(
                        entity_type if fk.is_self_reference
                        else getattr(mapped.get(fk.target_table), "entity_type", None)
                    ),
                )
                for fk in table.foreign_keys
            ],
            needs_review=confidence < threshold,
        )
        mapping.strategy = self._strategy(table, mapping, mapped)
        mapping.validation_results = _mapping_checks(table, mapping, threshold)
        return mapping

    def _strategy(
        self, table: TableDescriptor, mapping: EntityMapping, mapped: dict[str, EntityMapping]
    ) -> MappingStrategy:
        if mapping.entity_type != GENERIC_ENTITY_TYPE and any(
            getattr(mapped.get(t), "entity_type", None) == mapping.entity_type
            for t in table.referenced_tables
        ):
            return MappingStrategy.MERGE
        if len(table.columns) > self.config.split_column_threshold:
            return MappingStrategy.SPLIT
        if any(f.transformation for f in mapping.field_mappings):
            return MappingStrategy.TRANSFORM
        return MappingStrategy.DIRECT


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------

def _reasoning(candidate: CandidateScore) -> str:
    parts = [f"{candidate.pattern.entity_type}: score {candidate.score:.3f}"]
    if candidate.table_name:
        parts.append(f"table name {candidate.table_name:.2f}")
    if candidate.columns:
        parts.append(f"columns {candidate.columns:.2f} ({', '.join(candidate.matched_columns)})")
    if candidate.relationship:
        parts.append(f"relationships {candidate.relationship:.2f}")
    if candidate.context:
        parts.append(f"context {candidate.context:.2f}")
    return "; ".join(parts)


def _code_column(table: TableDescriptor) -> ColumnDescriptor | None:
    """Pick the column that becomes ``entity_code``."""
    keys = [c for c in table.columns if c.is_primary_key or c.is_unique]
    for col in keys:
        if col.classification is _CC.IDENTIFIER and categorize(col.data_type) is TypeCategory.STRING:
            return col
    if len(table.primary_key) == 1:
        return table.column(table.primary_key[0])
    for col in keys:
        if col.classification is _CC.IDENTIFIER:
            return col
    return table.column(table.primary_key[0]) if table.primary_key else None


def _unique_name(target: str, used: set[str]) -> str:
    candidate, n = target, 2
    while candidate in used:
        candidate = f"{target}_{n}"
        n += 1
    used.add(candidate)
    return candidate


def _validation_rule(col: ColumnDescriptor, target: str) -> str | None:
    rules: list[str] = []
    if target == "entity_code":
        rules += ["required", "unique"]
    elif not col.nullable and not col.is_identity:
        rules.append("required")
    if col.classification is _CC.AMOUNT:
        rules.append("numeric")
    if col.max_length:
        rules.append(f"max_length:{col.max_length}")
    return "|".join(rules) or None


def _translate_rules(rules: Sequence[BusinessRule], fields: Sequence[FieldMapping]) -> list[BusinessRuleMapping]:
    renames = {f.source_column: f.target_field for f in fields}
    translated: list[BusinessRuleMapping] = []
    for rule in rules:
        template, confidence = _RULE_TRANSLATIONS.get(rule.rule_type, ("review: {expr}", 0.3))
        expr = rule.expression
        for source, target in renames.items():
            expr = re.sub(rf"\b{re.escape(source)}\b", target, expr)
        translated.append(BusinessRuleMapping(
            rule_name=rule.name,
            source_table=rule.table,
            rule_type=rule.rule_type,
            source_expression=rule.expression,
            target_rule=template.format(expr=expr, name=rule.name),
            enforcement="advisory",
            confidence=confidence,
        ))
    return translated


def _mapping_checks(table: TableDescriptor, mapping: EntityMapping, threshold: float) -> list[MappingCheck]:
    checks: list[MappingCheck] = []
    if mapping.confidence >= threshold:
        checks.append(MappingCheck("Confidence Threshold", ValidationStatus.PASSED,
                                   f"{mapping.confidence:.2f} ≥ {threshold:.2f}"))
    else:
        checks.append(MappingCheck("Confidence Threshold", ValidationStatus.WARNING,
                                   f"{mapping.confidence:.2f} below {threshold:.2f}; review required"))

    checks.append(field_coverage_check(table, mapping))

    risky = []
    for fm in mapping.field_mappings:
        col = table.column(fm.source_column)
        if col is None:
            continue
        safety = classify_conversion(col.data_type, fm.data_type)
        if safety is not ConversionSafety.SAFE:
            risky.append(f"{col.name} ({col.data_type} → {fm.data_type}, {safety.value})")
    if risky:
        checks.append(MappingCheck("Type Compatibility", ValidationStatus.WARNING,
                                   "Conversions needing review: " + "; ".join(risky)))
    else:
        checks.append(MappingCheck("Type Compatibility", ValidationStatus.PASSED,
                                   "All conversions are safe"))
    return checks


def field_coverage_check(table: TableDescriptor, mapping: EntityMapping) -> MappingCheck:
    """Share of source columns carried by a field mapping."""
    total = len(table.columns)
    coverage = len(mapping.field_mappings) / total if total else 1.0
    if coverage >= 0.8:
        status = ValidationStatus.PASSED
    elif coverage >= 0.6:
        status = ValidationStatus.WARNING
    else:
        status = ValidationStatus.FAILED
    return MappingCheck("Field Coverage", status, f"{coverage:.0%} of columns mapped")
