"""
models/mapping.py
-----------------
Typed data models for entity-type mapping decisions.

Design Decision:
    Using ``@dataclass`` and ``Enum`` instead of plain dicts ensures:
    * A single source of truth for strategies, storage tiers and categories.
    * Mapping results survive a round trip through JSON (to_dict /
      from_dict) so reviewers can override a saved mapping and feed it
      back into the plan generator without re-running analysis.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from models.report import ValidationStatus, worst_status


class MappingStrategy(str, Enum):
    DIRECT = "direct"
    SPLIT = "split"
    MERGE = "merge"
    TRANSFORM = "transform"


class StorageTier(str, Enum):
    """Target EAV storage tier for a mapped field."""
    IDENTITY = "identity"
    ATTRIBUTE_METADATA = "attribute-metadata"
    DYNAMIC_PROPERTY = "dynamic-property"


class EntityCategory(str, Enum):
    MASTER = "master"
    TRANSACTIONAL = "transactional"
    RELATIONSHIP = "relationship"
    CONFIGURATION = "configuration"
    GENERIC = "generic"


GENERIC_ENTITY_TYPE = "generic_entity"


@dataclass
class FieldMapping:
    source_column: str
    target_field: str
    tier: StorageTier
    transformation: str | None = None
    validation_rule: str | None = None
    data_type: str = "text"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "target_field": self.target_field,
            "tier": self.tier.value,
            "transformation": self.transformation,
            "validation_rule": self.validation_rule,
            "data_type": self.data_type,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "FieldMapping":
        return FieldMapping(
            source_column=data["source_column"],
            target_field=data["target_field"],
            tier=StorageTier(data.get("tier", StorageTier.DYNAMIC_PROPERTY.value)),
            transformation=data.get("transformation"),
            validation_rule=data.get("validation_rule"),
            data_type=data.get("data_type", "text"),
        )


@dataclass
class BusinessRuleMapping:
    """
    Translation of a source constraint/trigger into a target-side rule.

    Rules are advisory: they are surfaced for review and recorded in the
    business-logic phase, never enforced automatically.
    """
    rule_name: str
    source_table: str
    rule_type: str
    source_expression: str
    target_rule: str
    enforcement: str = "advisory"
    confidence: float = 0.5

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_name": self.rule_name,
            "source_table": self.source_table,
            "rule_type": self.rule_type,
            "source_expression": self.source_expression,
            "target_rule": self.target_rule,
            "enforcement": self.enforcement,
            "confidence": self.confidence,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BusinessRuleMapping":
        return BusinessRuleMapping(**data)


@dataclass
class AlternativeMapping:
    entity_type: str
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"entity_type": self.entity_type, "confidence": self.confidence, "reasoning": self.reasoning}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "AlternativeMapping":
        return AlternativeMapping(**data)


@dataclass
class RelationshipNote:
    """Records how a mapped table relates to another table via a foreign key."""
    source_column: str
    target_table: str
    target_column: str
    cardinality: str
    target_entity_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "cardinality": self.cardinality,
            "target_entity_type": self.target_entity_type,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RelationshipNote":
        return RelationshipNote(**data)


@dataclass
class MappingCheck:
    name: str
    status: ValidationStatus
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "message": self.message}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "MappingCheck":
        return MappingCheck(
            name=data["name"],
            status=ValidationStatus(data["status"]),
            message=data.get("message", ""),
        )


@dataclass
class EntityMapping:
    """
    The mapping decision for one source table.

    Attributes:
        source_table:       Name of the source table.
        entity_type:        Winning universal entity type.
        confidence:         Fused signal score in [0, 1].
        reasoning:          Human-readable explanation of the score.
        strategy:           How rows are carried over (direct/split/merge/transform).
        field_mappings:     Ordered column → target field assignments.
        business_rules:     Advisory rule translations.
        alternatives:       Up to two runner-up entity types.
        validation_results: Mapping-level checks (threshold, coverage, types).
    """
    source_table: str
    entity_type: str
    confidence: float
    reasoning: str = ""
    strategy: MappingStrategy = MappingStrategy.DIRECT
    category: EntityCategory = EntityCategory.GENERIC
    field_mappings: list[FieldMapping] = field(default_factory=list)
    business_rules: list[BusinessRuleMapping] = field(default_factory=list)
    alternatives: list[AlternativeMapping] = field(default_factory=list)
    relationships: list[RelationshipNote] = field(default_factory=list)
    validation_results: list[MappingCheck] = field(default_factory=list)
    needs_review: bool = False

    @property
    def status(self) -> ValidationStatus:
        statuses = [c.status for c in self.validation_results]
        if self.needs_review:
            statuses.append(ValidationStatus.WARNING)
        return worst_status(statuses)

    def field_for(self, target_field: str) -> FieldMapping | None:
        for fm in self.field_mappings:
            if fm.target_field == target_field:
                return fm
        return None

    def fields_in_tier(self, tier: StorageTier) -> list[FieldMapping]:
        return [fm for fm in self.field_mappings if fm.tier is tier]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_table": self.source_table,
            "entity_type": self.entity_type,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "strategy": self.strategy.value,
            "category": self.category.value,
            "field_mappings": [f.to_dict() for f in self.field_mappings],
            "business_rules": [r.to_dict() for r in self.business_rules],
            "alternatives": [a.to_dict() for a in self.alternatives],
            "relationships": [r.to_dict() for r in self.relationships],
            "validation_results": [c.to_dict() for c in self.validation_results],
            "needs_review": self.needs_review,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "EntityMapping":
        return EntityMapping(
            source_table=data["source_table"],
            entity_type=data["entity_type"],
            confidence=float(data.get("confidence", 0.0)),
            reasoning=data.get("reasoning", ""),
            strategy=MappingStrategy(data.get("strategy", MappingStrategy.DIRECT.value)),
            category=EntityCategory(data.get("category", EntityCategory.GENERIC.value)),
            field_mappings=[FieldMapping.from_dict(f) for f in data.get("field_mappings", [])],
            business_rules=[BusinessRuleMapping.from_dict(r) for r in data.get("business_rules", [])],
            alternatives=[AlternativeMapping.from_dict(a) for a in data.get("alternatives", [])],
            relationships=[RelationshipNote.from_dict(r) for r in data.get("relationships", [])],
            validation_results=[MappingCheck.from_dict(c) for c in data.get("validation_results", [])],
            needs_review=bool(data.get("needs_review", False)),
        )


@dataclass
class MappingSummary:
    total_tables: int = 0
    high_confidence: int = 0
    needs_review: int = 0
    average_confidence: float = 0.0
    entity_distribution: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tables": self.total_tables,
            "high_confidence": self.high_confidence,
            "needs_review": self.needs_review,
            "average_confidence": self.average_confidence,
            "entity_distribution": self.entity_distribution,
        }


@dataclass
class EntityMappingResult:
    mappings: list[EntityMapping]
    threshold: float
    industry_context: str | None = None
    business_context: str | None = None
    warnings: list[str] = field(default_factory=list)

    def get(self, source_table: str) -> EntityMapping | None:
        for m in self.mappings:
            if m.source_table == source_table:
                return m
        return None

    def __iter__(self):
        return iter(self.mappings)

    def __len__(self) -> int:
        return len(self.mappings)

    @property
    def summary(self) -> MappingSummary:
        total = len(self.mappings)
        distribution: dict[str, int] = {}
        for m in self.mappings:
            distribution[m.entity_type] = distribution.get(m.entity_type, 0) + 1
        return MappingSummary(
            total_tables=total,
            high_confidence=sum(1 for m in self.mappings if m.confidence >= self.threshold),
            needs_review=sum(1 for m in self.mappings if m.needs_review),
            average_confidence=round(
                sum(m.confidence for m in self.mappings) / total, 3
            ) if total else 0.0,
            entity_distribution=distribution,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold": self.threshold,
            "industry_context": self.industry_context,
            "business_context": self.business_context,
            "warnings": self.warnings,
            "mappings": [m.to_dict() for m in self.mappings],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "EntityMappingResult":
        return EntityMappingResult(
            mappings=[EntityMapping.from_dict(m) for m in data.get("mappings", [])],
            threshold=float(data.get("threshold", 0.8)),
            industry_context=data.get("industry_context"),
            business_context=data.get("business_context"),
            warnings=list(data.get("warnings", [])),
        )


def load_mapping_result(path: Path) -> EntityMappingResult | None:
    """
    Load a saved mapping result.

    Returns:
        The deserialised result, or None if the file is absent.

    Raises:
        ValueError: If the file contains invalid JSON.
    """
    if not path.exists():
        return None
    try:
        raw: dict = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in mapping file '{path}': {exc}") from exc
    return EntityMappingResult.from_dict(raw)


def save_mapping_result(path: Path, result: EntityMappingResult) -> None:
    """Serialise a mapping result to JSON and write atomically (write-then-rename)."""
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(result.to_dict(), indent=4), encoding="utf-8")
    tmp.replace(path)
