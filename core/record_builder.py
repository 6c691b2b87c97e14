"""
core/record_builder.py
----------------------
Turns source rows into the records a ``TargetWriter`` stores.

Design Decisions:
    * The upsert key is the row's ordering-key value, not the entity code,
      so two rows that share a (dirty) code never overwrite each other.
    * Transformations never raise: a value that cannot be converted is
      kept as-is and stored as text, so one bad cell does not fail a batch.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from connectors.base import Row, row_key_getter
from logger import get_logger
from models.mapping import StorageTier
from models.plan import BusinessRuleSpec, TablePlan
from models.records import BusinessRuleRecord, EntityRecord, RelationshipRecord

log = get_logger(__name__)

_TRUE = frozenset({"y", "yes", "true", "t", "1", "on"})
_FALSE = frozenset({"n", "no", "false", "f", "0", "off", ""})
_ZERO_DATES = frozenset({"0000-00-00", "0000-00-00 00:00:00"})


# ---------------------------------------------------------------------------
# Transformations
# ---------------------------------------------------------------------------

def _trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _to_decimal(value: Any) -> Any:
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return value


def _to_iso_date(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if text in _ZERO_DATES:
            return None
        try:
            return datetime.fromisoformat(text).isoformat()
        except ValueError:
            return value
    return value


def _to_bool(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    return value


TRANSFORMATIONS: dict[str, Callable[[Any], Any]] = {
    "trim": _trim,
    "to_decimal": _to_decimal,
    "to_iso_date": _to_iso_date,
    "to_bool": _to_bool,
}


def apply_transformation(name: str | None, value: Any) -> Any:
    """Apply the named transformation; unknown names leave the value unchanged."""
    if not name:
        return value
    func = TRANSFORMATIONS.get(name)
    if func is None:
        log.debug("Unknown transformation '%s' ignored.", name)
        return value
    return func(value)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def cursor_value(row: Row, plan: TablePlan) -> Any:
    """Ordering-key value of *row* (a tuple for composite keys)."""
    return row_key_getter(plan.ordering_key)(row)


def source_key(row: Row, plan: TablePlan) -> str:
    value = cursor_value(row, plan)
    if isinstance(value, tuple):
        return "|".join(str(v) for v in value)
    return str(value)


def build_entity_record(
    row: Row, plan: TablePlan, organization_id: str, migration_id: str
) -> EntityRecord:
    key = source_key(row, plan)
    record = EntityRecord(
        organization_id=organization_id,
        migration_id=migration_id,
        entity_type=plan.entity_type,
        source_table=plan.table_name,
        source_key=key,
        entity_code=key,
    )
    for spec in plan.fields:
        value = apply_transformation(spec.transformation, row.get(spec.source_column))
        if spec.target_field == "entity_code":
            if value is not None and value != "":
                record.entity_code = str(value)
        elif spec.target_field == "entity_name":
            record.entity_name = None if value is None else str(value)
        elif spec.tier == StorageTier.IDENTITY.value:
            record.identity[spec.target_field] = value
        elif spec.tier == StorageTier.ATTRIBUTE_METADATA.value:
            record.metadata[spec.target_field] = value
        else:
            record.dynamic[spec.target_field] = value

    targets = {f.source_column: f.target_field for f in plan.fields}
    for ref in plan.references:
        value = row.get(ref.column)
        if value is not None and value != "":
            record.references[targets.get(ref.column, ref.column)] = (ref.target_table, str(value))
    return record


def build_relationship_record(
    row: Row, plan: TablePlan, organization_id: str, migration_id: str
) -> RelationshipRecord | None:
    """
    Junction row → relationship between the two referenced entities.

    Returns None when either side of the link is NULL.
    """
    if len(plan.references) < 2:
        return None
    first, second = plan.references[0], plan.references[1]
    left, right = row.get(first.column), row.get(second.column)
    if left is None or right is None:
        return None
    return RelationshipRecord(
        organization_id=organization_id,
        migration_id=migration_id,
        relationship_type=plan.entity_type,
        source_table=plan.table_name,
        source_key=source_key(row, plan),
        from_table=first.target_table,
        from_key=str(left),
        to_table=second.target_table,
        to_key=str(right),
    )


def build_rule_record(rule: BusinessRuleSpec, organization_id: str, migration_id: str) -> BusinessRuleRecord:
    return BusinessRuleRecord(
        organization_id=organization_id,
        migration_id=migration_id,
        source_table=rule.source_table,
        rule_name=rule.rule_name,
        rule_type=rule.rule_type,
        target_rule=rule.target_rule,
        enforcement=rule.enforcement,
    )
