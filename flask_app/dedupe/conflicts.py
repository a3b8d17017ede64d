"""
Field-level conflict detection between two records of the same entity type.

The comparable fields of each entity type are declared once in
``FIELD_DESCRIPTORS``; conflict detection, merge resolution and undo
snapshots all read from that table.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Mapping, Sequence

from flask_app.models import EntityType


@dataclass(frozen=True)
class FieldDescriptor:
    field: str
    label: str
    type: str  # text | array | date | number


@dataclass(frozen=True)
class ConflictField:
    field: str
    label: str
    primary_value: Any
    secondary_value: Any
    type: str

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "label": self.label,
            "primary_value": _jsonable(self.primary_value),
            "secondary_value": _jsonable(self.secondary_value),
            "type": self.type,
        }


FIELD_DESCRIPTORS = {
    EntityType.ORGANIZATION: (
        FieldDescriptor("name", "Name", "text"),
        FieldDescriptor("org_type", "Type", "text"),
        FieldDescriptor("phone", "Phone", "text"),
        FieldDescriptor("email", "Email", "text"),
        FieldDescriptor("website", "Website", "text"),
        FieldDescriptor("address", "Address", "text"),
        FieldDescriptor("business_id", "Business ID", "text"),
        FieldDescriptor("employee_count", "Employees", "number"),
        FieldDescriptor("founded_date", "Founded", "date"),
        FieldDescriptor("notes", "Notes", "text"),
        FieldDescriptor("contact_types", "Contact types", "array"),
        FieldDescriptor("disciplines", "Disciplines", "array"),
    ),
    EntityType.CONTACT: (
        FieldDescriptor("first_name", "First name", "text"),
        FieldDescriptor("last_name", "Last name", "text"),
        FieldDescriptor("phone", "Phone", "text"),
        FieldDescriptor("phone_alt", "Alternate phone", "text"),
        FieldDescriptor("email", "Email", "text"),
        FieldDescriptor("email_alt", "Alternate email", "text"),
        FieldDescriptor("role", "Role", "text"),
        FieldDescriptor("department", "Department", "text"),
        FieldDescriptor("notes", "Notes", "text"),
        FieldDescriptor("contact_types", "Contact types", "array"),
        FieldDescriptor("disciplines", "Disciplines", "array"),
    ),
}


def descriptors_for(entity_type: EntityType) -> Sequence[FieldDescriptor]:
    return FIELD_DESCRIPTORS[entity_type]


def descriptor_map(entity_type: EntityType) -> dict[str, FieldDescriptor]:
    return {descriptor.field: descriptor for descriptor in FIELD_DESCRIPTORS[entity_type]}


def get_value(record: Any, field: str) -> Any:
    """Read ``field`` from a mapping or a model instance."""
    if isinstance(record, Mapping):
        return record.get(field)
    return getattr(record, field, None)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _array_signature(value: Any) -> str:
    return json.dumps(sorted(str(item) for item in _as_list(value)))


def values_conflict(descriptor: FieldDescriptor, left: Any, right: Any) -> bool:
    """True when two values differ meaningfully for ``descriptor``'s type."""

    if is_empty(left) and is_empty(right):
        return False
    if descriptor.type == "array":
        return _array_signature(left) != _array_signature(right)
    if descriptor.type == "text":
        return (left or "") != (right or "")
    return left != right


def identify_conflicts(entity_type: EntityType, record_a: Any, record_b: Any) -> List[ConflictField]:
    """
    List the fields where ``record_a`` and ``record_b`` disagree.

    Array values are reported sorted. Returns ``[]`` when either record is
    missing; callers decide how to surface a deleted record.
    """

    if record_a is None or record_b is None:
        return []

    conflicts: List[ConflictField] = []
    for descriptor in FIELD_DESCRIPTORS[entity_type]:
        left = get_value(record_a, descriptor.field)
        right = get_value(record_b, descriptor.field)
        if not values_conflict(descriptor, left, right):
            continue
        if descriptor.type == "array":
            left, right = sorted(_as_list(left), key=str), sorted(_as_list(right), key=str)
        conflicts.append(
            ConflictField(
                field=descriptor.field,
                label=descriptor.label,
                primary_value=left,
                secondary_value=right,
                type=descriptor.type,
            )
        )
    return conflicts


def union_values(left: Any, right: Any) -> list:
    """Order-preserving union of two array values."""
    merged: list = []
    for item in _as_list(left) + _as_list(right):
        if item not in merged:
            merged.append(item)
    return merged


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def serialize_record(entity_type: EntityType, record: Any) -> dict | None:
    """JSON-ready view of a record's comparable fields plus its id."""

    if record is None:
        return None
    payload = {"id": get_value(record, "id")}
    for descriptor in FIELD_DESCRIPTORS[entity_type]:
        payload[descriptor.field] = _jsonable(get_value(record, descriptor.field))
    for derived in ("organization_id", "average_rating", "review_count"):
        value = get_value(record, derived)
        if value is not None:
            payload[derived] = value
    return payload


__all__ = [
    "ConflictField",
    "FIELD_DESCRIPTORS",
    "FieldDescriptor",
    "descriptor_map",
    "descriptors_for",
    "get_value",
    "identify_conflicts",
    "is_empty",
    "serialize_record",
    "union_values",
    "values_conflict",
]
