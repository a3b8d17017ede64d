from datetime import date

from flask_app.dedupe.conflicts import (
    FIELD_DESCRIPTORS,
    identify_conflicts,
    serialize_record,
    union_values,
)
from flask_app.models import EntityType


def _fields(conflicts):
    return {conflict.field for conflict in conflicts}


def test_conflicts_are_symmetric():
    a = {"name": "Acme", "phone": "03-5551234", "email": None, "contact_types": ["client", "vendor"]}
    b = {"name": "Acme Ltd", "phone": "03-5551234", "email": "info@acme.com", "contact_types": ["vendor"]}

    forward = identify_conflicts(EntityType.ORGANIZATION, a, b)
    backward = identify_conflicts(EntityType.ORGANIZATION, b, a)

    assert _fields(forward) == _fields(backward) == {"name", "email", "contact_types"}
    by_field = {c.field: c for c in backward}
    assert by_field["email"].primary_value == "info@acme.com"
    assert by_field["email"].secondary_value is None


def test_arrays_compare_as_sets_in_order():
    a = {"name": "X", "disciplines": ["b", "a"]}
    b = {"name": "X", "disciplines": ["a", "b"]}
    assert identify_conflicts(EntityType.ORGANIZATION, a, b) == []


def test_array_conflict_values_are_sorted():
    a = {"first_name": "Dan", "disciplines": ["zoning", "acoustics"]}
    b = {"first_name": "Dan", "disciplines": []}
    conflicts = identify_conflicts(EntityType.CONTACT, a, b)

    assert len(conflicts) == 1
    assert conflicts[0].primary_value == ["acoustics", "zoning"]
    assert conflicts[0].type == "array"


def test_both_empty_is_not_a_conflict():
    a = {"name": "Acme", "notes": "", "contact_types": [], "employee_count": None}
    b = {"name": "Acme", "notes": None, "contact_types": None, "employee_count": None}
    assert identify_conflicts(EntityType.ORGANIZATION, a, b) == []


def test_number_and_date_fields():
    a = {"name": "Acme", "employee_count": 10, "founded_date": date(2001, 1, 1)}
    b = {"name": "Acme", "employee_count": 12, "founded_date": date(2001, 1, 1)}
    conflicts = identify_conflicts(EntityType.ORGANIZATION, a, b)
    assert [(c.field, c.type) for c in conflicts] == [("employee_count", "number")]


def test_missing_record_has_no_conflicts():
    assert identify_conflicts(EntityType.CONTACT, None, {"first_name": "A"}) == []
    assert identify_conflicts(EntityType.CONTACT, {"first_name": "A"}, None) == []


def test_conflicts_from_model_instances(make_contact):
    left = make_contact("Yael", "Bar", role="Architect")
    right = make_contact("Yael", "Bar-On", role="Architect")

    conflicts = identify_conflicts(EntityType.CONTACT, left, right)
    assert _fields(conflicts) == {"last_name"}
    assert conflicts[0].to_dict()["label"] == "Last name"


def test_descriptor_tables_cover_both_entity_types():
    org_fields = [d.field for d in FIELD_DESCRIPTORS[EntityType.ORGANIZATION]]
    contact_fields = [d.field for d in FIELD_DESCRIPTORS[EntityType.CONTACT]]
    assert "business_id" in org_fields
    assert "phone_alt" in contact_fields and "email_alt" in contact_fields


def test_union_values_keeps_first_seen_order():
    assert union_values(["a", "b"], ["b", "c"]) == ["a", "b", "c"]
    assert union_values(None, ["x"]) == ["x"]


def test_serialize_record_formats_dates(make_organization):
    org = make_organization("Acme", founded_date=date(1999, 5, 4), employee_count=3)
    payload = serialize_record(EntityType.ORGANIZATION, org)

    assert payload["id"] == org.id
    assert payload["founded_date"] == "1999-05-04"
    assert payload["employee_count"] == 3
    assert payload["review_count"] == 0
