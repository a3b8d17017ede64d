"""
Merge engine: fold a loser record into a master and resolve the ledger entry.

A merge runs as one transaction. It applies field resolutions to the master,
re-points every reference from the loser to the master, recomputes derived
ratings, deletes the loser and marks the set ``merged``. Any failure rolls
the whole unit back and the set stays ``pending``.

The pre-merge state (loser columns, master field values, ids of moved
relation rows, links dropped as duplicates) is stored on the set as
``merge_snapshot``. Undo replays it in reverse, but only while every row it
touched still looks exactly as the merge left it.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from flask import current_app
from sqlalchemy import Date, DateTime, inspect

from config.monitoring import DedupeMonitoring
from flask_app.dedupe.conflicts import (
    descriptor_map,
    descriptors_for,
    get_value,
    is_empty,
    union_values,
    values_conflict,
)
from flask_app.dedupe.errors import (
    AlreadyResolved,
    DedupeError,
    NotFound,
    TransactionFailed,
    UndoRefused,
    ValidationFailed,
)
from flask_app.dedupe.ledger import ENTITY_MODELS, DuplicateLedger, parse_status
from flask_app.dedupe.ratings import RatingAggregator
from flask_app.models import (
    AdminLog,
    Contact,
    ContactProject,
    DuplicateSet,
    DuplicateStatus,
    EntityType,
    IndividualReview,
    Project,
    db,
)

RESOLUTION_SOURCES = ("primary", "secondary", "merged")
SNAPSHOT_VERSION = 1

# Relation name -> (model, foreign key column) re-pointed from loser to master
CONTACT_RELATIONS = {
    "reviews": (IndividualReview, "contact_id"),
    "contact_projects": (ContactProject, "contact_id"),
}
ORGANIZATION_RELATIONS = {
    "contacts": (Contact, "organization_id"),
    "projects": (Project, "client_organization_id"),
}
RELATIONS = {
    EntityType.CONTACT: CONTACT_RELATIONS,
    EntityType.ORGANIZATION: ORGANIZATION_RELATIONS,
}


@dataclass(frozen=True)
class FieldResolution:
    """A reviewer's choice for one conflicting field."""

    field: str
    value: Any = None
    source: str = "primary"

    @classmethod
    def from_mapping(cls, raw: Any) -> "FieldResolution":
        if not isinstance(raw, Mapping):
            raise ValidationFailed("Each field resolution must be an object")
        field = raw.get("field")
        if not isinstance(field, str) or not field.strip():
            raise ValidationFailed("Field resolution is missing 'field'")
        source = raw.get("source", "primary")
        if source not in RESOLUTION_SOURCES:
            raise ValidationFailed(
                f"Field resolution source for {field} must be one of {', '.join(RESOLUTION_SOURCES)}"
            )
        return cls(field=field.strip(), value=raw.get("value"), source=source)


def coerce_resolutions(raw: Iterable[Any] | None) -> List[FieldResolution]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes, Mapping)):
        raise ValidationFailed("fieldResolutions must be a list")
    return [item if isinstance(item, FieldResolution) else FieldResolution.from_mapping(item) for item in raw]


def merge_notes(master_notes: str | None, loser_notes: str | None, loser_label: str, when: datetime) -> str | None:
    """Keep both notes, with a separator line naming the absorbed record."""

    parts = [text.strip() for text in (master_notes, loser_notes) if text and text.strip()]
    if not parts:
        return master_notes
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]}\n\n--- Merged from {loser_label} ({when.date().isoformat()}) ---\n{parts[1]}"


def _dump(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _load(column, value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    if isinstance(column.type, DateTime):
        return datetime.fromisoformat(value)
    if isinstance(column.type, Date):
        return date.fromisoformat(value)
    return value


def snapshot_columns(record: Any) -> Dict[str, Any]:
    """Every mapped column of ``record`` in JSON-ready form."""

    mapper = inspect(type(record))
    return {attr.key: _dump(getattr(record, attr.key)) for attr in mapper.column_attrs}


def restore_columns(model, values: Mapping[str, Any]) -> Any:
    mapper = inspect(model)
    kwargs = {}
    for attr in mapper.column_attrs:
        if attr.key in values:
            kwargs[attr.key] = _load(attr.columns[0], values[attr.key])
    return model(**kwargs)


class MergeService:
    """Merge, undo and review-status operations over duplicate sets."""

    def __init__(self, session=None, *, ledger: DuplicateLedger | None = None, ratings: RatingAggregator | None = None):
        self.session = session or db.session
        self.ledger = ledger or DuplicateLedger(self.session)
        self.ratings = ratings or RatingAggregator(self.session)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(
        self,
        set_id: int,
        master_id: int,
        field_resolutions: Iterable[Any] | None = None,
        *,
        reviewer_id: int | None = None,
    ) -> DuplicateSet:
        """
        Merge the two records of ``set_id`` into ``master_id``.

        Raises:
            NotFound: The set or one of its records no longer exists.
            AlreadyResolved: The set is not pending (including a lost race).
            ValidationFailed: Bad master id or field resolutions.
            TransactionFailed: Anything else went wrong; nothing was changed.
        """

        started = time.monotonic()
        resolutions = coerce_resolutions(field_resolutions)

        duplicate_set = self.ledger.get_set(set_id)
        entity_type = duplicate_set.entity_type
        if duplicate_set.status != DuplicateStatus.PENDING:
            raise AlreadyResolved(f"Duplicate set {set_id} is already {duplicate_set.status.value}")
        if not isinstance(master_id, int) or isinstance(master_id, bool) or not duplicate_set.involves(master_id):
            raise ValidationFailed(
                f"masterId must be {duplicate_set.primary_id} or {duplicate_set.secondary_id}; got {master_id!r}"
            )

        primary, secondary = self.ledger.load_records(duplicate_set)
        if primary is None or secondary is None:
            raise NotFound(f"A record in duplicate set {set_id} no longer exists; it may have been deleted")
        master, loser = (primary, secondary) if master_id == primary.id else (secondary, primary)

        merged_at = datetime.now(timezone.utc)
        values = self.resolve_field_values(entity_type, primary, secondary, master, loser, resolutions, merged_at)

        try:
            snapshot = self._execute_merge(duplicate_set, master, loser, values, reviewer_id, merged_at)
            self.session.commit()
        except DedupeError:
            self.session.rollback()
            DedupeMonitoring.record_merge(entity_type.value, "merge", "failure")
            raise
        except Exception as exc:
            self.session.rollback()
            DedupeMonitoring.record_merge(entity_type.value, "merge", "failure")
            current_app.logger.exception(
                f"Merge of duplicate set {set_id} failed and was rolled back",
                extra={"set_id": set_id, "entity_type": entity_type.value},
            )
            raise TransactionFailed(f"Merge of duplicate set {set_id} failed and was rolled back; retry") from exc

        DedupeMonitoring.record_merge(entity_type.value, "merge", "success", time.monotonic() - started)
        current_app.logger.info(
            f"Merged {entity_type.value} {snapshot['loser_id']} into {snapshot['master_id']} (set {set_id})",
            extra={"set_id": set_id, "entity_type": entity_type.value},
        )
        self._audit(
            "DUPLICATE_MERGE",
            reviewer_id,
            {
                "set_id": set_id,
                "entity_type": entity_type.value,
                "master_id": snapshot["master_id"],
                "loser_id": snapshot["loser_id"],
                "fields_changed": sorted(values),
                "moved": {name: len(ids) for name, ids in snapshot["moved"].items()},
            },
        )
        return self.ledger.get_set(set_id)

    def resolve_field_values(
        self,
        entity_type: EntityType,
        primary: Any,
        secondary: Any,
        master: Any,
        loser: Any,
        resolutions: Sequence[FieldResolution],
        merged_at: datetime | None = None,
    ) -> Dict[str, Any]:
        """
        Work out the master's new value for each comparable field.

        Unresolved conflicts prefer the non-empty side, and the set's
        primary record when both sides have data. Fields that do not
        conflict keep the master's own value and are left out.
        """

        descriptors = descriptor_map(entity_type)
        explicit: Dict[str, FieldResolution] = {}
        for resolution in resolutions:
            if resolution.field not in descriptors:
                raise ValidationFailed(f"Unknown field for {entity_type.value}: {resolution.field}")
            if resolution.field in explicit:
                raise ValidationFailed(f"Field {resolution.field} resolved more than once")
            explicit[resolution.field] = resolution

        model = ENTITY_MODELS[entity_type]
        merged_at = merged_at or datetime.now(timezone.utc)
        values: Dict[str, Any] = {}
        for descriptor in descriptors_for(entity_type):
            field = descriptor.field
            primary_value = get_value(primary, field)
            secondary_value = get_value(secondary, field)
            resolution = explicit.get(field)

            if resolution is None:
                if not values_conflict(descriptor, primary_value, secondary_value):
                    continue
                value = primary_value if not is_empty(primary_value) else secondary_value
            elif resolution.source == "primary":
                value = primary_value
            elif resolution.source == "secondary":
                value = secondary_value
            elif resolution.value is not None:
                value = self._coerce_value(descriptor, resolution.value)
            elif descriptor.type == "array":
                value = union_values(get_value(master, field), get_value(loser, field))
            elif field == "notes":
                value = merge_notes(master.notes, loser.notes, loser.display_name or f"#{loser.id}", merged_at)
            else:
                raise ValidationFailed(f"A merged value is required for {field}")

            if descriptor.type == "array" and value is None:
                value = []
            if is_empty(value) and not model.__table__.columns[field].nullable:
                raise ValidationFailed(f"{descriptor.label} cannot be empty")
            values[field] = list(value) if descriptor.type == "array" else value
        return values

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def undo(self, set_id: int, *, reviewer_id: int | None = None) -> DuplicateSet:
        """
        Reverse a merge and return the set to ``pending``.

        Refuses (UndoRefused) unless the master, the moved relation rows and
        the loser's id are all exactly as the merge left them.
        """

        duplicate_set = self.ledger.get_set(set_id)
        entity_type = duplicate_set.entity_type
        if duplicate_set.status != DuplicateStatus.MERGED:
            raise UndoRefused(f"Duplicate set {set_id} is {duplicate_set.status.value}, not merged")
        snapshot = duplicate_set.merge_snapshot
        if not snapshot or snapshot.get("version") != SNAPSHOT_VERSION:
            raise UndoRefused(f"Duplicate set {set_id} has no usable merge snapshot")

        model = ENTITY_MODELS[entity_type]
        master = self.session.get(model, snapshot["master_id"])
        self._check_undo_possible(entity_type, model, master, snapshot)

        try:
            self._execute_undo(duplicate_set, model, master, snapshot, reviewer_id)
            self.session.commit()
        except DedupeError:
            self.session.rollback()
            DedupeMonitoring.record_merge(entity_type.value, "undo", "failure")
            raise
        except Exception as exc:
            self.session.rollback()
            DedupeMonitoring.record_merge(entity_type.value, "undo", "failure")
            current_app.logger.exception(
                f"Undo of duplicate set {set_id} failed and was rolled back",
                extra={"set_id": set_id, "entity_type": entity_type.value},
            )
            raise TransactionFailed(f"Undo of duplicate set {set_id} failed and was rolled back; retry") from exc

        DedupeMonitoring.record_merge(entity_type.value, "undo", "success")
        self._audit(
            "DUPLICATE_MERGE_UNDO",
            reviewer_id,
            {
                "set_id": set_id,
                "entity_type": entity_type.value,
                "master_id": snapshot["master_id"],
                "restored_id": snapshot["loser_id"],
            },
        )
        return self.ledger.get_set(set_id)

    # ------------------------------------------------------------------
    # Reject / skip
    # ------------------------------------------------------------------

    def set_review_status(self, set_id: int, new_status: Any, *, reviewer_id: int | None = None) -> DuplicateSet:
        """Reject or skip a pending set and record who did it."""

        target = parse_status(new_status)
        try:
            duplicate_set = self.ledger.update_status(set_id, target, reviewer_id)
            self.session.commit()
        except DedupeError:
            self.session.rollback()
            raise

        DedupeMonitoring.record_merge(duplicate_set.entity_type.value, target.value, "success")
        self._audit(
            "DUPLICATE_REJECT" if target == DuplicateStatus.REJECTED else "DUPLICATE_SKIP",
            reviewer_id,
            {"set_id": set_id, "entity_type": duplicate_set.entity_type.value, "status": target.value},
        )
        return duplicate_set

    # ------------------------------------------------------------------
    # Merge steps
    # ------------------------------------------------------------------

    def _execute_merge(
        self,
        duplicate_set: DuplicateSet,
        master: Any,
        loser: Any,
        values: Dict[str, Any],
        reviewer_id: int | None,
        merged_at: datetime,
    ) -> Dict[str, Any]:
        entity_type = duplicate_set.entity_type
        snapshot: Dict[str, Any] = {
            "version": SNAPSHOT_VERSION,
            "entity_type": entity_type.value,
            "master_id": master.id,
            "loser_id": loser.id,
            "merged_at": merged_at.isoformat(),
            "loser": snapshot_columns(loser),
            "master_before": self._field_values(entity_type, master),
        }
        loser_organization_id = getattr(loser, "organization_id", None)

        self._apply_field_values(master, values)
        moved, dropped = self._repoint_references(entity_type, master.id, loser.id)
        snapshot["moved"] = moved
        snapshot["dropped_contact_projects"] = dropped

        if entity_type == EntityType.CONTACT:
            self.ratings.recompute_contact_rating(master.id)
        self._delete_loser(loser)
        if entity_type == EntityType.CONTACT:
            self.ratings.recompute_contacts_and_organizations([], [master.organization_id, loser_organization_id])
        else:
            self.ratings.recompute_organization_rating(master.id)

        snapshot["master_after"] = self._field_values(entity_type, master)
        self.ledger.transition(
            duplicate_set.id,
            expected=DuplicateStatus.PENDING,
            target=DuplicateStatus.MERGED,
            reviewer_id=reviewer_id,
            merge_snapshot=snapshot,
        )
        return snapshot

    def _apply_field_values(self, master: Any, values: Dict[str, Any]) -> None:
        for field, value in values.items():
            setattr(master, field, value)
        self.session.flush()

    def _repoint_references(self, entity_type: EntityType, master_id: int, loser_id: int):
        """Move every row pointing at the loser; returns (moved ids, dropped links)."""

        moved: Dict[str, List[int]] = {}
        dropped: List[Dict[str, Any]] = []

        if entity_type == EntityType.CONTACT:
            # A project already linked to the master keeps the master's link.
            master_projects = {
                project_id
                for (project_id,) in self.session.query(ContactProject.project_id).filter(
                    ContactProject.contact_id == master_id
                )
            }
            duplicates = (
                self.session.query(ContactProject)
                .filter(ContactProject.contact_id == loser_id, ContactProject.project_id.in_(master_projects))
                .all()
            )
            for link in duplicates:
                dropped.append({"project_id": link.project_id, "role_in_project": link.role_in_project})
                self.session.delete(link)
            self.session.flush()

        for name, (model, column_name) in RELATIONS[entity_type].items():
            column = getattr(model, column_name)
            ids = [row_id for (row_id,) in self.session.query(model.id).filter(column == loser_id)]
            if ids:
                self.session.query(model).filter(model.id.in_(ids)).update(
                    {column: master_id}, synchronize_session="fetch"
                )
            moved[name] = ids
        self.session.flush()
        return moved, dropped

    def _delete_loser(self, loser: Any) -> None:
        self.session.delete(loser)
        self.session.flush()

    # ------------------------------------------------------------------
    # Undo steps
    # ------------------------------------------------------------------

    def _check_undo_possible(self, entity_type: EntityType, model, master: Any, snapshot: Mapping[str, Any]) -> None:
        if master is None:
            raise UndoRefused("The surviving record no longer exists")
        if self.session.get(model, snapshot["loser_id"]) is not None:
            raise UndoRefused(f"Record id {snapshot['loser_id']} is in use again")
        if self._field_values(entity_type, master) != snapshot.get("master_after"):
            raise UndoRefused("The surviving record was edited after the merge")

        for name, (relation_model, column_name) in RELATIONS[entity_type].items():
            ids = snapshot.get("moved", {}).get(name, [])
            if not ids:
                continue
            column = getattr(relation_model, column_name)
            still_moved = (
                self.session.query(relation_model.id)
                .filter(relation_model.id.in_(ids), column == master.id)
                .count()
            )
            if still_moved != len(ids):
                raise UndoRefused(f"Moved {name} were changed after the merge")

        if entity_type == EntityType.CONTACT:
            organization_id = snapshot["loser"].get("organization_id")
            if organization_id is not None and self.session.get(ENTITY_MODELS[EntityType.ORGANIZATION], organization_id) is None:
                raise UndoRefused(f"Organization {organization_id} of the merged contact no longer exists")

    def _execute_undo(
        self,
        duplicate_set: DuplicateSet,
        model,
        master: Any,
        snapshot: Mapping[str, Any],
        reviewer_id: int | None,
    ) -> None:
        entity_type = duplicate_set.entity_type
        loser_id = snapshot["loser_id"]

        self.session.add(restore_columns(model, snapshot["loser"]))
        self.session.flush()

        master_before = snapshot["master_before"]
        self._apply_field_values(master, self._load_field_values(entity_type, model, master_before))

        for name, (relation_model, column_name) in RELATIONS[entity_type].items():
            ids = snapshot["moved"].get(name, [])
            if ids:
                column = getattr(relation_model, column_name)
                self.session.query(relation_model).filter(relation_model.id.in_(ids)).update(
                    {column: loser_id}, synchronize_session="fetch"
                )
        for link in snapshot.get("dropped_contact_projects", []):
            self.session.add(
                ContactProject(contact_id=loser_id, project_id=link["project_id"], role_in_project=link["role_in_project"])
            )
        self.session.flush()

        if entity_type == EntityType.CONTACT:
            self.ratings.recompute_contacts_and_organizations(
                [master.id, loser_id],
                [master.organization_id, snapshot["loser"].get("organization_id")],
            )
        else:
            self.ratings.recompute_organization_rating(master.id)
            self.ratings.recompute_organization_rating(loser_id)

        self.ledger.transition(
            duplicate_set.id,
            expected=DuplicateStatus.MERGED,
            target=DuplicateStatus.PENDING,
            reviewer_id=reviewer_id,
            merge_snapshot=None,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _field_values(entity_type: EntityType, record: Any) -> Dict[str, Any]:
        return {descriptor.field: _dump(get_value(record, descriptor.field)) for descriptor in descriptors_for(entity_type)}

    @staticmethod
    def _load_field_values(entity_type: EntityType, model, values: Mapping[str, Any]) -> Dict[str, Any]:
        columns = model.__table__.columns
        return {
            descriptor.field: _load(columns[descriptor.field], values.get(descriptor.field))
            for descriptor in descriptors_for(entity_type)
        }

    @staticmethod
    def _coerce_value(descriptor, value: Any) -> Any:
        if descriptor.type == "array":
            if not isinstance(value, (list, tuple)):
                raise ValidationFailed(f"{descriptor.label} must be a list")
            return list(value)
        if descriptor.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationFailed(f"{descriptor.label} must be a number")
            return value
        if descriptor.type == "date":
            if isinstance(value, date):
                return value
            try:
                return date.fromisoformat(str(value))
            except ValueError as exc:
                raise ValidationFailed(f"{descriptor.label} must be an ISO date") from exc
        if not isinstance(value, str):
            raise ValidationFailed(f"{descriptor.label} must be text")
        return value

    @staticmethod
    def _audit(action: str, reviewer_id: int | None, details: Dict[str, Any]) -> None:
        AdminLog.log_action(admin_user_id=reviewer_id, action=action, details=json.dumps(details))


__all__ = [
    "FieldResolution",
    "MergeService",
    "RESOLUTION_SOURCES",
    "coerce_resolutions",
    "merge_notes",
]
