"""
Duplicate set ledger: persistence and lifecycle of candidate pairs.

Invariant: for one entity type an unordered pair of ids has at most one set
whose status is pending or merged. ``find_open_set`` is the guard the scan
uses before creating a row. Status transitions are conditional UPDATEs keyed
on the expected current status, so two reviewers racing on the same set
cannot both win.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import and_, func, or_

from flask_app.dedupe.conflicts import ConflictField, identify_conflicts, serialize_record
from flask_app.dedupe.errors import AlreadyResolved, NotFound, ValidationFailed
from flask_app.models import (
    OPEN_STATUSES,
    Contact,
    DuplicateSet,
    DuplicateStatus,
    EntityType,
    Organization,
    db,
)

ENTITY_MODELS = {
    EntityType.ORGANIZATION: Organization,
    EntityType.CONTACT: Contact,
}

REVIEWER_STATUSES = (DuplicateStatus.REJECTED, DuplicateStatus.SKIPPED)
DELETED_LABEL = "[deleted]"


def parse_entity_type(value: Any) -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationFailed(f"Unknown entity type: {value!r}") from exc


def parse_status(value: Any) -> DuplicateStatus:
    if isinstance(value, DuplicateStatus):
        return value
    try:
        return DuplicateStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationFailed(f"Unknown status: {value!r}") from exc


@dataclass
class SetDetails:
    """A duplicate set with both records materialized and their conflicts."""

    duplicate_set: DuplicateSet
    primary: Any
    secondary: Any
    conflicts: List[ConflictField] = field(default_factory=list)

    @property
    def records_missing(self) -> bool:
        return self.primary is None or self.secondary is None

    def to_dict(self) -> Dict[str, Any]:
        entity_type = self.duplicate_set.entity_type
        return {
            "set": self.duplicate_set.to_dict(),
            "primary": serialize_record(entity_type, self.primary),
            "secondary": serialize_record(entity_type, self.secondary),
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "records_missing": self.records_missing,
        }


class DuplicateLedger:
    """CRUD and lifecycle operations over ``DuplicateSet`` rows."""

    def __init__(self, session=None):
        self.session = session or db.session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_open_set(self, entity_type: EntityType, id_a: int, id_b: int) -> DuplicateSet | None:
        """Return the pending or merged set covering ``{id_a, id_b}``, if any."""

        return (
            self.session.query(DuplicateSet)
            .filter(
                DuplicateSet.entity_type == entity_type,
                DuplicateSet.status.in_(OPEN_STATUSES),
                or_(
                    and_(DuplicateSet.primary_id == id_a, DuplicateSet.secondary_id == id_b),
                    and_(DuplicateSet.primary_id == id_b, DuplicateSet.secondary_id == id_a),
                ),
            )
            .first()
        )

    def get_set(self, set_id: int) -> DuplicateSet:
        duplicate_set = self.session.get(DuplicateSet, set_id)
        if duplicate_set is None:
            raise NotFound(f"Duplicate set {set_id} not found")
        return duplicate_set

    def load_records(self, duplicate_set: DuplicateSet) -> tuple[Any, Any]:
        """Fetch both records; a side that no longer exists comes back as None."""

        model = ENTITY_MODELS[duplicate_set.entity_type]
        return (
            self.session.get(model, duplicate_set.primary_id),
            self.session.get(model, duplicate_set.secondary_id),
        )

    def get_details(self, set_id: int) -> SetDetails:
        duplicate_set = self.get_set(set_id)
        primary, secondary = self.load_records(duplicate_set)
        return SetDetails(
            duplicate_set=duplicate_set,
            primary=primary,
            secondary=secondary,
            conflicts=identify_conflicts(duplicate_set.entity_type, primary, secondary),
        )

    def list_sets(
        self,
        *,
        status: DuplicateStatus | None = DuplicateStatus.PENDING,
        entity_type: EntityType | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[List[Dict[str, Any]], int]:
        """
        Return serialized sets, highest score first, with record names attached.

        Names are looked up with one query per entity type; a record that no
        longer exists is labelled ``[deleted]``.
        """

        query = self.session.query(DuplicateSet)
        if status is not None:
            query = query.filter(DuplicateSet.status == status)
        if entity_type is not None:
            query = query.filter(DuplicateSet.entity_type == entity_type)

        total = query.count()
        rows = (
            query.order_by(DuplicateSet.score.desc(), DuplicateSet.created_at.desc(), DuplicateSet.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        names = self._names_for(rows)
        items = []
        for row in rows:
            payload = row.to_dict()
            lookup = names.get(row.entity_type, {})
            payload["primary_name"] = lookup.get(row.primary_id, DELETED_LABEL)
            payload["secondary_name"] = lookup.get(row.secondary_id, DELETED_LABEL)
            items.append(payload)
        return items, total

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in DuplicateStatus}
        rows = (
            self.session.query(DuplicateSet.status, func.count(DuplicateSet.id))
            .group_by(DuplicateSet.status)
            .all()
        )
        for status, count in rows:
            counts[status.value] = int(count)
        return counts

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_set(self, candidate, *, score: int, reason: str | None) -> DuplicateSet:
        duplicate_set = DuplicateSet(
            entity_type=candidate.entity_type,
            primary_id=candidate.primary_id,
            secondary_id=candidate.secondary_id,
            match_type=candidate.match_type,
            score=int(score),
            reason=reason,
            status=DuplicateStatus.PENDING,
        )
        self.session.add(duplicate_set)
        self.session.flush()
        return duplicate_set

    def update_status(self, set_id: int, new_status: Any, reviewer_id: int | None) -> DuplicateSet:
        """
        Reject or skip a pending set.

        ``merged`` is refused here; only the merge engine sets it, inside the
        transaction that performs the merge.
        """

        target = parse_status(new_status)
        if target not in REVIEWER_STATUSES:
            raise ValidationFailed(
                f"Status must be one of {', '.join(s.value for s in REVIEWER_STATUSES)}; got {target.value}"
            )
        self.transition(
            set_id,
            expected=DuplicateStatus.PENDING,
            target=target,
            reviewer_id=reviewer_id,
        )
        return self.get_set(set_id)

    def transition(
        self,
        set_id: int,
        *,
        expected: DuplicateStatus,
        target: DuplicateStatus,
        reviewer_id: int | None,
        **values: Any,
    ) -> None:
        """
        Move ``set_id`` from ``expected`` to ``target`` atomically.

        Raises NotFound for an unknown id and AlreadyResolved when the row is
        not (or no longer) in ``expected``.
        """

        current = self.get_set(set_id)
        if current.status != expected:
            raise AlreadyResolved(f"Duplicate set {set_id} is already {current.status.value}")

        changes = {
            DuplicateSet.status: target,
            DuplicateSet.reviewed_by_user_id: reviewer_id,
            DuplicateSet.reviewed_at: datetime.now(timezone.utc),
        }
        for name, value in values.items():
            changes[getattr(DuplicateSet, name)] = value

        updated = (
            self.session.query(DuplicateSet)
            .filter(DuplicateSet.id == set_id, DuplicateSet.status == expected)
            .update(changes, synchronize_session="fetch")
        )
        if updated != 1:
            raise AlreadyResolved(f"Duplicate set {set_id} was resolved concurrently")
        self.session.flush()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _names_for(self, rows: List[DuplicateSet]) -> Dict[EntityType, Dict[int, str]]:
        wanted: Dict[EntityType, set] = {}
        for row in rows:
            wanted.setdefault(row.entity_type, set()).update((row.primary_id, row.secondary_id))

        names: Dict[EntityType, Dict[int, str]] = {}
        for entity_type, ids in wanted.items():
            model = ENTITY_MODELS[entity_type]
            records = self.session.query(model).filter(model.id.in_(ids)).all()
            names[entity_type] = {record.id: record.display_name for record in records}
        return names


__all__ = [
    "DELETED_LABEL",
    "DuplicateLedger",
    "ENTITY_MODELS",
    "REVIEWER_STATUSES",
    "SetDetails",
    "parse_entity_type",
    "parse_status",
]
