"""
SQLAlchemy models for the duplicate review ledger.

A ``DuplicateSet`` references two rows of the same entity table by id. It
does not own or copy the entity data, apart from the pre-merge snapshot kept
so a merge can be undone.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class EntityType(str, enum.Enum):
    """Entity tables the duplicate engine knows how to scan and merge."""

    ORGANIZATION = "organization"
    CONTACT = "contact"


class DuplicateStatus(str, enum.Enum):
    """Review lifecycle for a duplicate set."""

    PENDING = "pending"
    MERGED = "merged"
    REJECTED = "rejected"
    SKIPPED = "skipped"


OPEN_STATUSES = (DuplicateStatus.PENDING, DuplicateStatus.MERGED)


class MatchType(str, enum.Enum):
    """Signal that flagged the pair, in descending priority."""

    EXACT_BUSINESS_ID = "exact_business_id"
    EXACT_PHONE = "exact_phone"
    EXACT_EMAIL = "exact_email"
    NAME_SIMILARITY = "name_similarity"


class DuplicateSet(BaseModel):
    """A candidate pair of records awaiting (or past) human review."""

    __tablename__ = "duplicate_sets"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, name="duplicate_entity_type_enum"),
        nullable=False,
        index=True,
    )
    primary_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    secondary_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    match_type: Mapped[MatchType] = mapped_column(
        Enum(MatchType, name="duplicate_match_type_enum"),
        nullable=False,
    )
    score: Mapped[int] = mapped_column(db.Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    status: Mapped[DuplicateStatus] = mapped_column(
        Enum(DuplicateStatus, name="duplicate_status_enum"),
        nullable=False,
        default=DuplicateStatus.PENDING,
        index=True,
    )
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    merge_snapshot: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Pre-merge state of the absorbed record and moved relations, used by undo.",
    )

    reviewed_by_user = relationship("User", foreign_keys=[reviewed_by_user_id])

    __table_args__ = (
        Index("idx_duplicate_sets_pair", "entity_type", "primary_id", "secondary_id"),
        Index("idx_duplicate_sets_status_score", "status", "score"),
    )

    def __repr__(self):
        return (
            f"<DuplicateSet {self.id} {self.entity_type.value if self.entity_type else None} "
            f"{self.primary_id}/{self.secondary_id} {self.status.value if self.status else None}>"
        )

    def involves(self, record_id: int) -> bool:
        return record_id in (self.primary_id, self.secondary_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "primary_id": self.primary_id,
            "secondary_id": self.secondary_id,
            "match_type": self.match_type.value,
            "score": self.score,
            "reason": self.reason,
            "status": self.status.value,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "can_undo": self.status == DuplicateStatus.MERGED and bool(self.merge_snapshot),
        }
