"""
Rolled-up rating statistics for contacts and organizations.

``average_rating`` and ``review_count`` on both models are derived values;
only this module writes them.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from sqlalchemy import func

from flask_app.models import Contact, IndividualReview, Organization, db


class RatingAggregator:
    """Recomputes derived rating columns inside the caller's transaction."""

    def __init__(self, session=None):
        self.session = session or db.session

    def recompute_contact_rating(self, contact_id: int) -> Tuple[float | None, int]:
        """
        Set a contact's rating to the plain mean of its reviews.

        Returns ``(average, count)``; ``(None, 0)`` when the contact has no
        reviews or no longer exists.
        """

        contact = self.session.get(Contact, contact_id)
        if contact is None:
            return None, 0

        average, count = (
            self.session.query(func.avg(IndividualReview.avg_rating), func.count(IndividualReview.id))
            .filter(IndividualReview.contact_id == contact_id)
            .one()
        )
        count = int(count or 0)
        contact.average_rating = float(average) if count and average is not None else None
        contact.review_count = count
        self.session.flush()
        return contact.average_rating, contact.review_count

    def recompute_organization_rating(self, organization_id: int) -> Tuple[float | None, int]:
        """
        Set an organization's rating to the review-weighted mean of its contacts.

        Each contact with reviews contributes its own average weighted by its
        review count. The organization's count is the sum of its contacts'
        counts.
        """

        organization = self.session.get(Organization, organization_id)
        if organization is None:
            return None, 0

        rows = (
            self.session.query(Contact.average_rating, Contact.review_count)
            .filter(Contact.organization_id == organization_id)
            .all()
        )
        weighted_sum = 0.0
        total_weight = 0
        total_count = 0
        for average, count in rows:
            count = int(count or 0)
            total_count += count
            if count > 0 and average is not None:
                weighted_sum += float(average) * count
                total_weight += count

        organization.average_rating = weighted_sum / total_weight if total_weight else None
        organization.review_count = total_count
        self.session.flush()
        return organization.average_rating, organization.review_count

    def recompute_contacts_and_organizations(
        self, contact_ids: Iterable[int], organization_ids: Iterable[int | None]
    ) -> None:
        """Contacts first, so organizations roll up fresh contact values."""

        for contact_id in dict.fromkeys(contact_ids):
            self.recompute_contact_rating(contact_id)
        for organization_id in dict.fromkeys(organization_ids):
            if organization_id is not None:
                self.recompute_organization_rating(organization_id)


__all__ = ["RatingAggregator"]
