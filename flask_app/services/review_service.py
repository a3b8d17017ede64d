# flask_app/services/review_service.py
"""
Review Service - create, edit and delete individual contact reviews
"""

from typing import Any, Dict, Mapping, Optional, Tuple

from flask import current_app

from flask_app.dedupe.errors import NotFound, ValidationFailed
from flask_app.dedupe.ratings import RatingAggregator
from flask_app.models import Contact, IndividualReview, Project, db

DEFAULT_MIN_RATED_CRITERIA = 6
MIN_SCORE = 1
MAX_SCORE = 5


def score_ratings(ratings: Any, min_rated: int) -> Tuple[Dict[str, int], float]:
    """
    Validate a criterion -> score mapping and return it with its mean.

    A score of 0 (or a missing/None value) means the criterion was not rated
    and is left out of the average.
    """

    if not isinstance(ratings, Mapping):
        raise ValidationFailed("ratings must be an object of criterion -> score")

    cleaned: Dict[str, int] = {}
    for criterion, score in ratings.items():
        if not isinstance(criterion, str) or not criterion.strip():
            raise ValidationFailed("Rating criteria must be non-empty strings")
        if score is None or score == 0:
            continue
        if isinstance(score, bool) or not isinstance(score, int):
            raise ValidationFailed(f"Rating for {criterion} must be an integer")
        if score < MIN_SCORE or score > MAX_SCORE:
            raise ValidationFailed(f"Rating for {criterion} must be between {MIN_SCORE} and {MAX_SCORE}")
        cleaned[criterion.strip()] = score

    if len(cleaned) < min_rated:
        raise ValidationFailed(f"At least {min_rated} criteria must be rated; got {len(cleaned)}")
    return cleaned, sum(cleaned.values()) / len(cleaned)


class ReviewService:
    """Service for managing individual reviews and keeping ratings current"""

    def __init__(self, session=None, *, ratings: Optional[RatingAggregator] = None, min_rated: Optional[int] = None):
        self.session = session or db.session
        self.ratings = ratings or RatingAggregator(self.session)
        self._min_rated = min_rated

    @property
    def min_rated(self) -> int:
        if self._min_rated is not None:
            return self._min_rated
        return int(current_app.config.get("REVIEW_MIN_RATED_CRITERIA", DEFAULT_MIN_RATED_CRITERIA))

    def create_review(
        self,
        reviewer_id: int,
        contact_id: int,
        project_id: Optional[int],
        ratings: Any,
        notes: Optional[str] = None,
    ) -> IndividualReview:
        contact = self.session.get(Contact, contact_id)
        if contact is None:
            raise NotFound(f"Contact {contact_id} not found")
        if project_id is not None and self.session.get(Project, project_id) is None:
            raise NotFound(f"Project {project_id} not found")

        existing = self.session.query(IndividualReview.id).filter(
            IndividualReview.reviewer_id == reviewer_id,
            IndividualReview.contact_id == contact_id,
            IndividualReview.project_id.is_(None) if project_id is None else IndividualReview.project_id == project_id,
        )
        if existing.first() is not None:
            raise ValidationFailed("You have already reviewed this contact for this project")

        cleaned, average = score_ratings(ratings, self.min_rated)
        review = IndividualReview(
            reviewer_id=reviewer_id,
            contact_id=contact_id,
            project_id=project_id,
            ratings=cleaned,
            avg_rating=average,
            general_notes=notes,
        )
        self.session.add(review)
        self.session.flush()
        self._refresh_ratings(contact)

        current_app.logger.info(
            f"Review {review.id} created for contact {contact_id}",
            extra={"review_id": review.id, "contact_id": contact_id, "reviewer_id": reviewer_id},
        )
        return review

    def update_review(self, review_id: int, ratings: Any = None, notes: Optional[str] = None) -> IndividualReview:
        """Replace the ratings and/or notes of a review. ``None`` leaves a part unchanged."""
        review = self._get_review(review_id)
        if ratings is not None:
            review.ratings, review.avg_rating = score_ratings(ratings, self.min_rated)
        if notes is not None:
            review.general_notes = notes
        self.session.flush()
        self._refresh_ratings(self.session.get(Contact, review.contact_id))
        return review

    def delete_review(self, review_id: int) -> None:
        review = self._get_review(review_id)
        contact_id = review.contact_id
        self.session.delete(review)
        self.session.flush()
        self._refresh_ratings(self.session.get(Contact, contact_id))
        current_app.logger.info(f"Review {review_id} deleted", extra={"review_id": review_id})

    def _get_review(self, review_id: int) -> IndividualReview:
        review = self.session.get(IndividualReview, review_id)
        if review is None:
            raise NotFound(f"Review {review_id} not found")
        return review

    def _refresh_ratings(self, contact: Optional[Contact]) -> None:
        if contact is None:
            return
        self.ratings.recompute_contacts_and_organizations([contact.id], [contact.organization_id])

    @staticmethod
    def to_dict(review: IndividualReview) -> Dict[str, Any]:
        return {
            "id": review.id,
            "reviewer_id": review.reviewer_id,
            "contact_id": review.contact_id,
            "project_id": review.project_id,
            "ratings": review.ratings or {},
            "avg_rating": review.avg_rating,
            "general_notes": review.general_notes,
            "created_at": review.created_at.isoformat() if review.created_at else None,
        }
