# flask_app/models/review.py

from .base import BaseModel, db


class IndividualReview(BaseModel):
    """A reviewer's rating of one contact, optionally in the context of a project."""

    __tablename__ = "individual_reviews"

    id = db.Column(db.Integer, primary_key=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=True, index=True)
    ratings = db.Column(db.JSON, nullable=False, default=dict)  # criterion -> 1..5
    avg_rating = db.Column(db.Float, nullable=False)
    general_notes = db.Column(db.Text, nullable=True)

    reviewer = db.relationship("User", foreign_keys=[reviewer_id])
    contact = db.relationship("Contact", foreign_keys=[contact_id])
    project = db.relationship("Project", foreign_keys=[project_id])

    def __repr__(self):
        return f"<IndividualReview contact={self.contact_id} avg={self.avg_rating}>"
