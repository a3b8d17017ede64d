# flask_app/models/contact.py

from sqlalchemy import Index

from .base import BaseModel, db


class Contact(BaseModel):
    """A person, optionally attached to an organization."""

    __tablename__ = "contacts"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False, index=True)
    last_name = db.Column(db.String(100), nullable=True, index=True)

    phone = db.Column(db.String(50), nullable=True)
    phone_alt = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    email_alt = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(100), nullable=True)
    department = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    contact_types = db.Column(db.JSON, nullable=False, default=list)
    disciplines = db.Column(db.JSON, nullable=False, default=list)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    # Derived from individual reviews; maintained by RatingAggregator
    average_rating = db.Column(db.Float, nullable=True)
    review_count = db.Column(db.Integer, nullable=False, default=0)

    organization = db.relationship("Organization", foreign_keys=[organization_id])

    __table_args__ = (Index("idx_contact_name", "last_name", "first_name"),)

    def __repr__(self):
        return f"<Contact {self.display_name}>"

    @property
    def display_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
