# flask_app/models/organization.py

from .base import BaseModel, db


class Organization(BaseModel):
    """Model for representing client and partner organizations"""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    org_type = db.Column(db.String(100), nullable=True)

    # Contact information
    phone = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    website = db.Column(db.String(500), nullable=True)
    address = db.Column(db.Text, nullable=True)

    # Business/legal information
    business_id = db.Column(db.String(50), nullable=True, index=True)  # registration number
    employee_count = db.Column(db.Integer, nullable=True)
    founded_date = db.Column(db.Date, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    contact_types = db.Column(db.JSON, nullable=False, default=list)
    disciplines = db.Column(db.JSON, nullable=False, default=list)

    # Derived from contact reviews; maintained by RatingAggregator
    average_rating = db.Column(db.Float, nullable=True)
    review_count = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Organization {self.name}>"

    @property
    def display_name(self):
        return self.name or ""
