# flask_app/models/project.py

from .base import BaseModel, db


class Project(BaseModel):
    """Engagement that contacts work on, optionally for a client organization."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    project_number = db.Column(db.String(50), nullable=True, index=True)
    client_organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    client_organization = db.relationship("Organization", foreign_keys=[client_organization_id])

    def __repr__(self):
        return f"<Project {self.name}>"


class ContactProject(BaseModel):
    """Junction table linking contacts to the projects they worked on"""

    __tablename__ = "contact_projects"

    id = db.Column(db.Integer, primary_key=True)
    contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    role_in_project = db.Column(db.String(100), nullable=True)

    contact = db.relationship("Contact", foreign_keys=[contact_id])
    project = db.relationship("Project", foreign_keys=[project_id])

    __table_args__ = (db.UniqueConstraint("contact_id", "project_id", name="_contact_project_uc"),)

    def __repr__(self):
        return f"<ContactProject contact={self.contact_id} project={self.project_id}>"
