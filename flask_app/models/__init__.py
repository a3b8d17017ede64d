# flask_app/models/__init__.py
"""
Database models package
"""

from .admin import AdminLog
from .base import BaseModel, db
from .contact import Contact
from .duplicates import OPEN_STATUSES, DuplicateSet, DuplicateStatus, EntityType, MatchType
from .organization import Organization
from .project import ContactProject, Project
from .review import IndividualReview
from .role import Permission, Role, RolePermission
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    "AdminLog",
    "Role",
    "Permission",
    "RolePermission",
    "Organization",
    "Contact",
    "Project",
    "ContactProject",
    "IndividualReview",
    # Duplicate review ledger
    "DuplicateSet",
    "DuplicateStatus",
    "EntityType",
    "MatchType",
    "OPEN_STATUSES",
]
