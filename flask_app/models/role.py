# flask_app/models/role.py

from .base import BaseModel, db


class Role(BaseModel):
    """Model for user roles in the system"""

    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)

    permissions = db.relationship("RolePermission", back_populates="role", cascade="all, delete-orphan")
    users = db.relationship("User", back_populates="role")

    def __repr__(self):
        return f"<Role {self.name}>"

    def has_permission(self, permission_name):
        """Check if role has a specific permission"""
        return any(rp.permission.name == permission_name for rp in self.permissions)


class Permission(BaseModel):
    """Model for granular permissions"""

    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    roles = db.relationship("RolePermission", back_populates="permission", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Permission {self.name}>"


class RolePermission(BaseModel):
    """Junction table for Role and Permission many-to-many relationship"""

    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    permission_id = db.Column(db.Integer, db.ForeignKey("permissions.id"), nullable=False)

    role = db.relationship("Role", back_populates="permissions")
    permission = db.relationship("Permission", back_populates="roles")

    __table_args__ = (db.UniqueConstraint("role_id", "permission_id", name="_role_permission_uc"),)

    def __repr__(self):
        return f"<RolePermission role={self.role_id} permission={self.permission_id}>"
