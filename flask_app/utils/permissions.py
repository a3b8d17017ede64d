# flask_app/utils/permissions.py

from functools import wraps
from http import HTTPStatus

from flask import jsonify
from flask_login import current_user


def has_permission(user, permission_name):
    """Check if user has a specific permission through their role"""
    if not user or not user.is_authenticated:
        return False

    # Super admins have all permissions
    if user.is_super_admin:
        return True

    role = getattr(user, "role", None)
    return bool(role and role.has_permission(permission_name))


def permission_required(permission_name):
    """
    Decorator to require a specific permission on JSON endpoints.

    Unauthenticated callers get 401, authenticated callers lacking the
    permission get 403.
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"error": "Authentication required."}), HTTPStatus.UNAUTHORIZED

            # Super admins bypass permission checks
            if current_user.is_super_admin:
                return f(*args, **kwargs)

            if not has_permission(current_user, permission_name):
                return jsonify({"error": "You do not have permission to perform this action."}), HTTPStatus.FORBIDDEN

            return f(*args, **kwargs)

        return decorated_function

    return decorator
