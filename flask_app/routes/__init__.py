# flask_app/routes/__init__.py
"""
Application routes package
"""

from .admin_duplicates import register_admin_duplicate_routes
from .reviews import register_review_routes


def init_routes(app):
    """Initialize all application routes"""
    register_admin_duplicate_routes(app)
    register_review_routes(app)
