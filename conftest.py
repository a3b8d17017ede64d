# conftest.py

import os
import tempfile

import pytest
from werkzeug.security import generate_password_hash

# Set testing environment BEFORE importing app to prevent database corruption
# This ensures app.py uses TestingConfig when imported
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app
from flask_app.models import (
    Contact,
    Organization,
    Permission,
    Role,
    RolePermission,
    User,
    db,
)


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    import uuid

    # Create a unique temporary database file for each test
    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        flask_app.config.update(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
                "SECRET_KEY": "test-secret-key-for-testing-only",
                "ENABLE_FILE_LOGGING": False,
                "ENABLE_CONSOLE_LOGGING": False,
                "DEDUPE_VALIDATOR_URL": None,
                "DEDUPE_SETTINGS_PATH": None,
            }
        )

        with flask_app.app_context():
            # Drop any existing tables to ensure clean state
            db.drop_all()
            db.create_all()
            yield flask_app
            db.session.remove()
            db.drop_all()
    finally:
        # Always close and remove the temporary database file, even on error
        try:
            os.close(db_fd)
        except OSError:
            pass
        try:
            if os.path.exists(temp_db):
                os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def test_user():
    """Create a test user fixture"""
    user = User(
        username="testuser",
        email="test@example.com",
        password_hash=generate_password_hash("testpass123"),
        first_name="Test",
        last_name="User",
        is_active=True,
        is_super_admin=False,
    )
    return user


@pytest.fixture
def admin_user():
    """Create an admin user fixture"""
    user = User(
        username="admin",
        email="admin@example.com",
        password_hash=generate_password_hash("adminpass123"),
        first_name="Admin",
        last_name="User",
        is_super_admin=True,
    )
    return user


@pytest.fixture
def reviewer_role(app):
    """A role holding the manage_reviews permission only"""
    role = Role(name="reviewer", display_name="Reviewer", description="Can review contacts")
    permission = Permission(name="manage_reviews", display_name="Manage Reviews")
    db.session.add_all([role, permission])
    db.session.flush()
    db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db.session.commit()
    return role


@pytest.fixture
def reviewer_user(reviewer_role):
    user = User(
        username="reviewer",
        email="reviewer@example.com",
        password_hash=generate_password_hash("reviewpass123"),
        first_name="Rita",
        last_name="Reviewer",
        role_id=reviewer_role.id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def _login(client, user):
    with client.session_transaction() as session:
        session["_user_id"] = str(user.id)
        session["_fresh"] = True


@pytest.fixture
def logged_in_user(client, test_user, app):
    """Fixture that logs in a user without special permissions and returns the client"""
    db.session.add(test_user)
    db.session.commit()
    _login(client, test_user)
    yield client, test_user


@pytest.fixture
def logged_in_admin(client, admin_user, app):
    """Fixture that logs in an admin user and returns the client"""
    db.session.add(admin_user)
    db.session.commit()
    _login(client, admin_user)
    yield client, admin_user


@pytest.fixture
def logged_in_reviewer(client, reviewer_user, app):
    _login(client, reviewer_user)
    yield client, reviewer_user


@pytest.fixture
def make_organization(app):
    """Factory for persisted organizations"""

    def _make(name, **fields):
        org = Organization(name=name, **fields)
        db.session.add(org)
        db.session.commit()
        return org

    return _make


@pytest.fixture
def make_contact(app):
    """Factory for persisted contacts"""

    def _make(first_name, last_name=None, **fields):
        contact = Contact(first_name=first_name, last_name=last_name, **fields)
        db.session.add(contact)
        db.session.commit()
        return contact

    return _make
