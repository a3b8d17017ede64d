import json
import logging

import pytest

from config.monitoring import DedupeMonitoring
from config.validation import validate_environment
from flask_app.models import AdminLog, Permission, Role, RolePermission, User, db
from flask_app.utils.logging_config import JsonFormatter, setup_logging
from flask_app.utils.permissions import has_permission


def test_validation_skipped_outside_production():
    assert validate_environment("development") == (True, [])


def test_production_validation_reports_problems(monkeypatch, tmp_path):
    monkeypatch.setenv("SECRET_KEY", "your-secret-key")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DEDUPE_VALIDATOR_URL", "ftp://judge")
    monkeypatch.setenv("DEDUPE_VALIDATOR_TIMEOUT", "soon")
    monkeypatch.setenv("DEDUPE_SETTINGS_PATH", str(tmp_path / "missing.yaml"))

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert len(errors) == 5


def test_production_validation_passes(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a-long-random-secret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://records@db/records")
    monkeypatch.delenv("DEDUPE_VALIDATOR_URL", raising=False)
    monkeypatch.delenv("DEDUPE_VALIDATOR_TIMEOUT", raising=False)
    monkeypatch.delenv("DEDUPE_SETTINGS_PATH", raising=False)

    assert validate_environment("production") == (True, [])


def test_json_formatter_keeps_extra_fields():
    record = logging.LogRecord("records", logging.INFO, __file__, 1, "Merged %s", ("3",), None)
    record.set_id = 12
    payload = json.loads(JsonFormatter(app_name="records").format(record))

    assert payload["message"] == "Merged 3"
    assert payload["set_id"] == 12
    assert payload["app"] == "records"


def test_setup_logging_does_not_stack_handlers(app, monkeypatch, tmp_path):
    monkeypatch.setitem(app.config, "ENABLE_CONSOLE_LOGGING", True)
    monkeypatch.setitem(app.config, "ENABLE_FILE_LOGGING", True)
    monkeypatch.setitem(app.config, "LOG_DIR", str(tmp_path))
    monkeypatch.setitem(app.config, "LOG_LEVEL", "DEBUG")

    setup_logging(app)
    setup_logging(app)

    ours = [h for h in app.logger.handlers if getattr(h, "_records_handler", False)]
    assert len(ours) == 2
    assert app.logger.level == logging.DEBUG
    assert (tmp_path / "app.log").exists()

    monkeypatch.setitem(app.config, "ENABLE_CONSOLE_LOGGING", False)
    monkeypatch.setitem(app.config, "ENABLE_FILE_LOGGING", False)
    setup_logging(app)
    assert not [h for h in app.logger.handlers if getattr(h, "_records_handler", False)]


def test_permissions_follow_role(app, test_user, admin_user):
    role = Role(name="dedupe_reviewer", display_name="Dedupe Reviewer")
    permission = Permission(name="manage_duplicates", display_name="Manage Duplicates")
    db.session.add_all([role, permission, admin_user])
    db.session.flush()
    db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
    test_user.role_id = role.id
    db.session.add(test_user)
    db.session.commit()

    user = db.session.get(User, test_user.id)
    assert has_permission(user, "manage_duplicates") is True
    assert has_permission(user, "manage_reviews") is False
    assert has_permission(admin_user, "anything") is True
    assert has_permission(None, "manage_duplicates") is False


def test_audit_failures_are_swallowed(app, monkeypatch):
    from sqlalchemy.exc import SQLAlchemyError

    def broken_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(db.session, "commit", broken_commit)
    assert AdminLog.log_action(admin_user_id=None, action="DUPLICATE_SCAN") is False


@pytest.mark.parametrize("operation", ["merge", "undo", "rejected"])
def test_merge_metrics_accept_operations(operation):
    DedupeMonitoring.record_merge("contact", operation, "success", 0.2)
    DedupeMonitoring.record_merge("contact", operation, "failure")


def test_unknown_route_returns_json_404(client):
    response = client.get("/no/such/page")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Not found."}
