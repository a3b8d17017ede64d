from flask_app.models import DuplicateSet


def test_scan_command_reports_each_entity_type(runner, make_organization, make_contact):
    make_organization("Acme Ltd")
    make_organization("acme")
    make_contact("Noa", "Katz", email="noa@example.com")
    make_contact("Noa", "Katz", email="NOA@example.com")

    result = runner.invoke(args=["dedupe", "scan"])

    assert result.exit_code == 0, result.output
    assert "organizations: scanned=2 candidates=1 saved=1" in result.output
    assert "contacts: scanned=2 candidates=1 saved=1" in result.output
    assert "Found 2 new duplicates" in result.output
    assert DuplicateSet.query.count() == 2


def test_scan_command_single_entity_with_json(runner, make_organization):
    make_organization("Acme Ltd")
    make_organization("acme")

    result = runner.invoke(args=["dedupe", "scan", "--entity", "organization", "--summary-json"])

    assert result.exit_code == 0, result.output
    assert "contacts:" not in result.output
    assert '"organizations"' in result.output


def test_scan_command_semantic_without_validator(runner):
    result = runner.invoke(args=["dedupe", "scan", "--semantic"])
    assert result.exit_code == 0, result.output
    assert "No DEDUPE_VALIDATOR_URL configured" in result.output


def test_scan_command_rejects_bad_settings(runner, app, monkeypatch):
    monkeypatch.setitem(app.config, "DEDUPE_PERSIST_THRESHOLD", 500)
    result = runner.invoke(args=["dedupe", "scan"])
    assert result.exit_code != 0
    assert "persistence_threshold" in result.output


def test_scan_command_rejects_unknown_entity(runner):
    result = runner.invoke(args=["dedupe", "scan", "--entity", "vendor"])
    assert result.exit_code != 0
