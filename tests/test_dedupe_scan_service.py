from dataclasses import replace

import pytest

from config.dedupe import DEFAULT_SETTINGS
from flask_app.dedupe import scan_service
from flask_app.dedupe.errors import ExternalValidatorUnavailable
from flask_app.dedupe.scan_service import ScanOrchestrator
from flask_app.dedupe.validator import ValidatorVerdict
from flask_app.models import AdminLog, DuplicateSet, DuplicateStatus, EntityType, MatchType, db


class StubValidator:
    """Returns a fixed verdict and remembers what it was asked."""

    def __init__(self, verdict=None, error=None):
        self.verdict = verdict
        self.error = error
        self.calls = []

    def validate(self, candidate, record_a, record_b):
        self.calls.append((candidate, record_a, record_b))
        if self.error is not None:
            raise self.error
        return self.verdict


LOOSE = replace(DEFAULT_SETTINGS, name_similarity_threshold=0.75)


@pytest.fixture
def similar_contacts(make_contact):
    # "dana levin" vs "dina levyn": two edits over ten characters, score 80
    return make_contact("Dana", "Levin"), make_contact("Dina", "Levyn")


def test_scan_saves_new_sets(make_organization):
    make_organization("Acme Ltd")
    make_organization("acme")

    result = ScanOrchestrator().scan([EntityType.ORGANIZATION])

    assert result.total_saved == 1
    assert result.message == "Found 1 new duplicate"
    saved = DuplicateSet.query.one()
    assert saved.match_type == MatchType.NAME_SIMILARITY
    assert saved.score == 100
    assert saved.status == DuplicateStatus.PENDING
    assert saved.reason == "Similar name (100% match)"


def test_rescan_is_idempotent(make_organization, make_contact):
    make_organization("Acme Ltd", phone="03-5551234")
    make_organization("Acme", phone="035551234")
    make_contact("Noa", "Katz", email="noa@example.com")
    make_contact("Noa", "Katz", email="noa@example.com")

    first = ScanOrchestrator().scan(list(EntityType))
    second = ScanOrchestrator().scan(list(EntityType))

    assert first.total_saved == 2
    assert second.total_saved == 0
    assert second.summaries[EntityType.ORGANIZATION].skipped_existing == 1
    assert DuplicateSet.query.count() == 2


def test_rejected_pair_is_detected_again(make_organization):
    make_organization("Acme Ltd")
    make_organization("acme")
    ScanOrchestrator().scan([EntityType.ORGANIZATION])
    duplicate_set = DuplicateSet.query.one()
    duplicate_set.status = DuplicateStatus.REJECTED
    db.session.commit()

    result = ScanOrchestrator().scan([EntityType.ORGANIZATION])

    assert result.total_saved == 1
    assert DuplicateSet.query.count() == 2


def test_scores_below_threshold_are_not_saved(similar_contacts):
    strict = replace(LOOSE, persistence_threshold=85)
    result = ScanOrchestrator(settings=strict).scan([EntityType.CONTACT])

    assert result.total_saved == 0
    assert result.summaries[EntityType.CONTACT].below_threshold == 1
    assert DuplicateSet.query.count() == 0


def test_validator_rejection_discards_candidate(similar_contacts):
    validator = StubValidator(ValidatorVerdict(is_duplicate=False, score=40, reason="Different people"))

    result = ScanOrchestrator(settings=LOOSE, validator=validator).scan(
        [EntityType.CONTACT], use_semantic_validation=True
    )

    assert len(validator.calls) == 1
    candidate, record_a, record_b = validator.calls[0]
    assert candidate.algorithm_score == 80
    assert record_a["first_name"] == "Dana"
    assert record_b["last_name"] == "Levyn"
    assert result.summaries[EntityType.CONTACT].discarded == 1
    assert DuplicateSet.query.count() == 0


def test_validator_confirmation_overrides_score_and_reason(similar_contacts):
    validator = StubValidator(ValidatorVerdict(is_duplicate=True, score=95, reason="Typo in both names"))

    ScanOrchestrator(settings=LOOSE, validator=validator).scan([EntityType.CONTACT], use_semantic_validation=True)

    saved = DuplicateSet.query.one()
    assert saved.score == 95
    assert saved.reason == "Typo in both names"


def test_validator_is_skipped_for_exact_matches(make_contact):
    make_contact("Avi", "Ron", phone="+972-50-1234567")
    make_contact("Moshe", "Tal", phone="0501234567")
    validator = StubValidator(ValidatorVerdict(is_duplicate=False, score=0, reason=""))

    result = ScanOrchestrator(validator=validator).scan([EntityType.CONTACT], use_semantic_validation=True)

    assert validator.calls == []
    assert result.total_saved == 1
    assert DuplicateSet.query.one().match_type == MatchType.EXACT_PHONE


def test_validator_outage_falls_back_to_algorithmic_score(similar_contacts):
    validator = StubValidator(error=ExternalValidatorUnavailable("timed out"))

    result = ScanOrchestrator(settings=LOOSE, validator=validator).scan(
        [EntityType.CONTACT], use_semantic_validation=True
    )

    summary = result.summaries[EntityType.CONTACT]
    assert summary.validator_errors == 1
    assert summary.saved == 1
    assert DuplicateSet.query.one().score == 80


def test_unexpected_validator_error_falls_back_to_algorithmic_score(similar_contacts):
    validator = StubValidator(error=TimeoutError("validator hung"))

    result = ScanOrchestrator(settings=LOOSE, validator=validator).scan(
        [EntityType.CONTACT], use_semantic_validation=True
    )

    summary = result.summaries[EntityType.CONTACT]
    assert summary.error is None
    assert summary.validator_errors == 1
    assert summary.saved == 1
    assert DuplicateSet.query.one().score == 80


def test_result_reports_every_entity_type(make_organization):
    make_organization("Acme Ltd")
    make_organization("acme")

    result = ScanOrchestrator().scan([EntityType.ORGANIZATION])

    payload = result.to_dict()
    assert set(payload) == {"organizations", "contacts"}
    assert payload["organizations"]["saved"] == 1
    assert payload["contacts"] == {
        "scanned": 0,
        "candidates": 0,
        "saved": 0,
        "skipped_existing": 0,
        "discarded": 0,
        "below_threshold": 0,
        "validator_errors": 0,
        "error": None,
    }


def test_validator_unused_unless_requested(similar_contacts):
    validator = StubValidator(ValidatorVerdict(is_duplicate=False, score=0, reason=""))
    ScanOrchestrator(settings=LOOSE, validator=validator).scan([EntityType.CONTACT])
    assert validator.calls == []
    assert DuplicateSet.query.count() == 1


def test_failure_in_one_entity_type_does_not_stop_others(make_organization, make_contact, monkeypatch):
    make_organization("Acme Ltd")
    make_organization("acme")
    make_contact("Noa", "Katz", email="noa@example.com")
    make_contact("Noa", "Katz", email="noa@example.com")

    real_loader = scan_service.load_match_records

    def flaky_loader(entity_type, session=None):
        if entity_type == EntityType.ORGANIZATION:
            raise RuntimeError("organizations table locked")
        return real_loader(entity_type, session)

    monkeypatch.setattr(scan_service, "load_match_records", flaky_loader)

    result = ScanOrchestrator().scan([EntityType.ORGANIZATION, EntityType.CONTACT])

    assert result.summaries[EntityType.ORGANIZATION].error == "organizations table locked"
    assert result.summaries[EntityType.ORGANIZATION].saved == 0
    assert result.summaries[EntityType.CONTACT].saved == 1
    assert "scan failed for: organization" in result.message
    assert result.to_dict()["contacts"]["saved"] == 1


def test_scan_writes_audit_entry(make_organization):
    make_organization("Acme Ltd")
    make_organization("acme")

    ScanOrchestrator().scan([EntityType.ORGANIZATION], user_id=None)

    entry = AdminLog.query.filter_by(action="DUPLICATE_SCAN").one()
    assert '"total_saved": 1' in entry.details
