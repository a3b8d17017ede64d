import pytest

from flask_app.dedupe.candidates import DuplicateCandidate
from flask_app.dedupe.ledger import DuplicateLedger
from flask_app.models import Contact, DuplicateSet, DuplicateStatus, EntityType, MatchType, db


def _open_set(entity_type, first, second, score=90):
    candidate = DuplicateCandidate(
        entity_type=entity_type,
        primary_id=first.id,
        secondary_id=second.id,
        match_type=MatchType.NAME_SIMILARITY,
        algorithm_score=score,
    )
    duplicate_set = DuplicateLedger().create_set(candidate, score=score, reason="Similar name")
    db.session.commit()
    return duplicate_set.id


@pytest.fixture
def contact_set(make_contact):
    a = make_contact("Ron", "Avi", email=None)
    b = make_contact("Ron", "Avi", email="x@y.com")
    return _open_set(EntityType.CONTACT, a, b), a.id, b.id


def test_requires_login(client):
    response = client.get("/admin/duplicates/")
    assert response.status_code == 401
    assert response.get_json()["error"] == "Authentication required."


def test_requires_permission(logged_in_user):
    client, _ = logged_in_user
    assert client.get("/admin/duplicates/").status_code == 403
    assert client.post("/admin/duplicates/scan", json={}).status_code == 403


def test_scan_endpoint(logged_in_admin, make_organization):
    client, _ = logged_in_admin
    make_organization("Acme Ltd")
    make_organization("acme")

    response = client.post(
        "/admin/duplicates/scan",
        json={"entityTypes": ["organization"], "useSemanticValidation": False},
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["results"]["organizations"]["saved"] == 1
    assert payload["results"]["contacts"]["scanned"] == 0
    assert payload["results"]["contacts"]["saved"] == 0
    assert payload["message"] == "Found 1 new duplicate"


def test_scan_endpoint_rejects_bad_input(logged_in_admin):
    client, _ = logged_in_admin
    assert client.post("/admin/duplicates/scan", json={"entityTypes": ["vendor"]}).status_code == 400
    assert client.post("/admin/duplicates/scan", json={"entityTypes": "contact"}).status_code == 400
    assert client.post("/admin/duplicates/scan", json={"useSemanticValidation": "yes"}).status_code == 400


def test_semantic_scan_without_validator_still_runs(logged_in_admin, make_contact):
    client, _ = logged_in_admin
    make_contact("Noa", "Katz", email="noa@example.com")
    make_contact("Noa", "Katz", email="noa@example.com")

    response = client.post("/admin/duplicates/scan", json={"useSemanticValidation": True})

    assert response.status_code == 200
    assert response.get_json()["results"]["contacts"]["saved"] == 1


def test_list_and_stats(logged_in_admin, contact_set):
    client, _ = logged_in_admin
    set_id, _, _ = contact_set

    listing = client.get("/admin/duplicates/?entity_type=contact").get_json()
    assert listing["total"] == 1
    assert listing["sets"][0]["id"] == set_id
    assert listing["sets"][0]["primary_name"] == "Ron Avi"
    assert listing["counts"]["pending"] == 1

    stats = client.get("/admin/duplicates/stats").get_json()
    assert stats["counts"]["pending"] == 1
    assert stats["total"] == 1

    assert client.get("/admin/duplicates/?status=bogus").status_code == 400
    assert client.get("/admin/duplicates/?limit=0").status_code == 400


def test_details_endpoint(logged_in_admin, contact_set):
    client, _ = logged_in_admin
    set_id, a_id, b_id = contact_set

    payload = client.get(f"/admin/duplicates/{set_id}").get_json()

    assert payload["primary"]["id"] == a_id
    assert payload["secondary"]["email"] == "x@y.com"
    assert [c["field"] for c in payload["conflicts"]] == ["email"]
    assert client.get("/admin/duplicates/9999").status_code == 404


def test_reject_then_conflict(logged_in_admin, contact_set):
    client, _ = logged_in_admin
    set_id, _, _ = contact_set

    response = client.put(f"/admin/duplicates/{set_id}", json={"status": "rejected"})
    assert response.status_code == 200
    assert response.get_json()["set"]["status"] == "rejected"

    again = client.put(f"/admin/duplicates/{set_id}", json={"status": "skipped"})
    assert again.status_code == 409
    assert again.get_json()["code"] == "AlreadyResolved"

    assert client.put(f"/admin/duplicates/{set_id}", json={}).status_code == 400


def test_put_cannot_mark_merged(logged_in_admin, contact_set):
    client, _ = logged_in_admin
    set_id, _, _ = contact_set
    assert client.put(f"/admin/duplicates/{set_id}", json={"status": "merged"}).status_code == 400


def test_merge_and_undo_endpoints(logged_in_admin, contact_set):
    client, admin = logged_in_admin
    set_id, a_id, b_id = contact_set

    merged = client.post(f"/admin/duplicates/{set_id}/merge", json={"masterId": a_id, "fieldResolutions": []})
    assert merged.status_code == 200
    body = merged.get_json()["set"]
    assert body["status"] == "merged"
    assert body["can_undo"] is True
    assert body["reviewed_by_user_id"] == admin.id

    db.session.expire_all()
    assert db.session.get(Contact, b_id) is None
    assert db.session.get(Contact, a_id).email == "x@y.com"

    undone = client.post(f"/admin/duplicates/{set_id}/undo")
    assert undone.status_code == 200
    assert undone.get_json()["set"]["status"] == "pending"
    db.session.expire_all()
    assert db.session.get(Contact, b_id) is not None


def test_merge_errors_map_to_status_codes(logged_in_admin, contact_set, make_contact):
    client, _ = logged_in_admin
    set_id, a_id, _ = contact_set
    outsider = make_contact("Someone")

    assert client.post(f"/admin/duplicates/{set_id}/merge", json={}).status_code == 400
    bad_master = client.post(f"/admin/duplicates/{set_id}/merge", json={"masterId": outsider.id})
    assert bad_master.status_code == 400
    assert bad_master.get_json()["code"] == "ValidationFailed"
    assert client.post("/admin/duplicates/777/merge", json={"masterId": a_id}).status_code == 404
    assert client.post(f"/admin/duplicates/{set_id}/undo").status_code == 409


def test_failed_merge_returns_retryable_503(logged_in_admin, contact_set, monkeypatch):
    from flask_app.dedupe.merge_service import MergeService

    client, _ = logged_in_admin
    set_id, a_id, _ = contact_set

    def explode(self, loser):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(MergeService, "_delete_loser", explode)

    response = client.post(f"/admin/duplicates/{set_id}/merge", json={"masterId": a_id})

    assert response.status_code == 503
    assert response.get_json()["retryable"] is True
    db.session.expire_all()
    assert db.session.get(DuplicateSet, set_id).status == DuplicateStatus.PENDING
