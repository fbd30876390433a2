from datetime import datetime, timedelta, timezone

import pytest

from feyza.vouching.eligibility import can_user_vouch, check_vouching_eligibility
from tests.conftest import auth, make_user


@pytest.fixture
def voucher(db):
    return make_user(db, full_name="Vera Voucher")


@pytest.fixture
def vouchee(db):
    return make_user(db, full_name="Victor Vouchee")


def _vouch(client, voucher, vouchee, **extra):
    body = {"action": "vouch", "voucheeId": vouchee["id"], "relationship": "coworker"}
    body.update(extra)
    return client.post("/api/vouches", json=body, headers=auth(voucher["id"]))


def test_can_user_vouch(db):
    assert can_user_vouch(db, "missing") == {"eligible": False, "reason": "User not found"}
    blocked = make_user(db, is_blocked=True)
    assert can_user_vouch(db, blocked["id"])["reason"] == "Your account is currently restricted"
    pending = make_user(db, verification_status="submitted")
    assert "identity verification" in can_user_vouch(db, pending["id"])["reason"]
    ok = make_user(db)
    assert can_user_vouch(db, ok["id"]) == {"eligible": True}


def test_account_too_new(db):
    now = datetime.now(timezone.utc)
    user = make_user(db, created_at=(now - timedelta(days=5)).isoformat())

    result = check_vouching_eligibility(db, user["id"], now=now)

    assert result["eligible"] is False
    assert result["code"] == "account_too_new"
    assert "2 days remaining" in result["reason"]


def test_profile_incomplete(db):
    user = make_user(db, full_name=" A ")
    result = check_vouching_eligibility(db, user["id"])
    assert result["code"] == "profile_incomplete"


def test_vouching_locked(db):
    user = make_user(db, vouching_locked=True, active_vouchee_defaults=3, vouching_locked_reason=None)
    result = check_vouching_eligibility(db, user["id"])
    assert result["code"] == "vouching_locked"
    assert "3 people" in result["reason"]


def test_eligible(db, voucher):
    assert check_vouching_eligibility(db, voucher["id"]) == {"eligible": True, "code": "ok"}


def test_eligibility_endpoint_fails_open(client, db, voucher):
    db.fail("users", "select")
    resp = client.get("/api/vouches/eligibility", headers=auth(voucher["id"]))
    assert resp.status_code == 200
    assert resp.get_json() == {"eligible": True, "code": "ok"}


def test_check_eligibility_endpoint_fails_closed(client, db, voucher):
    db.fail("users", "select")
    resp = client.post("/api/vouches/check-eligibility", headers=auth(voucher["id"]))
    assert resp.status_code == 500
    assert resp.get_json()["canVouch"] is False


def test_check_eligibility_endpoint(client, db):
    user = make_user(db, verification_status="pending")
    resp = client.post("/api/vouches/check-eligibility", headers=auth(user["id"]))
    body = resp.get_json()
    assert body["canVouch"] is False
    assert "verification" in body["reason"]


def test_create_vouch_updates_tier_and_notifies(client, db, voucher, vouchee, outbox):
    resp = _vouch(client, voucher, vouchee)

    assert resp.status_code == 201
    vouch = resp.get_json()["vouch"]
    assert vouch["status"] == "active"
    assert vouch["loans_completed"] == 0
    assert db.get("users", vouchee["id"])["vouch_count"] == 1
    notes = [n for n in db.rows("notifications") if n["user_id"] == vouchee["id"]]
    assert notes[0]["type"] == "vouch_received"
    assert outbox[0]["To"] == vouchee["email"]


def test_duplicate_vouch_conflicts(client, voucher, vouchee):
    assert _vouch(client, voucher, vouchee).status_code == 201
    resp = _vouch(client, voucher, vouchee)
    assert resp.status_code == 409


def test_self_vouch_rejected(client, voucher):
    resp = _vouch(client, voucher, voucher)
    assert resp.status_code == 400


def test_locked_voucher_is_refused_with_code(client, db, vouchee):
    locked = make_user(db, vouching_locked=True, active_vouchee_defaults=2,
                       vouching_locked_reason="Locked for defaults")
    resp = _vouch(client, locked, vouchee)
    assert resp.status_code == 403
    body = resp.get_json()
    assert body["code"] == "vouching_locked"
    assert body["error"] == "Locked for defaults"
    assert db.rows("vouches") == []


def test_vouch_fails_closed_on_backend_error(client, db, voucher, vouchee):
    db.fail("users", "select")
    resp = _vouch(client, voucher, vouchee)
    assert resp.status_code == 500
    assert db.rows("vouches") == []


def test_request_accept_flow(client, db, voucher, vouchee):
    resp = client.post("/api/vouches", json={
        "action": "request", "targetUserId": voucher["id"], "message": "Please vouch for me",
    }, headers=auth(vouchee["id"]))
    assert resp.status_code == 201
    request_id = resp.get_json()["request"]["id"]

    listed = client.get("/api/vouches", headers=auth(voucher["id"])).get_json()
    assert [r["id"] for r in listed["pendingRequests"]] == [request_id]

    resp = client.post("/api/vouches", json={"action": "accept", "requestId": request_id},
                       headers=auth(voucher["id"]))
    assert resp.status_code == 200
    assert db.get("vouch_requests", request_id)["status"] == "accepted"
    assert db.get("users", vouchee["id"])["vouch_count"] == 1

    again = client.post("/api/vouches", json={"action": "decline", "requestId": request_id},
                        headers=auth(voucher["id"]))
    assert again.status_code == 400


def test_request_by_email_issues_invite_token(client, db, vouchee, outbox):
    resp = client.post("/api/vouches", json={"action": "request", "targetEmail": "friend@example.com"},
                       headers=auth(vouchee["id"]))
    assert resp.status_code == 201
    assert resp.get_json()["request"]["invite_token"]
    assert outbox[0]["To"] == "friend@example.com"


def test_request_requires_target(client, vouchee):
    resp = client.post("/api/vouches", json={"action": "request"}, headers=auth(vouchee["id"]))
    assert resp.status_code == 400


def test_only_recipient_can_answer_request(client, db, voucher, vouchee):
    other = make_user(db)
    request_row = db.seed("vouch_requests", {
        "requester_id": vouchee["id"], "requested_user_id": voucher["id"], "status": "pending",
    })
    resp = client.post("/api/vouches", json={"action": "decline", "requestId": request_row["id"]},
                       headers=auth(other["id"]))
    assert resp.status_code == 404


def test_revoke_recomputes_tier(client, db, voucher, vouchee):
    vouch_id = _vouch(client, voucher, vouchee).get_json()["vouch"]["id"]

    resp = client.post("/api/vouches", json={"action": "revoke", "vouchId": vouch_id},
                       headers=auth(voucher["id"]))

    assert resp.status_code == 200
    assert db.get("vouches", vouch_id)["status"] == "revoked"
    assert db.get("users", vouchee["id"])["vouch_count"] == 0


def test_invalid_action(client, voucher):
    resp = client.post("/api/vouches", json={"action": "hug"}, headers=auth(voucher["id"]))
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid action"
