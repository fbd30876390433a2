import pytest

from tests.conftest import auth, make_user


@pytest.fixture
def admin(db):
    return make_user(db, is_admin=True, full_name="Ada Admin")


def test_admin_routes_require_admin(client, db):
    user = make_user(db)
    assert client.get("/api/admin/verifications").status_code == 401
    assert client.get("/api/admin/verifications", headers=auth(user["id"])).status_code == 403


def test_pending_verifications(client, db, admin):
    submitted = make_user(db, verification_status="submitted")
    make_user(db, verification_status="verified")
    owner = make_user(db, full_name="Owen Owner")
    db.seed("business_profiles",
            {"user_id": owner["id"], "business_name": "Acme", "verification_status": "pending"},
            {"user_id": owner["id"], "business_name": "Done Inc", "verification_status": "approved"})

    data = client.get("/api/admin/verifications", headers=auth(admin["id"])).get_json()

    assert [u["id"] for u in data["users"]] == [submitted["id"]]
    assert [b["business_name"] for b in data["businesses"]] == ["Acme"]
    assert data["businesses"][0]["owner"]["full_name"] == "Owen Owner"


def test_review_user(client, db, admin):
    user = make_user(db, verification_status="submitted")
    resp = client.post("/api/admin/verifications", json={"user_id": user["id"], "action": "approve"},
                       headers=auth(admin["id"]))
    assert resp.status_code == 200
    assert db.get("users", user["id"])["verification_status"] == "verified"

    bad = client.post("/api/admin/verifications", json={"user_id": user["id"], "action": "maybe"},
                      headers=auth(admin["id"]))
    assert bad.status_code == 400


def test_approve_business_emails_owner(client, db, admin, outbox):
    owner = make_user(db)
    business = db.seed("business_profiles", {"user_id": owner["id"], "business_name": "Acme",
                                             "verification_status": "pending", "is_verified": False})

    resp = client.post("/api/admin/business/approve", json={
        "business_id": business["id"], "action": "approve", "notes": "Looks good",
    }, headers=auth(admin["id"]))

    assert resp.status_code == 200
    stored = db.get("business_profiles", business["id"])
    assert stored["is_verified"] is True
    assert stored["verification_status"] == "approved"
    assert stored["review_notes"] == "Looks good"
    assert stored["reviewed_at"]
    assert outbox[0]["To"] == owner["email"]
    assert outbox[0]["Subject"] == "Your business profile was approved"


def test_business_review_errors(client, db, admin):
    headers = auth(admin["id"])
    assert client.post("/api/admin/business/approve", json={"action": "approve"}, headers=headers).status_code == 400
    assert client.post("/api/admin/business/approve", json={"business_id": "x", "action": "approve"},
                       headers=headers).status_code == 404
    assert client.post("/api/admin/business/approve", json={"business_id": "x", "action": "hold"},
                       headers=headers).status_code == 400


def test_block_and_unblock_resolves_voucher_defaults(client, db, admin):
    borrower = make_user(db)
    voucher = make_user(db, vouching_locked=True, active_vouchee_defaults=2,
                        vouching_locked_reason="Locked")
    db.seed("vouches", {"voucher_id": voucher["id"], "vouchee_id": borrower["id"], "status": "active"})
    db.seed("loans", {"borrower_id": borrower["id"], "status": "defaulted", "amount": 100})
    headers = auth(admin["id"])

    assert client.post(f"/api/admin/users/{borrower['id']}/block", json={"reason": "Fraud"},
                       headers=headers).status_code == 200
    assert db.get("users", borrower["id"])["blocked_reason"] == "Fraud"

    resp = client.post(f"/api/admin/users/{borrower['id']}/unblock", headers=headers)

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["defaults_resolved"] == 1
    assert body["vouchers_unlocked"] == 1
    assert db.get("users", borrower["id"])["is_blocked"] is False
    unlocked = db.get("users", voucher["id"])
    assert unlocked["vouching_locked"] is False
    assert unlocked["active_vouchee_defaults"] == 1

    assert client.post(f"/api/admin/users/{borrower['id']}/unblock", headers=headers).status_code == 400


def test_repeat_unblock_resolves_each_default_once(client, db, admin):
    borrower = make_user(db, is_blocked=True, blocked_reason="Payment default")
    voucher = make_user(db, vouching_locked=True, active_vouchee_defaults=3)
    db.seed("vouches", {"voucher_id": voucher["id"], "vouchee_id": borrower["id"], "status": "active"})
    loan = db.seed("loans", {"borrower_id": borrower["id"], "status": "defaulted", "amount": 100})
    headers = auth(admin["id"])

    first = client.post(f"/api/admin/users/{borrower['id']}/unblock", headers=headers).get_json()
    assert first["defaults_resolved"] == 1
    assert db.get("loans", loan["id"])["default_resolved_at"]
    assert db.get("users", voucher["id"])["active_vouchee_defaults"] == 2

    client.post(f"/api/admin/users/{borrower['id']}/block", json={"reason": "Spam"}, headers=headers)
    second = client.post(f"/api/admin/users/{borrower['id']}/unblock", headers=headers).get_json()

    assert second["defaults_resolved"] == 0
    assert second["vouchers_unlocked"] == 0
    voucher_row = db.get("users", voucher["id"])
    assert voucher_row["active_vouchee_defaults"] == 2
    assert voucher_row["vouching_locked"] is True


def test_trust_debug_self_or_admin(client, db, admin):
    user = make_user(db, trust_tier="tier_3", vouch_count=6)
    other = make_user(db)
    db.seed("vouches", {"voucher_id": other["id"], "vouchee_id": user["id"], "status": "active"})

    own = client.get("/api/admin/trust-debug", headers=auth(user["id"])).get_json()
    assert own["stored_tier"]["tier"] == "tier_3"
    assert own["recomputed_tier"]["tier"] == "tier_1"
    assert own["tier_mismatch"] is True
    assert own["counters"]["received_active"] == 1

    assert client.get(f"/api/admin/trust-debug?userId={user['id']}",
                      headers=auth(other["id"])).status_code == 403
    assert client.get(f"/api/admin/trust-debug?userId={user['id']}",
                      headers=auth(admin["id"])).status_code == 200
