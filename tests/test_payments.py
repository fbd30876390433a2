import io
from datetime import date, timedelta

import pytest
from PIL import Image

from feyza.db import utcnow
from feyza.payments.handler import payment_timing, on_payment_completed
from feyza.payments.retry import MAX_RETRIES, retry_display_state
from tests.conftest import auth, make_user, CRON_HEADERS


@pytest.fixture
def borrower(db):
    return make_user(db, full_name="Bea Borrower")


@pytest.fixture
def lender(db):
    return make_user(db, full_name="Larry Lender")


@pytest.fixture
def loan(db, borrower, lender):
    loan = db.seed("loans", {
        "borrower_id": borrower["id"], "lender_id": lender["id"], "amount": 100, "currency": "USD",
        "status": "active", "total_amount": 100, "amount_paid": 0, "amount_remaining": 100,
    })
    db.seed("payment_schedule",
            {"id": "s1", "loan_id": loan["id"], "due_date": "2030-01-01", "amount": 50.0, "is_paid": False},
            {"id": "s2", "loan_id": loan["id"], "due_date": "2030-02-01", "amount": 50.0, "is_paid": False})
    return loan


def _pay(client, borrower, loan, schedule_id, amount=50):
    return client.post("/api/payments/create", json={
        "loanId": loan["id"], "scheduleId": schedule_id, "amount": amount,
    }, headers=auth(borrower["id"]))


def test_payment_timing():
    due = date(2030, 1, 10)
    assert payment_timing(due, date(2030, 1, 9)) == "early"
    assert payment_timing(due, date(2030, 1, 10)) == "on_time"
    assert payment_timing("2030-01-10T00:00:00+00:00", date(2030, 1, 11)) == "late"


def test_create_payment_marks_installment_and_counts_early(client, db, borrower, lender, loan):
    resp = _pay(client, borrower, loan, "s1")

    assert resp.status_code == 201
    assert resp.get_json()["timing"] == "early"
    assert db.get("payment_schedule", "s1")["is_paid"] is True
    user = db.get("users", borrower["id"])
    assert user["total_payments_made"] == 1
    assert user["payments_early"] == 1
    assert db.get("loans", loan["id"])["amount_remaining"] == 50
    assert any(n["user_id"] == lender["id"] and n["type"] == "payment_received" for n in db.rows("notifications"))


def test_create_payment_rejects_paid_installment(client, db, borrower, loan):
    assert _pay(client, borrower, loan, "s1").status_code == 201
    assert _pay(client, borrower, loan, "s1").status_code == 400


def test_only_borrower_records_payment(client, lender, loan):
    assert _pay(client, lender, loan, "s1").status_code == 403


def test_confirming_last_payment_completes_loan_and_credits_vouchers(client, db, borrower, lender, loan):
    voucher = make_user(db)
    vouch = db.seed("vouches", {"voucher_id": voucher["id"], "vouchee_id": borrower["id"], "status": "active",
                                "loans_active": 1, "loans_completed": 0, "loans_defaulted": 0})
    payment_ids = [_pay(client, borrower, loan, s).get_json()["data"]["id"] for s in ("s1", "s2")]

    first = client.post("/api/payments/confirm", json={"paymentId": payment_ids[0]}, headers=auth(lender["id"]))
    assert first.get_json()["loan_completed"] is False
    assert db.get("loans", loan["id"])["status"] == "active"
    assert db.get("vouches", vouch["id"])["loans_completed"] == 0

    second = client.post("/api/payments/confirm", json={"paymentId": payment_ids[1]}, headers=auth(lender["id"]))
    assert second.status_code == 200
    assert second.get_json()["loan_completed"] is True

    stored = db.get("loans", loan["id"])
    assert stored["status"] == "completed"
    assert stored["completed_at"]
    vouch_row = db.get("vouches", vouch["id"])
    assert vouch_row["loans_completed"] == 1
    assert vouch_row["loans_active"] == 0
    assert db.get("users", voucher["id"])["vouching_success_rate"] == 100.0


def test_completion_waits_for_unpaid_installments(db, borrower, loan):
    db.get("loans", loan["id"])["amount_remaining"] = 50
    assert on_payment_completed(db, loan["id"], borrower["id"]) is False
    assert db.get("loans", loan["id"])["status"] == "active"


def test_completion_when_nothing_owed(db, borrower, loan):
    db.get("loans", loan["id"])["amount_remaining"] = 0
    assert on_payment_completed(db, loan["id"], borrower["id"]) is True
    assert on_payment_completed(db, loan["id"], borrower["id"]) is False


def test_only_lender_confirms(client, db, borrower, loan):
    payment_id = _pay(client, borrower, loan, "s1").get_json()["data"]["id"]
    resp = client.post("/api/payments/confirm", json={"paymentId": payment_id}, headers=auth(borrower["id"]))
    assert resp.status_code == 403


@pytest.mark.parametrize("count,status,state", [
    (0, "pending", "none"),
    (1, "failed", "retrying"),
    (2, "failed", "final_attempt"),
    (3, "failed", "max_retries_reached"),
    (3, "defaulted", "defaulted"),
])
def test_retry_display_state(count, status, state):
    assert retry_display_state(count, status) == state


def test_failures_escalate_to_default(client, db, borrower, lender, loan, outbox):
    locked_voucher = make_user(db, active_vouchee_defaults=1)
    db.seed("vouches", {"voucher_id": locked_voucher["id"], "vouchee_id": borrower["id"], "status": "active",
                        "loans_active": 1, "loans_completed": 0, "loans_defaulted": 0})
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "pending", "retry_count": 0})

    for attempt in range(1, MAX_RETRIES):
        resp = client.post(f"/api/payments/{payment['id']}/failed", json={"reason": "NSF"},
                           headers=auth(lender["id"]))
        data = resp.get_json()["data"]
        assert data["retry_count"] == attempt
        assert data["status"] == "failed"
        assert db.get("users", borrower["id"])["is_blocked"] is False

    resp = client.post(f"/api/payments/{payment['id']}/failed", headers=CRON_HEADERS)
    data = resp.get_json()["data"]

    assert data["status"] == "defaulted"
    assert data["borrower_blocked"] is True
    assert data["outstanding_debt"] == 100
    assert data["vouchers_locked"] == 1
    assert db.get("users", borrower["id"])["is_blocked"] is True
    assert db.get("loans", loan["id"])["status"] == "defaulted"
    voucher_row = db.get("users", locked_voucher["id"])
    assert voucher_row["vouching_locked"] is True
    assert voucher_row["active_vouchee_defaults"] == 2
    assert outbox[-1]["To"] == locked_voucher["email"]

    again = client.post(f"/api/payments/{payment['id']}/failed", headers=CRON_HEADERS)
    assert again.status_code == 400


def test_failed_collection_reopens_installment_and_holds_completion(client, db, borrower, lender, loan):
    vouch = db.seed("vouches", {"voucher_id": make_user(db)["id"], "vouchee_id": borrower["id"],
                                "status": "active", "loans_active": 1, "loans_completed": 0, "loans_defaulted": 0})
    first_id, second_id = [_pay(client, borrower, loan, s).get_json()["data"]["id"] for s in ("s1", "s2")]
    assert db.get("loans", loan["id"])["amount_remaining"] == 0

    resp = client.post(f"/api/payments/{second_id}/failed", json={"reason": "NSF"}, headers=auth(lender["id"]))

    assert resp.status_code == 200
    installment = db.get("payment_schedule", "s2")
    assert installment["is_paid"] is False
    assert installment["status"] == "failed"
    stored = db.get("loans", loan["id"])
    assert stored["amount_paid"] == 50
    assert stored["amount_remaining"] == 50

    confirm = client.post("/api/payments/confirm", json={"paymentId": first_id}, headers=auth(lender["id"]))
    assert confirm.get_json()["loan_completed"] is False
    assert db.get("loans", loan["id"])["status"] == "active"
    assert db.get("vouches", vouch["id"])["loans_completed"] == 0

    for _ in range(MAX_RETRIES - 1):
        data = client.post(f"/api/payments/{second_id}/failed", headers=CRON_HEADERS).get_json()["data"]

    assert data["status"] == "defaulted"
    assert data["outstanding_debt"] == 50
    stored = db.get("loans", loan["id"])
    assert stored["status"] == "defaulted"
    assert stored["amount_paid"] == 50
    assert db.get("vouches", vouch["id"])["loans_defaulted"] == 1


def test_confirming_failed_payment_restores_installment(client, db, borrower, lender, loan):
    first_id, second_id = [_pay(client, borrower, loan, s).get_json()["data"]["id"] for s in ("s1", "s2")]
    client.post(f"/api/payments/{second_id}/failed", headers=CRON_HEADERS)
    client.post("/api/payments/confirm", json={"paymentId": first_id}, headers=auth(lender["id"]))

    resp = client.post("/api/payments/confirm", json={"paymentId": second_id}, headers=auth(lender["id"]))

    assert resp.get_json()["loan_completed"] is True
    installment = db.get("payment_schedule", "s2")
    assert installment["is_paid"] is True
    assert installment["status"] == "paid"
    stored = db.get("loans", loan["id"])
    assert stored["status"] == "completed"
    assert stored["amount_remaining"] == 0


def test_loan_defaults_once_across_payments(client, db, borrower, lender, loan):
    voucher = make_user(db)
    vouch = db.seed("vouches", {"voucher_id": voucher["id"], "vouchee_id": borrower["id"], "status": "active",
                                "loans_active": 1, "loans_completed": 0, "loans_defaulted": 0})
    payment_ids = [_pay(client, borrower, loan, s).get_json()["data"]["id"] for s in ("s1", "s2")]

    results = []
    for payment_id in payment_ids:
        for _ in range(MAX_RETRIES):
            resp = client.post(f"/api/payments/{payment_id}/failed", headers=CRON_HEADERS)
            assert resp.status_code == 200
        results.append(resp.get_json()["data"])

    assert results[0]["borrower_blocked"] is True
    assert results[1]["status"] == "defaulted"
    assert results[1]["loan_already_defaulted"] is True
    assert results[1]["outstanding_debt"] == 100
    voucher_row = db.get("users", voucher["id"])
    assert voucher_row["active_vouchee_defaults"] == 1
    assert voucher_row["vouching_locked"] is False
    assert db.get("vouches", vouch["id"])["loans_defaulted"] == 1
    blocked = [n for n in db.rows("notifications") if n["type"] == "account_blocked"]
    assert len(blocked) == 1


def test_failure_rejected_on_closed_loan(client, db, lender, loan):
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "pending", "retry_count": 0})
    db.get("loans", loan["id"])["status"] = "cancelled"
    resp = client.post(f"/api/payments/{payment['id']}/failed", headers=auth(lender["id"]))
    assert resp.status_code == 400
    assert db.get("payments", payment["id"])["retry_count"] == 0


def test_failed_requires_lender_or_cron(client, db, borrower, loan):
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "pending", "retry_count": 0})
    assert client.post(f"/api/payments/{payment['id']}/failed").status_code == 401
    assert client.post(f"/api/payments/{payment['id']}/failed", headers=auth(borrower["id"])).status_code == 403


def test_retry_state_endpoint(client, db, borrower, loan):
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "failed", "retry_count": 2})
    resp = client.get(f"/api/payments/{payment['id']}/retry-state", headers=auth(borrower["id"]))
    assert resp.get_json()["data"]["display_state"] == "final_attempt"


def _png_bytes():
    buffer = io.BytesIO()
    Image.new("RGBA", (40, 40), (200, 10, 10, 255)).save(buffer, format="PNG")
    buffer.seek(0)
    return buffer


def test_proof_upload_stores_compressed_jpeg(client, db, borrower, loan):
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "pending"})

    resp = client.post("/api/payments/proof", data={
        "payment_id": payment["id"], "file": (_png_bytes(), "receipt.png"),
    }, headers=auth(borrower["id"]), content_type="multipart/form-data")

    assert resp.status_code == 200
    url = resp.get_json()["data"]["proof_url"]
    assert url.endswith("_receipt.jpg")
    assert db.get("payments", payment["id"])["proof_url"] == url
    (bucket, path), (content, options) = next(iter(db.storage.objects.items()))
    assert bucket == "payment-proofs"
    assert path.startswith(f"{loan['id']}/")
    assert options["content-type"] == "image/jpeg"
    assert content[:2] == b"\xff\xd8"


def test_proof_upload_rejects_non_images(client, db, borrower, loan):
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "pending"})
    resp = client.post("/api/payments/proof", data={
        "payment_id": payment["id"], "file": (io.BytesIO(b"not an image"), "notes.txt"),
    }, headers=auth(borrower["id"]), content_type="multipart/form-data")
    assert resp.status_code == 400


def test_proof_upload_storage_failure(client, db, borrower, loan):
    payment = db.seed("payments", {"loan_id": loan["id"], "amount": 50, "status": "pending"})
    db.storage.fail = True
    resp = client.post("/api/payments/proof", data={
        "payment_id": payment["id"], "file": (_png_bytes(), "receipt.png"),
    }, headers=auth(borrower["id"]), content_type="multipart/form-data")
    assert resp.status_code == 500


def test_smart_schedule(client, borrower):
    resp = client.get("/api/smart-schedule?amount=1000", headers=auth(borrower["id"]))
    presets = resp.get_json()["data"]["presets"]
    assert [(p["frequency"], p["installments"]) for p in presets] == [
        ("biweekly", 4), ("monthly", 3), ("monthly", 4), ("monthly", 6),
    ]
    assert client.get("/api/smart-schedule?amount=-5", headers=auth(borrower["id"])).status_code == 400


def test_payment_reminders_cron(client, db, borrower, loan, outbox):
    target = (utcnow() + timedelta(days=3)).date().isoformat()
    db.seed("payment_schedule",
            {"loan_id": loan["id"], "due_date": target, "amount": 25, "is_paid": False},
            {"loan_id": "gone", "due_date": target, "amount": 25, "is_paid": False})

    assert client.post("/api/cron/payment-reminders").status_code == 401
    resp = client.post("/api/cron/payment-reminders", headers=CRON_HEADERS)

    data = resp.get_json()["data"]
    assert data["found"] == 2
    assert data["sent"] == 1
    assert data["skipped"] == 1
    assert outbox[0]["To"] == borrower["email"]
