import io

import pandas as pd
import pytest

from feyza.business.analytics import monthly_analytics
from tests.conftest import auth, make_user


LOANS = [
    {"id": "a", "amount": 1000, "status": "active", "created_at": "2029-01-15T10:00:00+00:00"},
    {"id": "b", "amount": 500, "status": "completed", "created_at": "2029-01-20T10:00:00.123456+00:00"},
    {"id": "c", "amount": 250, "status": "active", "created_at": "2029-03-02T08:00:00+00:00"},
    {"id": "d", "amount": 999, "status": "active", "created_at": "2028-12-31T23:00:00+00:00"},
]
PAYMENTS = [
    {"loan_id": "b", "amount": 500, "confirmation_date": "2029-02-01T09:00:00+00:00"},
    {"loan_id": "a", "amount": 100, "confirmation_date": None, "payment_date": "2029-03-05T09:00:00+00:00"},
]


def test_monthly_analytics():
    result = monthly_analytics(LOANS, PAYMENTS, 2029)

    months = {m["month"]: m for m in result["months"]}
    assert len(months) == 12
    assert months[1]["lent"] == 1500
    assert months[1]["loans"] == 2
    assert months[1]["label"] == "Jan"
    assert months[2]["repaid"] == 500
    assert months[3]["lent"] == 250
    assert months[3]["repaid"] == 100
    assert months[12]["lent"] == 0
    assert result["totals"] == {"lent": 1750, "repaid": 600, "loans": 3}
    assert result["loans_by_status"]["active"] == 3


def test_monthly_analytics_empty():
    result = monthly_analytics([], [], 2029)
    assert all(m["lent"] == 0 and m["repaid"] == 0 and m["loans"] == 0 for m in result["months"])
    assert result["totals"]["loans"] == 0


@pytest.fixture
def business_owner(db):
    owner = make_user(db)
    business = db.seed("business_profiles", {"user_id": owner["id"], "business_name": "Acme", "is_verified": True})
    for loan in LOANS:
        db.seed("loans", dict(loan, business_lender_id=business["id"]))
    db.seed("payments",
            {"loan_id": "b", "amount": 500, "status": "confirmed", "confirmation_date": "2029-02-01T09:00:00+00:00"},
            {"loan_id": "a", "amount": 80, "status": "pending", "payment_date": "2029-02-03T09:00:00+00:00"})
    return owner


def test_analytics_endpoint(client, business_owner):
    resp = client.get("/api/business/analytics?year=2029", headers=auth(business_owner["id"]))
    data = resp.get_json()["data"]
    assert data["business"]["business_name"] == "Acme"
    assert data["totals"]["repaid"] == 500


def test_analytics_requires_business(client, db):
    user = make_user(db)
    assert client.get("/api/business/analytics", headers=auth(user["id"])).status_code == 404


def test_analytics_excel_export(client, business_owner):
    resp = client.get("/api/business/analytics/excel?year=2029", headers=auth(business_owner["id"]))

    assert resp.status_code == 200
    assert "analytics_2029.xlsx" in resp.headers["Content-Disposition"]
    df = pd.read_excel(io.BytesIO(resp.data), engine="openpyxl")
    assert list(df.columns) == ["Month", "Loans", "Amount Lent", "Amount Repaid", "Net Outstanding"]
    assert df.iloc[-1]["Month"] == "Total"
    assert df.iloc[-1]["Amount Lent"] == 1750
