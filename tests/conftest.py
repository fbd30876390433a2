import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from feyza import create_app
from feyza.config import TestingConfig
from tests.fakes import FakeSupabase


class FakeSMTP:
    """Records messages instead of talking to a mail server."""
    outbox = []

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, user, password):
        pass

    def send_message(self, msg):
        FakeSMTP.outbox.append(msg)


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def app(db):
    app = create_app(TestingConfig)
    app.extensions["supabase"] = db
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    FakeSMTP.outbox = []
    monkeypatch.setattr("feyza.notification.email_utils.smtplib.SMTP_SSL", FakeSMTP)
    return FakeSMTP.outbox


def make_token(user_id, secret=TestingConfig.SUPABASE_JWT_SECRET, expires_in=3600, **claims):
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "role": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


CRON_HEADERS = {"Authorization": f"Bearer {TestingConfig.CRON_SECRET}"}


def make_user(db, **overrides):
    row = {
        "id": str(uuid.uuid4()),
        "email": f"user-{uuid.uuid4().hex[:8]}@example.com",
        "full_name": "Test User",
        "user_type": "individual",
        "is_admin": False,
        "verification_status": "verified",
        "is_blocked": False,
        "vouching_locked": False,
        "active_vouchee_defaults": 0,
        "created_at": (datetime.now(timezone.utc) - timedelta(days=30)).isoformat(),
    }
    row.update(overrides)
    return db.seed("users", row)
