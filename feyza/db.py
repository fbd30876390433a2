from datetime import datetime, timezone

from flask import current_app
from supabase import create_client, Client


def get_supabase() -> Client:
    """Return the app's Supabase client, creating it on first use."""
    client = current_app.extensions.get("supabase")
    if client is None:
        url = current_app.config.get("SUPABASE_URL")
        key = current_app.config.get("SUPABASE_KEY")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
        client = create_client(url, key)
        current_app.extensions["supabase"] = client
    return client


def first_row(resp):
    """First row of a PostgREST response, or None."""
    data = getattr(resp, "data", None)
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


def utcnow():
    return datetime.now(timezone.utc)


def utcnow_iso():
    return utcnow().isoformat()


def parse_timestamp(value):
    """Parse an ISO timestamp from Postgres into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
