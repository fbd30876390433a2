import logging

from postgrest.exceptions import APIError

from feyza.db import first_row

logger = logging.getLogger(__name__)


def create_notification(supabase, user_id, type, title, message, loan_id=None, data=None):
    """Insert an in-app notification. Failures are logged, never raised."""
    row = {
        "user_id": user_id,
        "type": type,
        "title": title,
        "message": message,
        "is_read": False,
    }
    if loan_id:
        row["loan_id"] = loan_id
    if data:
        row["data"] = data
    try:
        resp = supabase.table("notifications").insert(row).execute()
    except APIError as e:
        logger.error("Failed to create %s notification for %s: %s", type, user_id, e.message)
        return None
    return first_row(resp)
