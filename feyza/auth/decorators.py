import hmac
from functools import wraps
from flask import g, current_app

from feyza.db import get_supabase, first_row
from feyza.errors import error_response
from .tokens import request_token, bearer_token, verify_jwt


def load_user_from_request():
    """Resolve the caller from the access token; None when absent or invalid."""
    token = request_token()
    if not token:
        return None
    ok, info = verify_jwt(token)
    if not ok:
        current_app.logger.info("Rejected access token: %s", info)
        return None
    return {"id": info["sub"], "email": info.get("email"), "role": info.get("role")}


def login_required(view_func):
    """Return 401 unless a valid access token is presented; sets g.user."""
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        user = load_user_from_request()
        if not user:
            return error_response("Unauthorized", 401)
        g.user = user
        return view_func(*args, **kwargs)
    return wrapper


def is_admin(user_id):
    resp = get_supabase().table("users").select("id,is_admin").eq("id", user_id).limit(1).execute()
    row = first_row(resp)
    return bool(row and row.get("is_admin"))


def admin_required(view_func):
    """Must be stacked under login_required."""
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not is_admin(g.user["id"]):
            return error_response("Forbidden - Admin access required", 403)
        return view_func(*args, **kwargs)
    return wrapper


def has_cron_secret():
    secret = current_app.config.get("CRON_SECRET")
    if not secret:
        return True
    token = bearer_token() or ""
    return hmac.compare_digest(token, secret)


def cron_secret_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not has_cron_secret():
            return error_response("Unauthorized", 401)
        return view_func(*args, **kwargs)
    return wrapper
