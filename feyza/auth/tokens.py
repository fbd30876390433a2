import jwt
from flask import current_app, request

ACCESS_TOKEN_COOKIE = "sb-access-token"
AUDIENCE = "authenticated"


def _jwt_secret():
    secret = current_app.config.get("SUPABASE_JWT_SECRET")
    if not secret:
        raise RuntimeError("SUPABASE_JWT_SECRET must be set")
    return secret


def verify_jwt(token):
    """Verify a Supabase access token. Returns (ok, claims_or_reason)."""
    try:
        data = jwt.decode(token, _jwt_secret(), algorithms=["HS256"], audience=AUDIENCE)
    except jwt.ExpiredSignatureError:
        return False, "token expired"
    except jwt.InvalidTokenError as e:
        return False, str(e)
    if not data.get("sub"):
        return False, "token has no subject"
    return True, data


def bearer_token():
    authz = request.headers.get("Authorization", "")
    if authz.lower().startswith("bearer "):
        return authz[7:].strip() or None
    return None


def request_token():
    """Access token from the Authorization header, falling back to the session cookie."""
    return bearer_token() or request.cookies.get(ACCESS_TOKEN_COOKIE)
