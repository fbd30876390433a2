from flask import request, jsonify, g

from feyza.db import get_supabase, first_row
from feyza.errors import error_response
from . import auth_bp
from .decorators import login_required
from .tokens import request_token, verify_jwt

PROFILE_COLUMNS = (
    "id,email,full_name,user_type,is_admin,verification_status,is_blocked,"
    "trust_tier,vouch_count,trust_tier_updated_at,vouching_locked,created_at"
)


@auth_bp.route('/user', methods=['GET'])
@login_required
def current_user():
    """Return the caller's profile row."""
    resp = get_supabase().table("users").select(PROFILE_COLUMNS).eq("id", g.user["id"]).limit(1).execute()
    profile = first_row(resp)
    if not profile:
        return error_response("User not found", 404)
    return jsonify({'status': 'success', 'data': profile}), 200


@auth_bp.route('/validate-token', methods=['POST'])
def validate_token():
    """Validate an access token sent by the client. Returns 200 if valid, 401 otherwise."""
    data = request.get_json(silent=True) or {}
    token = data.get('token') or request_token()
    ok, info = verify_jwt(token) if token else (False, 'missing token')
    if not ok:
        return error_response(info, 401)
    return jsonify({'status': 'success', 'data': {'user_id': info['sub'], 'expires_at': info.get('exp')}}), 200
