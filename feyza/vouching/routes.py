from flask import request, jsonify, g, current_app
from postgrest.exceptions import APIError

from feyza.db import get_supabase
from feyza.auth.decorators import login_required
from feyza.errors import error_response
from . import vouching_bp
from .eligibility import can_user_vouch, check_vouching_eligibility
from . import service


@vouching_bp.route('/check-eligibility', methods=['POST'])
@login_required
def check_eligibility():
    """Identity gate for the vouch button. Fails closed."""
    try:
        result = can_user_vouch(get_supabase(), g.user["id"])
    except APIError as e:
        current_app.logger.error("[check-eligibility] %s: %s", g.user["id"], e.message)
        return jsonify({'canVouch': False, 'reason': 'Server error.'}), 500
    body = {'canVouch': result["eligible"]}
    if result.get("reason"):
        body['reason'] = result["reason"]
    return jsonify(body), 200


@vouching_bp.route('/eligibility', methods=['GET'])
@login_required
def eligibility():
    """Accountability pre-flight. Fails open; POST /api/vouches is the authoritative gate."""
    try:
        result = check_vouching_eligibility(get_supabase(), g.user["id"])
    except APIError as e:
        current_app.logger.error("[VouchEligibility] %s: %s", g.user["id"], e.message)
        return jsonify({'eligible': True, 'code': 'ok'}), 200
    return jsonify(result), 200


@vouching_bp.route('', methods=['GET'])
@login_required
def list_vouches():
    supabase = get_supabase()
    user_id = request.args.get('userId') or g.user["id"]
    kind = request.args.get('type', 'received')
    if kind not in ('received', 'given'):
        return error_response("type must be 'received' or 'given'", 400)

    vouches = service.list_vouches(supabase, user_id, kind)
    pending = service.pending_requests_for(supabase, user_id) if user_id == g.user["id"] else []
    return jsonify({'status': 'success', 'vouches': vouches, 'pendingRequests': pending}), 200


@vouching_bp.route('', methods=['POST'])
@login_required
def vouch_action():
    supabase = get_supabase()
    user_id = g.user["id"]
    body = request.get_json(silent=True) or {}
    action = body.get('action')

    if action == 'vouch':
        vouch = service.create_vouch(
            supabase, user_id, body.get('voucheeId'),
            vouch_type=body.get('vouch_type'),
            relationship=body.get('relationship'),
            known_years=body.get('known_years'),
            message=body.get('message'),
        )
        return jsonify({'status': 'success', 'vouch': vouch}), 201

    if action == 'request':
        vouch_request = service.request_vouch(
            supabase, user_id,
            target_user_id=body.get('targetUserId'),
            target_email=body.get('targetEmail'),
            message=body.get('message'),
            suggested_relationship=body.get('suggestedRelationship'),
        )
        return jsonify({'status': 'success', 'request': vouch_request}), 201

    if action == 'accept':
        if not body.get('requestId'):
            return error_response("requestId is required", 400)
        vouch = service.accept_vouch_request(
            supabase, body['requestId'], user_id,
            vouch_type=body.get('vouch_type'),
            relationship=body.get('relationship'),
            known_years=body.get('known_years'),
            message=body.get('message'),
        )
        return jsonify({'status': 'success', 'vouch': vouch}), 200

    if action == 'decline':
        if not body.get('requestId'):
            return error_response("requestId is required", 400)
        service.decline_vouch_request(supabase, body['requestId'], user_id)
        return jsonify({'status': 'success'}), 200

    if action == 'revoke':
        if not body.get('vouchId'):
            return error_response("vouchId is required", 400)
        service.revoke_vouch(supabase, user_id, body['vouchId'], body.get('reason'))
        return jsonify({'status': 'success'}), 200

    return error_response("Invalid action", 400)
