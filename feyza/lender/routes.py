from flask import request, jsonify, g

from feyza.db import get_supabase
from feyza.auth.decorators import login_required
from feyza.errors import error_response
from . import lender_bp
from .policies import validate_policies, upsert_tier_policies, list_tier_policies
from .matching import find_eligible_lenders


@lender_bp.route('/lender/tier-policies', methods=['GET'])
@login_required
def get_tier_policies():
    policies = list_tier_policies(get_supabase(), g.user["id"])
    return jsonify({'status': 'success', 'policies': policies}), 200


@lender_bp.route('/lender/tier-policies', methods=['PUT'])
@login_required
def put_tier_policies():
    """Bulk upsert of the caller's per-tier rate and limit."""
    body = request.get_json(silent=True)
    policies = validate_policies(body)
    saved = upsert_tier_policies(get_supabase(), g.user["id"], policies)
    return jsonify({'status': 'success', 'policies': saved}), 200


@lender_bp.route('/matching/lenders', methods=['GET'])
@login_required
def matching_lenders():
    amount = request.args.get('amount', type=float)
    if amount is None or amount < 1:
        return error_response("amount must be a positive number", 400)
    result = find_eligible_lenders(get_supabase(), g.user["id"], amount)
    return jsonify({'status': 'success', 'data': result}), 200
