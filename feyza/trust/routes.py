from flask import jsonify, g, current_app
from postgrest.exceptions import APIError

from feyza.db import get_supabase
from feyza.auth.decorators import login_required
from . import trust_bp
from .tier import get_trust_tier, map_vouch_count_to_tier, TIER_TABLE


@trust_bp.route('/trust/tier', methods=['GET'])
@login_required
def trust_tier():
    """Current user's trust tier; stored value while fresh, recomputed when stale."""
    tier = get_trust_tier(get_supabase(), g.user["id"])
    return jsonify({'status': 'success', 'tier': tier}), 200


@trust_bp.route('/borrower/loan-power', methods=['GET'])
@login_required
def loan_power():
    """
    Borrowing capacity at the caller's tier.
    Returns: { tier, active_lenders, max_amount, best_rate, next_tier }
    """
    supabase = get_supabase()
    user_id = g.user["id"]
    tier = get_trust_tier(supabase, user_id)

    try:
        resp = supabase.table("lender_tier_policies") \
            .select("lender_id,max_loan_amount,interest_rate") \
            .eq("tier_id", tier["tier"]) \
            .eq("is_active", True) \
            .neq("lender_id", user_id) \
            .execute()
        policies = resp.data or []
    except APIError as e:
        current_app.logger.error("loan-power policy lookup failed for %s: %s", user_id, e.message)
        policies = []

    lenders = {p["lender_id"] for p in policies}
    max_amount = max((float(p["max_loan_amount"]) for p in policies), default=0.0)
    best_rate = min((float(p["interest_rate"]) for p in policies), default=None)

    next_tier = None
    if tier["next_tier_vouches"] > 0:
        preview = map_vouch_count_to_tier(tier["vouch_count"] + tier["next_tier_vouches"])
        next_tier = {
            'tier': preview["tier"],
            'tier_name': preview["tier_name"],
            'vouches_needed': tier["next_tier_vouches"],
        }

    return jsonify({
        'status': 'success',
        'data': {
            'tier': tier,
            'active_lenders': len(lenders),
            'max_amount': round(max_amount, 2),
            'best_rate': best_rate,
            'next_tier': next_tier,
            'tiers': [{'tier': t[0], 'tier_name': t[2], 'min_vouches': t[3]} for t in reversed(TIER_TABLE)],
        }
    }), 200
