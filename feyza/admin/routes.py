from flask import request, jsonify, g, current_app

from feyza.db import get_supabase, first_row, utcnow_iso
from feyza.auth.decorators import login_required, admin_required, is_admin
from feyza.errors import error_response
from feyza.notification.notify import create_notification
from feyza.notification import email_utils
from feyza.trust.tier import calculate_simple_trust_tier, get_stored_tier, is_stale
from feyza.vouching.accountability import on_vouchee_default_resolved
from . import admin_bp

REVIEW_ACTIONS = ("approve", "reject")

USER_REVIEW_COLUMNS = "id,full_name,email,user_type,verification_status,created_at"
BUSINESS_REVIEW_COLUMNS = "id,user_id,business_name,contact_email,verification_status,created_at"


@admin_bp.route('/verifications', methods=['GET'])
@login_required
@admin_required
def pending_verifications():
    """Users who submitted identity documents and businesses awaiting review."""
    supabase = get_supabase()
    users = supabase.table("users") \
        .select(USER_REVIEW_COLUMNS) \
        .eq("verification_status", "submitted") \
        .order("created_at") \
        .execute().data or []
    businesses = supabase.table("business_profiles") \
        .select(BUSINESS_REVIEW_COLUMNS) \
        .eq("verification_status", "pending") \
        .order("created_at") \
        .execute().data or []

    owner_ids = list({b["user_id"] for b in businesses if b.get("user_id")})
    owners = {}
    if owner_ids:
        rows = supabase.table("users").select("id,full_name,email").in_("id", owner_ids).execute().data or []
        owners = {u["id"]: u for u in rows}
    for business in businesses:
        business["owner"] = owners.get(business.get("user_id"))

    return jsonify({
        'status': 'success',
        'users': users,
        'businesses': businesses,
        'counts': {'users': len(users), 'businesses': len(businesses)},
    }), 200


@admin_bp.route('/verifications', methods=['POST'])
@login_required
@admin_required
def review_user_verification():
    supabase = get_supabase()
    body = request.get_json(silent=True) or {}
    user_id = body.get('user_id')
    action = body.get('action')
    if not user_id or action not in REVIEW_ACTIONS:
        return error_response("user_id and action (approve or reject) are required", 400)

    user = first_row(supabase.table("users").select("id,full_name").eq("id", user_id).limit(1).execute())
    if not user:
        return error_response("User not found", 404)

    approved = action == "approve"
    status = "verified" if approved else "rejected"
    supabase.table("users").update({"verification_status": status}).eq("id", user_id).execute()

    if approved:
        create_notification(
            supabase, user_id, "verification_approved",
            "Verification Approved",
            "Your identity has been verified. You can now vouch for others and request loans.",
        )
    else:
        create_notification(
            supabase, user_id, "verification_rejected",
            "Verification Not Approved",
            body.get('notes') or "We could not verify your identity. Please review your documents and resubmit.",
        )
    current_app.logger.info("Admin %s marked user %s as %s", g.user["id"], user_id, status)
    return jsonify({'status': 'success', 'user_id': user_id, 'verification_status': status}), 200


@admin_bp.route('/business/approve', methods=['POST'])
@login_required
@admin_required
def review_business():
    supabase = get_supabase()
    body = request.get_json(silent=True) or {}
    business_id = body.get('business_id')
    action = body.get('action')
    notes = body.get('notes')
    if not business_id:
        return error_response("business_id is required", 400)
    if action not in REVIEW_ACTIONS:
        return error_response("Invalid action. Use 'approve' or 'reject'", 400)

    business = first_row(supabase.table("business_profiles").select("*").eq("id", business_id).limit(1).execute())
    if not business:
        return error_response("Business not found", 404)

    approved = action == "approve"
    update = {
        "verification_status": "approved" if approved else "rejected",
        "is_verified": approved,
        "reviewed_at": utcnow_iso(),
        "review_notes": notes,
    }
    supabase.table("business_profiles").update(update).eq("id", business_id).execute()
    business.update(update)

    owner = first_row(
        supabase.table("users").select("id,email,full_name").eq("id", business["user_id"]).limit(1).execute()
    ) if business.get("user_id") else None
    to_email = business.get("contact_email") or (owner or {}).get("email")
    email_sent = False
    if to_email:
        email_sent = email_utils.send_business_review_email(to_email, business, approved, notes)
    if owner:
        create_notification(
            supabase, owner["id"], "business_approved" if approved else "business_rejected",
            "Business Approved" if approved else "Business Not Approved",
            f"{business['business_name']} was {'approved' if approved else 'not approved'}."
            + (f" Notes: {notes}" if notes else ""),
            data={"business_id": business_id},
        )

    return jsonify({'status': 'success', 'data': business, 'email_sent': email_sent}), 200


@admin_bp.route('/users/<user_id>/block', methods=['POST'])
@login_required
@admin_required
def block_user(user_id):
    supabase = get_supabase()
    body = request.get_json(silent=True) or {}
    user = first_row(supabase.table("users").select("id,is_blocked").eq("id", user_id).limit(1).execute())
    if not user:
        return error_response("User not found", 404)
    if user_id == g.user["id"]:
        return error_response("You cannot block yourself", 400)

    reason = body.get('reason') or "Blocked by an administrator"
    supabase.table("users").update({"is_blocked": True, "blocked_reason": reason}).eq("id", user_id).execute()
    create_notification(supabase, user_id, "account_blocked", "Account Blocked", reason)
    current_app.logger.warning("Admin %s blocked user %s: %s", g.user["id"], user_id, reason)
    return jsonify({'status': 'success', 'user_id': user_id, 'is_blocked': True}), 200


@admin_bp.route('/users/<user_id>/unblock', methods=['POST'])
@login_required
@admin_required
def unblock_user(user_id):
    """Lift a block; each defaulted loan not resolved before counts as resolved for its vouchers."""
    supabase = get_supabase()
    user = first_row(supabase.table("users").select("id,is_blocked").eq("id", user_id).limit(1).execute())
    if not user:
        return error_response("User not found", 404)
    if not user.get("is_blocked"):
        return error_response("User is not blocked", 400)

    supabase.table("users").update({"is_blocked": False, "blocked_reason": None}).eq("id", user_id).execute()

    defaulted = supabase.table("loans") \
        .select("id") \
        .eq("borrower_id", user_id) \
        .eq("status", "defaulted") \
        .is_("default_resolved_at", "null") \
        .execute().data or []
    unlocked = 0
    for loan in defaulted:
        unlocked += on_vouchee_default_resolved(supabase, user_id, loan["id"])
        supabase.table("loans").update({"default_resolved_at": utcnow_iso()}).eq("id", loan["id"]).execute()

    create_notification(
        supabase, user_id, "account_unblocked",
        "Account Restored",
        "Your account has been restored. Thank you for resolving your outstanding balance.",
    )
    return jsonify({
        'status': 'success',
        'user_id': user_id,
        'is_blocked': False,
        'defaults_resolved': len(defaulted),
        'vouchers_unlocked': unlocked,
    }), 200


@admin_bp.route('/trust-debug', methods=['GET'])
@login_required
def trust_debug():
    """Stored tier next to a fresh recomputation, plus the vouch rows behind it."""
    supabase = get_supabase()
    target_id = request.args.get('userId') or g.user["id"]
    if target_id != g.user["id"] and not is_admin(g.user["id"]):
        return error_response("Forbidden", 403)

    profile = first_row(
        supabase.table("users")
        .select("id,full_name,user_type,trust_tier,vouch_count,trust_tier_updated_at,"
                "vouching_locked,active_vouchee_defaults,vouching_success_rate,"
                "total_payments_made,payments_on_time,payments_early,payments_late")
        .eq("id", target_id)
        .limit(1)
        .execute()
    )
    if not profile:
        return error_response("User not found", 404)

    stored = get_stored_tier(supabase, target_id)
    stale = is_stale(profile.get("trust_tier_updated_at"))
    recomputed = calculate_simple_trust_tier(supabase, target_id)

    received = supabase.table("vouches") \
        .select("id,voucher_id,status,loans_active,loans_completed,loans_defaulted") \
        .eq("vouchee_id", target_id) \
        .execute().data or []
    given = supabase.table("vouches") \
        .select("id,vouchee_id,status,loans_active,loans_completed,loans_defaulted") \
        .eq("voucher_id", target_id) \
        .execute().data or []

    return jsonify({
        'status': 'success',
        'user': profile,
        'stored_tier': stored,
        'stored_was_stale': stale,
        'recomputed_tier': recomputed,
        'tier_mismatch': bool(stored) and stored["tier"] != recomputed["tier"],
        'vouches_received': received,
        'vouches_given': given,
        'counters': {
            'received_active': sum(1 for v in received if v["status"] == "active"),
            'given_active': sum(1 for v in given if v["status"] == "active"),
            'given_loans_completed': sum(v.get("loans_completed") or 0 for v in given),
            'given_loans_defaulted': sum(v.get("loans_defaulted") or 0 for v in given),
        },
    }), 200
