from feyza.db import utcnow_iso
from feyza.errors import ApiError
from feyza.trust.tier import TIERS


def _number(value, field):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ApiError(f"{field} must be a number.", 400)
    return value


def validate_policies(body):
    """Validate a bulk tier-policy payload; raises ApiError(400) on the first violation."""
    if not isinstance(body, list) or not body:
        raise ApiError("Body must be a non-empty array of policies.", 400)

    seen = set()
    cleaned = []
    for policy in body:
        if not isinstance(policy, dict):
            raise ApiError("Each policy must be an object.", 400)
        tier_id = policy.get("tier_id")
        if tier_id not in TIERS:
            raise ApiError(f"Invalid tier_id: {tier_id}", 400)
        if tier_id in seen:
            raise ApiError(f"Duplicate tier_id: {tier_id}", 400)
        seen.add(tier_id)

        rate = _number(policy.get("interest_rate"), "interest_rate")
        if rate < 0 or rate > 100:
            raise ApiError("interest_rate must be 0-100.", 400)
        max_amount = _number(policy.get("max_loan_amount"), "max_loan_amount")
        if max_amount < 1:
            raise ApiError("max_loan_amount must be positive.", 400)

        cleaned.append({
            "tier_id": tier_id,
            "interest_rate": rate,
            "max_loan_amount": max_amount,
            "is_active": bool(policy.get("is_active", True)),
        })
    return cleaned


def upsert_tier_policies(supabase, lender_id, policies):
    rows = [dict(p, lender_id=lender_id, updated_at=utcnow_iso()) for p in policies]
    resp = supabase.table("lender_tier_policies").upsert(rows, on_conflict="lender_id,tier_id").execute()
    return resp.data or []


def list_tier_policies(supabase, lender_id):
    resp = supabase.table("lender_tier_policies") \
        .select("*") \
        .eq("lender_id", lender_id) \
        .order("tier_id") \
        .execute()
    return resp.data or []


def default_policies(interest_rate=10, max_loan_amount=500):
    """Flat policy across every tier; lenders adjust it afterwards."""
    return [
        {"tier_id": tier, "interest_rate": interest_rate, "max_loan_amount": max_loan_amount, "is_active": True}
        for tier in TIERS
    ]
