import logging

from postgrest.exceptions import APIError

from feyza.trust.tier import calculate_simple_trust_tier, map_vouch_count_to_tier

logger = logging.getLogger(__name__)


def _lender_names(supabase, lender_ids):
    if not lender_ids:
        return {}
    try:
        resp = supabase.table("users").select("id,full_name").in_("id", list(lender_ids)).execute()
    except APIError as e:
        logger.warning("Lender name lookup failed: %s", e.message)
        return {}
    return {row["id"]: row.get("full_name") for row in resp.data or []}


def find_eligible_lenders(supabase, borrower_id, requested_amount):
    """
    Lenders with an active policy at the borrower's tier that covers the
    requested amount, cheapest rate first. The borrower's own policies are
    never returned. A failed policy query yields no matches; a failed vouch
    count matches at the lowest tier.
    """
    try:
        tier = calculate_simple_trust_tier(supabase, borrower_id)
    except APIError as e:
        logger.error("[FindLenders] Vouch count error for %s: %s", borrower_id, e.message)
        tier = map_vouch_count_to_tier(0)

    try:
        resp = (
            supabase.table("lender_tier_policies")
            .select("lender_id,interest_rate,max_loan_amount")
            .eq("tier_id", tier["tier"])
            .eq("is_active", True)
            .gte("max_loan_amount", requested_amount)
            .neq("lender_id", borrower_id)
            .order("interest_rate")
            .execute()
        )
        policies = resp.data or []
    except APIError as e:
        logger.error("[FindLenders] Query error: %s", e.message)
        policies = []

    names = _lender_names(supabase, {p["lender_id"] for p in policies})
    eligible = [
        {
            "lender_id": p["lender_id"],
            "lender_name": names.get(p["lender_id"]) or "Lender",
            "interest_rate": float(p["interest_rate"]),
            "max_loan_amount": float(p["max_loan_amount"]),
        }
        for p in policies
    ]

    rates = [l["interest_rate"] for l in eligible]
    return {
        "tier": tier,
        "eligible_lenders": eligible,
        "total_lenders": len(eligible),
        "best_rate": min(rates) if rates else None,
        "average_rate": round(sum(rates) / len(rates), 4) if rates else None,
    }


def match_for_lender(result, lender_id):
    """The eligible entry for ``lender_id`` in a find_eligible_lenders result."""
    for lender in result["eligible_lenders"]:
        if lender["lender_id"] == lender_id:
            return lender
    return None
