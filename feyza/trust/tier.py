"""
Simple trust tiers.

A borrower's tier is derived from the number of active vouches they have
received. The tier and count are cached on the ``users`` row together with
``trust_tier_updated_at``; reads serve the cached value while it is younger
than ``TIER_FRESHNESS`` and recompute synchronously otherwise.
"""
import logging
from datetime import timedelta

from postgrest.exceptions import APIError

from feyza.db import first_row, utcnow, parse_timestamp

logger = logging.getLogger(__name__)

TIER_FRESHNESS = timedelta(hours=1)

TIERS = ("tier_1", "tier_2", "tier_3", "tier_4")

# (tier, number, name, minimum active vouches)
TIER_TABLE = (
    ("tier_4", 4, "High Trust", 11),
    ("tier_3", 3, "Established Trust", 6),
    ("tier_2", 2, "Building Trust", 3),
    ("tier_1", 1, "Low Trust", 0),
)

_BY_TIER = {t[0]: t for t in TIER_TABLE}


def _next_threshold(tier):
    """Vouch count needed for the tier above, or None at the top."""
    for i, row in enumerate(TIER_TABLE):
        if row[0] == tier:
            return TIER_TABLE[i - 1][3] if i > 0 else None
    return None


def _tier_result(tier, vouch_count):
    _, number, name, _ = _BY_TIER[tier]
    threshold = _next_threshold(tier)
    next_tier_vouches = 0 if threshold is None else max(0, threshold - vouch_count)
    return {
        "tier": tier,
        "tier_number": number,
        "tier_name": name,
        "vouch_count": vouch_count,
        "next_tier_vouches": next_tier_vouches,
    }


def map_vouch_count_to_tier(vouch_count):
    """Map an active vouch count onto one of the four ordered tiers."""
    vouch_count = max(0, int(vouch_count or 0))
    for tier, _, _, minimum in TIER_TABLE:
        if vouch_count >= minimum:
            return _tier_result(tier, vouch_count)
    return _tier_result("tier_1", vouch_count)


def count_active_vouches(supabase, user_id):
    resp = (
        supabase.table("vouches")
        .select("id", count="exact")
        .eq("vouchee_id", user_id)
        .eq("status", "active")
        .execute()
    )
    if resp.count is not None:
        return resp.count
    return len(resp.data or [])


def calculate_simple_trust_tier(supabase, user_id):
    """Count active vouches, map them to a tier and persist the result."""
    vouch_count = count_active_vouches(supabase, user_id)
    result = map_vouch_count_to_tier(vouch_count)

    try:
        supabase.table("users").update({
            "trust_tier": result["tier"],
            "vouch_count": vouch_count,
            "active_vouches_count": vouch_count,
            "trust_tier_updated_at": utcnow().isoformat(),
        }).eq("id", user_id).execute()
    except APIError as e:
        # the computed tier is still valid for this request
        logger.error("Failed to persist trust tier for %s: %s", user_id, e.message)

    return result


def get_stored_tier(supabase, user_id):
    """Read the cached tier from the users row without counting vouches."""
    resp = (
        supabase.table("users")
        .select("trust_tier,vouch_count")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    row = first_row(resp)
    if not row or not row.get("trust_tier"):
        return None
    tier = row["trust_tier"] if row["trust_tier"] in _BY_TIER else "tier_1"
    return _tier_result(tier, int(row.get("vouch_count") or 0))


def is_stale(updated_at, now=None):
    updated = parse_timestamp(updated_at)
    if updated is None:
        return True
    return (now or utcnow()) - updated > TIER_FRESHNESS


def get_trust_tier(supabase, user_id, now=None):
    """Cached read path: stored tier while fresh, recomputed once stale."""
    resp = (
        supabase.table("users")
        .select("trust_tier,vouch_count,trust_tier_updated_at")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    row = first_row(resp)
    if row and row.get("trust_tier") in _BY_TIER and not is_stale(row.get("trust_tier_updated_at"), now):
        return _tier_result(row["trust_tier"], int(row.get("vouch_count") or 0))
    return calculate_simple_trust_tier(supabase, user_id)
