"""
Gates that decide whether a user may vouch for someone.

``can_user_vouch`` covers identity: the account exists, is not blocked and
is verified. ``check_vouching_eligibility`` covers accountability: account
age, a real name on the profile and the default-driven vouching lock.
Both are pure reads.
"""
import math
from datetime import timedelta

from feyza.db import first_row, utcnow, parse_timestamp

MIN_ACCOUNT_AGE_DAYS = 7
LOCK_THRESHOLD = 2


def can_user_vouch(supabase, user_id):
    resp = (
        supabase.table("users")
        .select("id,verification_status,is_blocked")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    user = first_row(resp)
    if not user:
        return {"eligible": False, "reason": "User not found"}
    if user.get("is_blocked"):
        return {"eligible": False, "reason": "Your account is currently restricted"}
    if user.get("verification_status") != "verified":
        return {"eligible": False, "reason": "You must complete identity verification before vouching"}
    return {"eligible": True}


def check_vouching_eligibility(supabase, user_id, now=None):
    resp = (
        supabase.table("users")
        .select("full_name,created_at,vouching_locked,vouching_locked_reason,active_vouchee_defaults")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    profile = first_row(resp)
    if not profile:
        return {"eligible": False, "reason": "Profile not found.", "code": "profile_incomplete"}

    created = parse_timestamp(profile.get("created_at"))
    age = (now or utcnow()) - created if created else timedelta(0)
    age_days = age.total_seconds() / 86400
    if age_days < MIN_ACCOUNT_AGE_DAYS:
        days_left = math.ceil(MIN_ACCOUNT_AGE_DAYS - age_days)
        return {
            "eligible": False,
            "code": "account_too_new",
            "reason": (
                f"Your account needs to be at least {MIN_ACCOUNT_AGE_DAYS} days old before you can "
                f"vouch for others. {days_left} day{'' if days_left == 1 else 's'} remaining."
            ),
        }

    full_name = (profile.get("full_name") or "").strip()
    if len(full_name) < 2:
        return {
            "eligible": False,
            "code": "profile_incomplete",
            "reason": "Please complete your profile (add your full name) before vouching for others.",
        }

    if profile.get("vouching_locked"):
        defaults = profile.get("active_vouchee_defaults")
        if defaults is None:
            defaults = LOCK_THRESHOLD
        return {
            "eligible": False,
            "code": "vouching_locked",
            "reason": profile.get("vouching_locked_reason") or (
                f"You currently have {defaults} people you vouched for who are in default. "
                "Resolve these situations before vouching for anyone new."
            ),
        }

    return {"eligible": True, "code": "ok"}
