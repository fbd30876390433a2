"""
Voucher accountability.

Loan outcomes flow back to the people who vouched for the borrower. A
completed loan improves every active voucher's record; a default counts
against it, and a voucher with ``LOCK_THRESHOLD`` or more vouchees in
default loses the ability to vouch until enough of them are resolved.

None of these hooks raise: a failure for one voucher is logged and the
rest are still processed, so the payment flow that triggered the hook is
never interrupted.
"""
import logging

from postgrest.exceptions import APIError

from feyza.db import first_row, utcnow_iso
from feyza.notification.notify import create_notification
from feyza.notification.email_utils import send_vouching_locked_email
from .eligibility import LOCK_THRESHOLD

logger = logging.getLogger(__name__)


def _active_vouches_for(supabase, borrower_id):
    resp = (
        supabase.table("vouches")
        .select("id,voucher_id,loans_active,loans_completed,loans_defaulted")
        .eq("vouchee_id", borrower_id)
        .eq("status", "active")
        .execute()
    )
    return resp.data or []


def recalculate_voucher_success_rate(supabase, voucher_id):
    """Completed / (completed + defaulted) across every vouch given, as a percentage."""
    resp = supabase.table("vouches").select("loans_completed,loans_defaulted").eq("voucher_id", voucher_id).execute()
    completed = sum(v.get("loans_completed") or 0 for v in resp.data or [])
    defaulted = sum(v.get("loans_defaulted") or 0 for v in resp.data or [])
    outcomes = completed + defaulted
    rate = 100.0 if outcomes == 0 else round(completed / outcomes * 100, 2)
    supabase.table("users").update({"vouching_success_rate": rate}).eq("id", voucher_id).execute()
    return rate


def on_vouchee_loan_completed(supabase, borrower_id, loan_id):
    result = {"vouchers_notified": 0, "vouchers_locked": 0, "errors": []}
    try:
        vouches = _active_vouches_for(supabase, borrower_id)
    except APIError as e:
        logger.error("[VoucherAccountability] vouch lookup failed for %s: %s", borrower_id, e.message)
        result["errors"].append(e.message)
        return result

    for vouch in vouches:
        try:
            supabase.table("vouches").update({
                "loans_completed": (vouch.get("loans_completed") or 0) + 1,
                "loans_active": max(0, (vouch.get("loans_active") or 0) - 1),
            }).eq("id", vouch["id"]).execute()
            recalculate_voucher_success_rate(supabase, vouch["voucher_id"])
        except APIError as e:
            logger.error("[VoucherAccountability] voucher %s: %s", vouch["voucher_id"], e.message)
            result["errors"].append(f"voucher {vouch['voucher_id']}: {e.message}")
            continue

        create_notification(
            supabase, vouch["voucher_id"], "vouchee_loan_completed",
            "Vouchee Repaid Their Loan",
            "Someone you vouched for just completed repaying a loan. Your vouching track record is improving.",
            loan_id=loan_id,
            data={"vouch_id": vouch["id"], "borrower_id": borrower_id},
        )
        result["vouchers_notified"] += 1

    logger.info("[VoucherAccountability] completion processed for loan %s: %s", loan_id, result)
    return result


def on_vouchee_loan_defaulted(supabase, borrower_id, loan_id):
    result = {"vouchers_notified": 0, "vouchers_locked": 0, "errors": []}
    try:
        borrower = first_row(supabase.table("users").select("full_name").eq("id", borrower_id).limit(1).execute())
        vouches = _active_vouches_for(supabase, borrower_id)
    except APIError as e:
        logger.error("[VoucherAccountability] vouch lookup failed for %s: %s", borrower_id, e.message)
        result["errors"].append(e.message)
        return result
    borrower_name = (borrower or {}).get("full_name") or "Someone you vouched for"

    for vouch in vouches:
        voucher_id = vouch["voucher_id"]
        try:
            supabase.table("vouches").update({
                "loans_defaulted": (vouch.get("loans_defaulted") or 0) + 1,
                "loans_active": max(0, (vouch.get("loans_active") or 0) - 1),
            }).eq("id", vouch["id"]).execute()
            recalculate_voucher_success_rate(supabase, voucher_id)

            voucher = first_row(
                supabase.table("users")
                .select("email,full_name,active_vouchee_defaults,vouching_locked")
                .eq("id", voucher_id)
                .limit(1)
                .execute()
            ) or {}
            defaults = (voucher.get("active_vouchee_defaults") or 0) + 1
            newly_locked = defaults >= LOCK_THRESHOLD and not voucher.get("vouching_locked")

            update = {"active_vouchee_defaults": defaults}
            if newly_locked:
                update.update({
                    "vouching_locked": True,
                    "vouching_locked_reason": (
                        f"You have {defaults} people you vouched for currently in default. "
                        "Your ability to vouch for new people is suspended until these are resolved."
                    ),
                    "vouching_locked_at": utcnow_iso(),
                })
            supabase.table("users").update(update).eq("id", voucher_id).execute()
        except APIError as e:
            logger.error("[VoucherAccountability] voucher %s: %s", voucher_id, e.message)
            result["errors"].append(f"voucher {voucher_id}: {e.message}")
            continue

        if newly_locked:
            logger.warning("[VoucherAccountability] locking voucher %s (%s active defaults)", voucher_id, defaults)
            result["vouchers_locked"] += 1
            send_vouching_locked_email(voucher.get("email"), voucher.get("full_name") or "there", defaults)

        suffix = "Your vouching ability has been suspended." if newly_locked else "This affects your vouching record."
        create_notification(
            supabase, voucher_id, "vouchee_loan_defaulted",
            "Vouchee Defaulted",
            f"{borrower_name} has defaulted on a loan you vouched for. {suffix}",
            loan_id=loan_id,
            data={
                "vouch_id": vouch["id"],
                "borrower_id": borrower_id,
                "active_defaults": defaults,
                "vouching_locked": defaults >= LOCK_THRESHOLD,
            },
        )
        result["vouchers_notified"] += 1

    logger.info("[VoucherAccountability] default processed for loan %s: %s", loan_id, result)
    return result


def on_vouchee_default_resolved(supabase, borrower_id, loan_id):
    """Undo one default per voucher; unlock those that drop below the threshold."""
    try:
        vouches = _active_vouches_for(supabase, borrower_id)
    except APIError as e:
        logger.error("[VoucherAccountability] vouch lookup failed for %s: %s", borrower_id, e.message)
        return 0

    unlocked = 0
    for vouch in vouches:
        voucher_id = vouch["voucher_id"]
        try:
            voucher = first_row(
                supabase.table("users")
                .select("active_vouchee_defaults,vouching_locked")
                .eq("id", voucher_id)
                .limit(1)
                .execute()
            )
            if not voucher:
                continue
            defaults = max(0, (voucher.get("active_vouchee_defaults") or 1) - 1)
            should_unlock = bool(voucher.get("vouching_locked")) and defaults < LOCK_THRESHOLD
            update = {"active_vouchee_defaults": defaults}
            if should_unlock:
                update.update({"vouching_locked": False, "vouching_locked_reason": None, "vouching_locked_at": None})
            supabase.table("users").update(update).eq("id", voucher_id).execute()
        except APIError as e:
            logger.error("[VoucherAccountability] unlock error for voucher %s: %s", voucher_id, e.message)
            continue

        if should_unlock:
            unlocked += 1
            create_notification(
                supabase, voucher_id, "vouching_unlocked",
                "Vouching Ability Restored",
                "A previously defaulted vouchee has resolved their debt. Your vouching ability has been restored.",
                loan_id=loan_id,
            )
    return unlocked
