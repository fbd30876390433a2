"""
Failed-collection bookkeeping.

There is no retry loop here: each failed collection attempt is reported
once (by the lender or the cron runner) and counted on the payment. The
attempt that reaches ``MAX_RETRIES`` defaults the payment. The first such
payment on a loan also defaults the loan, blocks the borrower and triggers
voucher accountability.
"""
import logging

from feyza.db import first_row, utcnow_iso
from feyza.errors import ApiError
from feyza.notification.notify import create_notification
from feyza.payments.handler import credit_loan
from feyza.vouching.accountability import on_vouchee_loan_defaulted

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


def retry_display_state(retry_count, status=None):
    """One of: none, retrying, final_attempt, max_retries_reached, defaulted."""
    if status == "defaulted":
        return "defaulted"
    retry_count = retry_count or 0
    if not retry_count and status != "failed":
        return "none"
    remaining = MAX_RETRIES - retry_count
    if remaining <= 0:
        return "max_retries_reached"
    if remaining == 1:
        return "final_attempt"
    return "retrying"


def _outstanding_debt(supabase, loan_id):
    rows = supabase.table("payment_schedule").select("amount,is_paid").eq("loan_id", loan_id).execute().data or []
    if rows:
        return round(sum(float(r.get("amount") or 0) for r in rows if not r.get("is_paid")), 2)
    loan = first_row(supabase.table("loans").select("amount_remaining").eq("id", loan_id).limit(1).execute()) or {}
    return round(float(loan.get("amount_remaining") or 0), 2)


def _set_installment(supabase, payment, paid):
    if not payment.get("schedule_id"):
        return
    supabase.table("payment_schedule").update({
        "is_paid": paid,
        "status": "paid" if paid else "failed",
        "paid_at": utcnow_iso() if paid else None,
    }).eq("id", payment["schedule_id"]).execute()


def restore_failed_payment(supabase, payment):
    """A failed payment that is confirmed after all counts as collected again."""
    _set_installment(supabase, payment, True)
    credit_loan(supabase, payment["loan_id"], float(payment["amount"]))


def record_payment_failure(supabase, payment, loan, reason=None):
    """
    Count one failed attempt against ``payment``; returns the updated state.

    The first failure puts the installment back to unpaid and takes the
    amount back out of the loan's paid total. A loan defaults, blocks its
    borrower and notifies vouchers at most once; later payments reaching
    ``MAX_RETRIES`` on an already defaulted loan only default the payment.
    """
    if loan["status"] not in ("active", "defaulted"):
        raise ApiError(f"Cannot record a failed payment on a {loan['status']} loan", 400)
    if payment["status"] in ("confirmed", "defaulted"):
        raise ApiError(f"Payment is already {payment['status']}", 400)

    retry_count = (payment.get("retry_count") or 0) + 1
    is_final = retry_count >= MAX_RETRIES
    status = "defaulted" if is_final else "failed"
    reason = reason or "Collection failed"

    supabase.table("payments").update({
        "status": status,
        "retry_count": retry_count,
        "last_failure_reason": reason,
    }).eq("id", payment["id"]).execute()
    if payment["status"] == "pending":
        _set_installment(supabase, payment, False)
        credit_loan(supabase, loan["id"], -float(payment["amount"]))

    borrower_id = loan["borrower_id"]
    currency = loan.get("currency") or "USD"

    if not is_final:
        remaining = MAX_RETRIES - retry_count
        create_notification(
            supabase, borrower_id, "payment_retry_failed",
            "Payment Failed",
            f"Payment of {currency} {payment['amount']} failed (Attempt {retry_count}/{MAX_RETRIES}). "
            f"{remaining} attempt{'' if remaining == 1 else 's'} remaining before account block.",
            loan_id=loan["id"],
            data={"payment_id": payment["id"], "retry_count": retry_count},
        )
        return {"retry_count": retry_count, "status": status, "display_state": retry_display_state(retry_count, status)}

    debt = _outstanding_debt(supabase, loan["id"])
    if loan["status"] == "defaulted":
        logger.info("[PaymentRetry] loan %s already defaulted; payment %s defaulted only", loan["id"], payment["id"])
        return {
            "retry_count": retry_count,
            "status": status,
            "display_state": retry_display_state(retry_count, status),
            "borrower_blocked": False,
            "loan_already_defaulted": True,
            "outstanding_debt": debt,
        }

    logger.warning("[PaymentRetry] blocking borrower %s after %s failed attempts", borrower_id, MAX_RETRIES)
    supabase.table("users").update({
        "is_blocked": True,
        "blocked_reason": f"Payment default after {MAX_RETRIES} failed attempts",
    }).eq("id", borrower_id).execute()
    supabase.table("loans").update({
        "status": "defaulted",
        "updated_at": utcnow_iso(),
    }).eq("id", loan["id"]).execute()

    create_notification(
        supabase, borrower_id, "account_blocked",
        "Account Blocked",
        f"Your account has been blocked due to payment default. Total outstanding debt: {currency} {debt}. "
        "Please clear your debt to restore access.",
        loan_id=loan["id"],
    )
    lender_id = loan.get("lender_id")
    if lender_id:
        create_notification(
            supabase, lender_id, "loan_defaulted",
            "Borrower Defaulted",
            f"The borrower defaulted after {MAX_RETRIES} failed payment attempts. Outstanding: {currency} {debt}.",
            loan_id=loan["id"],
        )

    vouchers = on_vouchee_loan_defaulted(supabase, borrower_id, loan["id"])
    return {
        "retry_count": retry_count,
        "status": status,
        "display_state": retry_display_state(retry_count, status),
        "borrower_blocked": True,
        "outstanding_debt": debt,
        "vouchers_notified": vouchers["vouchers_notified"],
        "vouchers_locked": vouchers["vouchers_locked"],
    }


def load_payment_with_loan(supabase, payment_id):
    payment = first_row(supabase.table("payments").select("*").eq("id", payment_id).limit(1).execute())
    if not payment:
        raise ApiError("Payment not found", 404)
    loan = first_row(supabase.table("loans").select("*").eq("id", payment["loan_id"]).limit(1).execute())
    if not loan:
        raise ApiError("Loan not found", 404)
    return payment, loan
