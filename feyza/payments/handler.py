import logging
from datetime import date

from postgrest.exceptions import APIError

from feyza.db import first_row, utcnow, utcnow_iso
from feyza.vouching.accountability import on_vouchee_loan_completed

logger = logging.getLogger(__name__)

OPEN_PAYMENT_STATUSES = ("pending", "failed")


def payment_timing(due_date, paid_on=None):
    """'early', 'on_time' or 'late', comparing calendar days."""
    if not due_date:
        return "on_time"
    if isinstance(due_date, str):
        due_date = date.fromisoformat(due_date[:10])
    paid_on = paid_on or utcnow().date()
    diff = (paid_on - due_date).days
    if diff < 0:
        return "early"
    if diff == 0:
        return "on_time"
    return "late"


def record_payment_stats(supabase, borrower_id, timing):
    """Increment the borrower's total payments and the bucket for ``timing``."""
    column = {"early": "payments_early", "on_time": "payments_on_time", "late": "payments_late"}[timing]
    user = first_row(
        supabase.table("users")
        .select(f"total_payments_made,{column}")
        .eq("id", borrower_id)
        .limit(1)
        .execute()
    ) or {}
    supabase.table("users").update({
        "total_payments_made": (user.get("total_payments_made") or 0) + 1,
        column: (user.get(column) or 0) + 1,
    }).eq("id", borrower_id).execute()


def credit_loan(supabase, loan_id, delta):
    """Move ``delta`` into (or, when negative, back out of) the loan's paid total."""
    loan = first_row(
        supabase.table("loans").select("amount,total_amount,amount_paid").eq("id", loan_id).limit(1).execute()
    )
    if not loan:
        return
    amount_paid = max(0.0, float(loan.get("amount_paid") or 0) + delta)
    total = float(loan.get("total_amount") or loan["amount"])
    supabase.table("loans").update({
        "amount_paid": round(amount_paid, 2),
        "amount_remaining": round(max(0.0, total - amount_paid), 2),
        "updated_at": utcnow_iso(),
    }).eq("id", loan_id).execute()


def count_unpaid_installments(supabase, loan_id):
    resp = supabase.table("payment_schedule") \
        .select("id", count="exact") \
        .eq("loan_id", loan_id) \
        .eq("is_paid", False) \
        .execute()
    return resp.count if resp.count is not None else len(resp.data or [])


def count_open_payments(supabase, loan_id):
    """Payments recorded on the loan that the lender has not confirmed yet."""
    resp = supabase.table("payments") \
        .select("id", count="exact") \
        .eq("loan_id", loan_id) \
        .in_("status", OPEN_PAYMENT_STATUSES) \
        .execute()
    return resp.count if resp.count is not None else len(resp.data or [])


def on_payment_completed(supabase, loan_id, borrower_id):
    """
    Completion check after a confirmed payment. The loan completes when
    every recorded payment is confirmed and either no unpaid installment
    remains or nothing is owed; voucher accountability fires once on that
    transition. Returns True when the loan completed.
    """
    try:
        loan = first_row(
            supabase.table("loans").select("id,status,amount_remaining").eq("id", loan_id).limit(1).execute()
        )
        if not loan or loan["status"] != "active":
            return False
        if count_open_payments(supabase, loan_id):
            return False

        remaining = loan.get("amount_remaining")
        owed_nothing = remaining is not None and float(remaining) <= 0
        if count_unpaid_installments(supabase, loan_id) != 0 and not owed_nothing:
            return False

        supabase.table("loans").update({
            "status": "completed",
            "completed_at": utcnow_iso(),
            "updated_at": utcnow_iso(),
        }).eq("id", loan_id).execute()
    except APIError as e:
        logger.error("[PaymentHandler] completion check failed for loan %s: %s", loan_id, e.message)
        return False

    logger.info("[PaymentHandler] loan %s completed", loan_id)
    on_vouchee_loan_completed(supabase, borrower_id, loan_id)
    return True
