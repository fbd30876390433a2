import logging
import re
import secrets
from datetime import date, timedelta

from feyza.db import first_row, utcnow, utcnow_iso
from feyza.errors import ApiError
from feyza.lender.matching import find_eligible_lenders, match_for_lender
from feyza.notification.notify import create_notification
from feyza.notification import email_utils
from feyza.payments.schedule import LOAN_FREQUENCIES, build_schedule, calculate_total, frequency_weeks

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
LOAN_STATUSES = ("pending", "accepted", "declined", "active", "completed", "defaulted", "cancelled")
INTEREST_TYPES = ("simple", "compound")

INVITE_SUMMARY_COLUMNS = (
    "id", "amount", "currency", "purpose", "interest_rate", "interest_type",
    "repayment_frequency", "total_installments", "start_date", "total_amount", "status",
)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_loan_request(body):
    """Normalise a loan request body; ApiError(400) on the first invalid field."""
    if not isinstance(body, dict):
        raise ApiError("Invalid request body", 400)

    amount = body.get("amount")
    if not _is_number(amount) or amount < 1:
        raise ApiError("amount must be a number of at least 1", 400)

    currency = (body.get("currency") or "USD").upper()
    if not re.fullmatch(r"[A-Z]{3}", currency):
        raise ApiError("currency must be a 3-letter code", 400)

    rate = body.get("interest_rate", 0)
    if not _is_number(rate) or rate < 0 or rate > 100:
        raise ApiError("interest_rate must be 0-100", 400)

    interest_type = body.get("interest_type") or "simple"
    if interest_type not in INTEREST_TYPES:
        raise ApiError("interest_type must be simple or compound", 400)

    frequency = body.get("repayment_frequency")
    if frequency not in LOAN_FREQUENCIES:
        raise ApiError("repayment_frequency must be weekly, biweekly or monthly", 400)

    installments = body.get("total_installments")
    if not isinstance(installments, int) or isinstance(installments, bool) or installments < 1:
        raise ApiError("total_installments must be a positive integer", 400)

    raw_start = body.get("start_date")
    if raw_start:
        try:
            start_date = date.fromisoformat(str(raw_start)[:10])
        except ValueError:
            raise ApiError("start_date must be an ISO date (YYYY-MM-DD)", 400)
    else:
        start_date = utcnow().date() + timedelta(weeks=frequency_weeks(frequency))

    selectors = [k for k in ("business_id", "lender_id", "invite_email") if body.get(k)]
    if len(selectors) != 1:
        raise ApiError("Provide exactly one of business_id, lender_id or invite_email", 400)
    invite_email = body.get("invite_email")
    if invite_email and not EMAIL_RE.fullmatch(invite_email):
        raise ApiError("invite_email is not a valid email address", 400)

    return {
        "amount": amount,
        "currency": currency,
        "purpose": body.get("purpose"),
        "interest_rate": rate,
        "interest_type": interest_type,
        "repayment_frequency": frequency,
        "total_installments": installments,
        "start_date": start_date,
        "business_id": body.get("business_id"),
        "lender_id": body.get("lender_id"),
        "invite_email": invite_email.lower() if invite_email else None,
    }


def get_user(supabase, user_id, columns="id,email,full_name,is_blocked"):
    if not user_id:
        return None
    return first_row(supabase.table("users").select(columns).eq("id", user_id).limit(1).execute())


def get_loan(supabase, loan_id):
    loan = first_row(supabase.table("loans").select("*").eq("id", loan_id).limit(1).execute())
    if not loan:
        raise ApiError("Loan not found", 404)
    return loan


def get_business(supabase, business_id):
    return first_row(supabase.table("business_profiles").select("*").eq("id", business_id).limit(1).execute())


def is_business_verified(business):
    return bool(business.get("is_verified")) or business.get("verification_status") == "approved"


def is_lender_party(supabase, loan, user_id):
    if loan.get("lender_id") == user_id:
        return True
    if loan.get("business_lender_id"):
        business = get_business(supabase, loan["business_lender_id"])
        return bool(business and business.get("user_id") == user_id)
    return False


def get_party_loan(supabase, loan_id, user_id):
    loan = get_loan(supabase, loan_id)
    if loan["borrower_id"] != user_id and not is_lender_party(supabase, loan, user_id):
        raise ApiError("Not authorized", 403)
    return loan


def _resolve_lender(supabase, borrower_id, data):
    """(lender columns, user to notify or None, interest rate) for a new loan."""
    if data["business_id"]:
        business = get_business(supabase, data["business_id"])
        if not business or not is_business_verified(business):
            raise ApiError("Business lender not found or not verified", 400)
        if business.get("user_id") == borrower_id:
            raise ApiError("You cannot borrow from your own business", 400)
        return {"business_lender_id": business["id"]}, business.get("user_id"), data["interest_rate"]

    if data["lender_id"]:
        if data["lender_id"] == borrower_id:
            raise ApiError("You cannot borrow from yourself", 400)
        matches = find_eligible_lenders(supabase, borrower_id, data["amount"])
        match = match_for_lender(matches, data["lender_id"])
        if not match:
            raise ApiError("Selected lender is not available for this amount at your trust tier", 400)
        return {"lender_id": data["lender_id"]}, data["lender_id"], match["interest_rate"]

    return {
        "invite_email": data["invite_email"],
        "invite_token": secrets.token_urlsafe(32),
        "invite_accepted": False,
    }, None, data["interest_rate"]


def create_loan(supabase, borrower_id, data):
    borrower = get_user(supabase, borrower_id)
    if not borrower:
        raise ApiError("User not found", 404)
    if borrower.get("is_blocked"):
        raise ApiError("Your account is blocked from requesting new loans", 403)

    lender_columns, notify_user_id, rate = _resolve_lender(supabase, borrower_id, data)
    totals = calculate_total(
        data["amount"], rate, data["interest_type"], data["repayment_frequency"],
        data["total_installments"], include_duration_fee=False,
    )
    total = totals["total_amount"]

    row = {
        "borrower_id": borrower_id,
        "amount": data["amount"],
        "currency": data["currency"],
        "purpose": data["purpose"],
        "interest_rate": rate,
        "interest_type": data["interest_type"],
        "repayment_frequency": data["repayment_frequency"],
        "total_installments": data["total_installments"],
        "start_date": data["start_date"].isoformat(),
        "total_amount": total,
        "amount_paid": 0,
        "amount_remaining": total,
        "status": "pending",
    }
    row.update(lender_columns)
    loan = first_row(supabase.table("loans").insert(row).execute())

    schedule = build_schedule(data["start_date"], data["repayment_frequency"], data["total_installments"], total)
    for item in schedule:
        item["loan_id"] = loan["id"]
    supabase.table("payment_schedule").insert(schedule).execute()

    borrower_name = borrower.get("full_name") or "A borrower"
    if notify_user_id:
        create_notification(
            supabase, notify_user_id, "loan_request",
            "New Loan Request",
            f"{borrower_name} requested {loan['currency']} {loan['amount']}.",
            loan_id=loan["id"],
        )
    if loan.get("invite_email"):
        email_utils.send_loan_invite_email(loan["invite_email"], borrower_name, loan)

    loan["schedule"] = schedule
    return loan


def _lender_display_name(supabase, loan, user_id):
    if loan.get("business_lender_id"):
        business = get_business(supabase, loan["business_lender_id"])
        if business and business.get("business_name"):
            return business["business_name"]
    user = get_user(supabase, user_id)
    return (user or {}).get("full_name") or "Your lender"


def _notify_borrower(supabase, loan, type, title, message, status, reason=None):
    create_notification(supabase, loan["borrower_id"], type, title, message, loan_id=loan["id"])
    borrower = get_user(supabase, loan["borrower_id"])
    if borrower and borrower.get("email"):
        email_utils.send_loan_status_email(
            borrower["email"], borrower.get("full_name") or "there", loan, status, reason,
        )


def accept_loan(supabase, loan_id, user_id):
    loan = get_loan(supabase, loan_id)
    if not is_lender_party(supabase, loan, user_id):
        raise ApiError("Not authorized", 403)
    if loan["status"] != "pending":
        raise ApiError(f"Loan is {loan['status']}, only pending loans can be accepted", 400)

    supabase.table("loans").update({
        "status": "active",
        "lender_id": user_id,
        "updated_at": utcnow_iso(),
    }).eq("id", loan_id).execute()
    loan.update(status="active", lender_id=user_id)

    lender_name = _lender_display_name(supabase, loan, user_id)
    _notify_borrower(
        supabase, loan, "loan_accepted", "Loan Accepted",
        f"{lender_name} has accepted your loan request for {loan['currency']} {loan['amount']}.",
        "accepted",
    )
    return loan


def decline_loan(supabase, loan_id, user_id, reason=None):
    loan = get_loan(supabase, loan_id)
    if not is_lender_party(supabase, loan, user_id):
        raise ApiError("Not authorized", 403)
    if loan["status"] != "pending":
        raise ApiError(f"Loan is {loan['status']}, only pending loans can be declined", 400)

    supabase.table("loans").update({"status": "declined", "updated_at": utcnow_iso()}).eq("id", loan_id).execute()
    loan["status"] = "declined"
    _notify_borrower(
        supabase, loan, "loan_declined", "Loan Declined",
        f"Your loan request for {loan['currency']} {loan['amount']} was declined.",
        "declined", reason,
    )
    return loan


def cancel_loan(supabase, loan_id, user_id, reason=None):
    loan = get_loan(supabase, loan_id)
    if loan["status"] != "pending":
        raise ApiError("Only pending loans can be cancelled", 400)
    if loan["borrower_id"] != user_id:
        raise ApiError("Only the borrower can cancel this loan", 403)

    reason = reason or "Cancelled by borrower"
    supabase.table("loans").update({
        "status": "cancelled",
        "cancelled_at": utcnow_iso(),
        "cancelled_reason": reason,
        "updated_at": utcnow_iso(),
    }).eq("id", loan_id).execute()
    loan.update(status="cancelled", cancelled_reason=reason)

    borrower = get_user(supabase, user_id) or {}
    borrower_name = borrower.get("full_name") or "The borrower"
    if loan.get("lender_id"):
        create_notification(
            supabase, loan["lender_id"], "loan_cancelled",
            "Loan Request Cancelled",
            f"{borrower_name} has cancelled their loan request for {loan['currency']} {loan['amount']}.",
            loan_id=loan_id,
        )
    if loan.get("invite_email"):
        email_utils.send_loan_status_email(loan["invite_email"], "there", loan, "cancelled", reason)
    return loan


def next_unpaid_installment(supabase, loan_id):
    resp = supabase.table("payment_schedule") \
        .select("*") \
        .eq("loan_id", loan_id) \
        .eq("is_paid", False) \
        .order("due_date") \
        .limit(1) \
        .execute()
    return first_row(resp)


def send_reminder(supabase, loan_id, user_id, schedule_id=None, message=None):
    loan = get_loan(supabase, loan_id)
    if not is_lender_party(supabase, loan, user_id):
        raise ApiError("Only the lender can send reminders", 403)
    if loan["status"] != "active":
        raise ApiError("Reminders can only be sent for active loans", 400)

    if schedule_id:
        installment = first_row(
            supabase.table("payment_schedule").select("*")
            .eq("id", schedule_id).eq("loan_id", loan_id).limit(1).execute()
        )
        if installment and installment.get("is_paid"):
            installment = None
    else:
        installment = next_unpaid_installment(supabase, loan_id)
    if not installment:
        raise ApiError("No pending payments found", 400)

    borrower = get_user(supabase, loan["borrower_id"])
    if not borrower or not borrower.get("email"):
        raise ApiError("Borrower email not found", 400)

    sent = email_utils.send_payment_reminder_email(
        borrower["email"], borrower.get("full_name") or "there", loan, installment, message,
    )
    create_notification(
        supabase, loan["borrower_id"], "payment_reminder",
        "Payment Reminder",
        f"Your payment of {loan['currency']} {installment['amount']} is due on {installment['due_date']}.",
        loan_id=loan_id,
        data={"schedule_id": installment["id"]},
    )
    return {"sent": sent, "installment": installment}


def get_invite(supabase, token):
    """Pending, unclaimed loan for an invite token; ApiError(404) otherwise."""
    if not token:
        raise ApiError("Invite token is required", 400)
    loan = first_row(supabase.table("loans").select("*").eq("invite_token", token).limit(1).execute())
    if not loan or loan.get("invite_accepted") or loan["status"] != "pending":
        raise ApiError("Invite not found or no longer valid", 404)
    return loan


def invite_summary(supabase, loan):
    summary = {key: loan.get(key) for key in INVITE_SUMMARY_COLUMNS}
    borrower = get_user(supabase, loan["borrower_id"]) or {}
    summary["borrower_name"] = borrower.get("full_name") or "A Feyza user"
    return summary


def accept_invite(supabase, token, user_id):
    loan = get_invite(supabase, token)
    if loan["borrower_id"] == user_id:
        raise ApiError("You cannot fund your own loan request", 400)

    supabase.table("loans").update({
        "lender_id": user_id,
        "invite_accepted": True,
        "invite_token": None,
        "status": "active",
        "updated_at": utcnow_iso(),
    }).eq("id", loan["id"]).eq("invite_token", token).execute()
    loan.update(lender_id=user_id, invite_accepted=True, invite_token=None, status="active")

    lender_name = _lender_display_name(supabase, loan, user_id)
    _notify_borrower(
        supabase, loan, "loan_accepted", "Loan Accepted",
        f"{lender_name} accepted your loan invite for {loan['currency']} {loan['amount']}.",
        "accepted",
    )
    return loan


def decline_invite(supabase, token, reason=None):
    loan = get_invite(supabase, token)
    supabase.table("loans").update({
        "status": "declined",
        "invite_token": None,
        "updated_at": utcnow_iso(),
    }).eq("id", loan["id"]).execute()
    loan.update(status="declined", invite_token=None)
    _notify_borrower(
        supabase, loan, "loan_declined", "Loan Invite Declined",
        f"Your invite for {loan['currency']} {loan['amount']} was declined.",
        "declined", reason,
    )
    return loan


def list_loans(supabase, user_id, role="borrower", status=None):
    if role == "lender":
        business_ids = [
            b["id"] for b in
            supabase.table("business_profiles").select("id").eq("user_id", user_id).execute().data or []
        ]
        loans = supabase.table("loans").select("*").eq("lender_id", user_id).execute().data or []
        if business_ids:
            seen = {l["id"] for l in loans}
            extra = supabase.table("loans").select("*").in_("business_lender_id", business_ids).execute().data or []
            loans += [l for l in extra if l["id"] not in seen]
    else:
        loans = supabase.table("loans").select("*").eq("borrower_id", user_id).execute().data or []

    if status:
        loans = [l for l in loans if l["status"] == status]
    return sorted(loans, key=lambda l: l.get("created_at") or "", reverse=True)


def loan_schedule(supabase, loan_id):
    resp = supabase.table("payment_schedule").select("*").eq("loan_id", loan_id).order("due_date").execute()
    return resp.data or []
