from datetime import timedelta

from flask import request, jsonify, g, current_app

from feyza.db import get_supabase, first_row, utcnow, utcnow_iso
from feyza.auth.decorators import login_required, cron_secret_required, load_user_from_request, has_cron_secret
from feyza.errors import ApiError, error_response
from feyza.loans import service as loan_service
from feyza.notification.notify import create_notification
from feyza.notification import email_utils
from . import payments_bp
from .handler import payment_timing, record_payment_stats, on_payment_completed, credit_loan
from .retry import record_payment_failure, restore_failed_payment, load_payment_with_loan, retry_display_state
from .schedule import repayment_presets
from .uploads import upload_proof

REMINDER_DAYS_AHEAD = 3


def _positive_amount(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ApiError("amount must be a positive number", 400)
    return value


@payments_bp.route('/payments/create', methods=['POST'])
@login_required
def create_payment():
    """Borrower records a payment against an installment; the lender confirms it later."""
    supabase = get_supabase()
    body = request.get_json(silent=True) or {}
    loan_id = body.get('loanId') or body.get('loan_id')
    schedule_id = body.get('scheduleId') or body.get('schedule_id')
    if not loan_id:
        return error_response("loanId is required", 400)
    amount = _positive_amount(body.get('amount'))

    loan = loan_service.get_loan(supabase, loan_id)
    if loan["borrower_id"] != g.user["id"]:
        return error_response("Not authorized", 403)
    if loan["status"] != "active":
        return error_response(f"Payments cannot be recorded on a {loan['status']} loan", 400)

    installment = None
    if schedule_id:
        installment = first_row(
            supabase.table("payment_schedule").select("*")
            .eq("id", schedule_id).eq("loan_id", loan_id).limit(1).execute()
        )
        if not installment:
            return error_response("Schedule item not found", 404)
        if installment.get("is_paid"):
            return error_response("This installment is already paid", 400)

    timing = payment_timing(installment["due_date"] if installment else None)
    payment = first_row(supabase.table("payments").insert({
        "loan_id": loan_id,
        "schedule_id": schedule_id,
        "amount": amount,
        "payment_date": utcnow_iso(),
        "status": "pending",
        "note": body.get('note'),
        "proof_url": body.get('proofUrl'),
        "retry_count": 0,
    }).execute())

    if installment:
        supabase.table("payment_schedule").update({
            "is_paid": True,
            "status": "paid",
            "payment_id": payment["id"],
            "paid_at": utcnow_iso(),
        }).eq("id", schedule_id).execute()

    record_payment_stats(supabase, g.user["id"], timing)

    credit_loan(supabase, loan_id, amount)

    if loan.get("lender_id"):
        create_notification(
            supabase, loan["lender_id"], "payment_received",
            "Payment Recorded",
            f"The borrower recorded a payment of {loan.get('currency') or 'USD'} {amount}. Please confirm it.",
            loan_id=loan_id,
            data={"payment_id": payment["id"]},
        )

    return jsonify({'status': 'success', 'data': payment, 'timing': timing}), 201


@payments_bp.route('/payments/confirm', methods=['POST'])
@login_required
def confirm_payment():
    supabase = get_supabase()
    body = request.get_json(silent=True) or {}
    payment_id = body.get('paymentId') or body.get('payment_id')
    if not payment_id:
        return error_response("paymentId is required", 400)

    payment, loan = load_payment_with_loan(supabase, payment_id)
    if not loan_service.is_lender_party(supabase, loan, g.user["id"]):
        return error_response("Only the lender can confirm payments", 403)
    if payment["status"] not in ("pending", "failed"):
        return error_response(f"Payment is already {payment['status']}", 400)

    if payment["status"] == "failed":
        restore_failed_payment(supabase, payment)

    supabase.table("payments").update({
        "status": "confirmed",
        "confirmed_by": g.user["id"],
        "confirmation_date": utcnow_iso(),
    }).eq("id", payment_id).execute()
    payment.update(status="confirmed", confirmed_by=g.user["id"])

    completed = on_payment_completed(supabase, loan["id"], loan["borrower_id"])

    create_notification(
        supabase, loan["borrower_id"], "payment_confirmed",
        "Payment Confirmed",
        f"Your payment of {loan.get('currency') or 'USD'} {payment['amount']} was confirmed.",
        loan_id=loan["id"],
        data={"payment_id": payment_id},
    )
    borrower = loan_service.get_user(supabase, loan["borrower_id"])
    if borrower and borrower.get("email"):
        email_utils.send_payment_confirmed_email(
            borrower["email"], borrower.get("full_name") or "there", loan, payment,
        )

    return jsonify({'status': 'success', 'data': payment, 'loan_completed': completed}), 200


@payments_bp.route('/payments/proof', methods=['POST'])
@login_required
def upload_payment_proof():
    supabase = get_supabase()
    payment_id = request.form.get('payment_id')
    proof = request.files.get('file')
    if not payment_id:
        return error_response("payment_id is required", 400)
    if not proof or not proof.filename:
        return error_response("Missing proof file", 400)

    payment, loan = load_payment_with_loan(supabase, payment_id)
    if loan["borrower_id"] != g.user["id"]:
        return error_response("Not authorized", 403)

    try:
        proof_url = upload_proof(supabase, current_app.config["SUPABASE_STORAGE_BUCKET"], loan["id"], proof)
    except ApiError:
        raise
    except Exception as e:
        current_app.logger.exception("Proof upload failed for payment %s: %s", payment_id, e)
        return error_response("Image upload failed", 500)

    supabase.table("payments").update({"proof_url": proof_url}).eq("id", payment_id).execute()
    return jsonify({'status': 'success', 'data': {'payment_id': payment_id, 'proof_url': proof_url}}), 200


@payments_bp.route('/payments/<payment_id>/failed', methods=['POST'])
def payment_failed(payment_id):
    """Record one failed collection attempt; callable by the lender or the cron runner."""
    supabase = get_supabase()
    user = None
    if not (current_app.config.get("CRON_SECRET") and has_cron_secret()):
        user = load_user_from_request()
        if not user:
            return error_response("Unauthorized", 401)

    payment, loan = load_payment_with_loan(supabase, payment_id)
    if user and not loan_service.is_lender_party(supabase, loan, user["id"]):
        return error_response("Only the lender can report a failed payment", 403)

    body = request.get_json(silent=True) or {}
    result = record_payment_failure(supabase, payment, loan, body.get('reason'))
    return jsonify({'status': 'success', 'data': result}), 200


@payments_bp.route('/payments/<payment_id>/retry-state', methods=['GET'])
@login_required
def payment_retry_state(payment_id):
    supabase = get_supabase()
    payment, loan = load_payment_with_loan(supabase, payment_id)
    if loan["borrower_id"] != g.user["id"] and not loan_service.is_lender_party(supabase, loan, g.user["id"]):
        return error_response("Not authorized", 403)
    return jsonify({'status': 'success', 'data': {
        'retry_count': payment.get("retry_count") or 0,
        'status': payment["status"],
        'display_state': retry_display_state(payment.get("retry_count"), payment["status"]),
    }}), 200


@payments_bp.route('/smart-schedule', methods=['GET'])
@login_required
def smart_schedule():
    amount = request.args.get('amount', type=float)
    rate = request.args.get('interest_rate', 0, type=float)
    if amount is None or amount <= 0:
        return error_response("Valid loan amount is required", 400)
    if rate < 0 or rate > 100:
        return error_response("interest_rate must be 0-100", 400)
    include_fees = request.args.get('include_fees', 'true') != 'false'
    presets = repayment_presets(amount, rate, include_fees)
    return jsonify({'status': 'success', 'data': {'amount': amount, 'interest_rate': rate, 'presets': presets}}), 200


@payments_bp.route('/cron/payment-reminders', methods=['POST'])
@cron_secret_required
def payment_reminders():
    """Email borrowers whose next installment on an active loan is due in three days."""
    supabase = get_supabase()
    target = (utcnow() + timedelta(days=REMINDER_DAYS_AHEAD)).date().isoformat()

    due = supabase.table("payment_schedule") \
        .select("*") \
        .eq("due_date", target) \
        .eq("is_paid", False) \
        .execute().data or []

    results = {"due_date": target, "found": len(due), "sent": 0, "skipped": 0, "failed": 0}
    if not due:
        return jsonify({'status': 'success', 'data': results}), 200

    rows = supabase.table("loans").select("*").in_("id", list({d["loan_id"] for d in due})).execute().data or []
    active_loans = {l["id"]: l for l in rows if l["status"] == "active"}
    borrower_ids = list({l["borrower_id"] for l in active_loans.values()})
    borrowers = {}
    if borrower_ids:
        rows = supabase.table("users").select("id,email,full_name").in_("id", borrower_ids).execute().data or []
        borrowers = {u["id"]: u for u in rows}

    for installment in due:
        loan = active_loans.get(installment["loan_id"])
        borrower = borrowers.get(loan["borrower_id"]) if loan else None
        if not loan or not borrower or not borrower.get("email"):
            results["skipped"] += 1
            continue
        sent = email_utils.send_payment_reminder_email(
            borrower["email"], borrower.get("full_name") or "there", loan, installment,
        )
        create_notification(
            supabase, borrower["id"], "payment_reminder",
            "Payment Due Soon",
            f"Your payment of {loan.get('currency') or 'USD'} {installment['amount']} is due on {target}.",
            loan_id=loan["id"],
            data={"schedule_id": installment["id"]},
        )
        results["sent" if sent else "failed"] += 1

    current_app.logger.info("[PaymentReminders] %s", results)
    return jsonify({'status': 'success', 'data': results}), 200
