import inflect
from flask import request, jsonify, render_template, make_response, g

from feyza.db import get_supabase
from feyza.auth.decorators import login_required
from feyza.errors import error_response
from . import loans_bp
from . import service

# Helper for amount in words
p = inflect.engine()


def amount_to_words(amount, currency="USD"):
    """'1250.5' -> 'One Thousand Two Hundred Fifty Dollars and 50/100'."""
    try:
        cents_total = round(float(amount) * 100)
    except (TypeError, ValueError):
        return str(amount)
    whole, cents = divmod(cents_total, 100)
    words = p.number_to_words(whole, andword='').replace(',', '').replace('-', ' ')
    words = " ".join(words.split()).title()
    unit = "Dollars" if currency == "USD" else currency
    if cents:
        return f"{words} {unit} and {cents:02d}/100"
    return f"{words} {unit} Only"


def contract_context(supabase, loan):
    borrower = service.get_user(supabase, loan["borrower_id"]) or {}
    lender_name = None
    if loan.get("business_lender_id"):
        business = service.get_business(supabase, loan["business_lender_id"])
        lender_name = (business or {}).get("business_name")
    if not lender_name and loan.get("lender_id"):
        lender_name = (service.get_user(supabase, loan["lender_id"]) or {}).get("full_name")
    return {
        "loan": loan,
        "borrower_name": borrower.get("full_name") or "Borrower",
        "lender_name": lender_name or loan.get("invite_email") or "Lender",
        "schedule": service.loan_schedule(supabase, loan["id"]),
        "amount_words": amount_to_words(loan["amount"], loan.get("currency") or "USD"),
        "total_words": amount_to_words(loan.get("total_amount") or loan["amount"], loan.get("currency") or "USD"),
    }


@loans_bp.route('/contracts', methods=['GET'])
@login_required
def loan_contract():
    loan_id = request.args.get('loan_id')
    if not loan_id:
        return error_response("loan_id is required", 400)
    action = request.args.get('action', 'view')
    if action not in ('view', 'print', 'json'):
        return error_response("action must be view, print or json", 400)

    supabase = get_supabase()
    loan = service.get_party_loan(supabase, loan_id, g.user["id"])
    context = contract_context(supabase, loan)

    if action == "json":
        return jsonify({'status': 'success', 'data': context}), 200

    html = render_template("contracts/loan_contract.html", **context)
    if action == "print":
        html += "<script>window.onload = function(){window.print();}</script>"
    response = make_response(html)
    response.headers['Content-Type'] = 'text/html; charset=utf-8'
    return response
