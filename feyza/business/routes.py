from io import BytesIO

import pandas as pd
from flask import request, jsonify, g, make_response

from feyza.db import get_supabase, first_row, utcnow
from feyza.auth.decorators import login_required
from feyza.errors import error_response
from . import business_bp
from .analytics import monthly_analytics, analytics_frame


def _caller_business(supabase):
    return first_row(
        supabase.table("business_profiles")
        .select("id,business_name,is_verified")
        .eq("user_id", g.user["id"])
        .limit(1)
        .execute()
    )


def _load_analytics(supabase, business, year):
    loans = supabase.table("loans") \
        .select("id,amount,status,created_at") \
        .eq("business_lender_id", business["id"]) \
        .execute().data or []
    payments = []
    loan_ids = [l["id"] for l in loans]
    if loan_ids:
        payments = supabase.table("payments") \
            .select("loan_id,amount,confirmation_date,payment_date") \
            .in_("loan_id", loan_ids) \
            .eq("status", "confirmed") \
            .execute().data or []
    return monthly_analytics(loans, payments, year)


def _requested_year():
    year = request.args.get('year', type=int)
    if year is None:
        return utcnow().year
    return year


@business_bp.route('/analytics', methods=['GET'])
@login_required
def business_analytics():
    """
    Monthly lent / repaid totals for the caller's business.
    Query params: year (optional, defaults to the current year)
    """
    year = _requested_year()
    if year < 2000 or year > 2100:
        return error_response("Invalid year", 400)
    supabase = get_supabase()
    business = _caller_business(supabase)
    if not business:
        return error_response("Business profile not found", 404)

    result = _load_analytics(supabase, business, year)
    result["business"] = business
    return jsonify({'status': 'success', 'data': result}), 200


@business_bp.route('/analytics/excel', methods=['GET'])
@login_required
def business_analytics_excel():
    """Same figures as /analytics, as an .xlsx download."""
    year = _requested_year()
    if year < 2000 or year > 2100:
        return error_response("Invalid year", 400)
    supabase = get_supabase()
    business = _caller_business(supabase)
    if not business:
        return error_response("Business profile not found", 404)

    df = analytics_frame(_load_analytics(supabase, business, year))
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=str(year))
    output.seek(0)
    response = make_response(output.read())
    response.headers["Content-Disposition"] = f"attachment; filename=analytics_{year}.xlsx"
    response.headers["Content-Type"] = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    return response
