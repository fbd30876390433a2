from flask import request, jsonify, g

from feyza.db import get_supabase
from feyza.auth.decorators import login_required
from feyza.errors import error_response
from . import loans_bp
from . import service


@loans_bp.route('/loans', methods=['POST'])
@login_required
def create_loan():
    """Borrower loan request addressed to a business, a matched lender or an emailed invite."""
    data = service.validate_loan_request(request.get_json(silent=True))
    loan = service.create_loan(get_supabase(), g.user["id"], data)
    return jsonify({'status': 'success', 'data': loan}), 201


@loans_bp.route('/loans', methods=['GET'])
@login_required
def list_loans():
    role = request.args.get('role', 'borrower')
    if role not in ('borrower', 'lender'):
        return error_response("role must be 'borrower' or 'lender'", 400)
    status = request.args.get('status')
    if status and status not in service.LOAN_STATUSES:
        return error_response(f"Invalid status: {status}", 400)
    loans = service.list_loans(get_supabase(), g.user["id"], role, status)
    return jsonify({'status': 'success', 'data': loans}), 200


@loans_bp.route('/loans/<loan_id>', methods=['GET'])
@login_required
def get_loan(loan_id):
    supabase = get_supabase()
    loan = service.get_party_loan(supabase, loan_id, g.user["id"])
    loan["schedule"] = service.loan_schedule(supabase, loan_id)
    return jsonify({'status': 'success', 'data': loan}), 200


@loans_bp.route('/loans/<loan_id>/accept', methods=['POST'])
@login_required
def accept_loan(loan_id):
    loan = service.accept_loan(get_supabase(), loan_id, g.user["id"])
    return jsonify({'status': 'success', 'data': loan, 'message': 'Loan accepted'}), 200


@loans_bp.route('/loans/<loan_id>/decline', methods=['POST'])
@login_required
def decline_loan(loan_id):
    body = request.get_json(silent=True) or {}
    loan = service.decline_loan(get_supabase(), loan_id, g.user["id"], body.get('reason'))
    return jsonify({'status': 'success', 'data': loan}), 200


@loans_bp.route('/loans/<loan_id>/cancel', methods=['POST'])
@login_required
def cancel_loan(loan_id):
    body = request.get_json(silent=True) or {}
    loan = service.cancel_loan(get_supabase(), loan_id, g.user["id"], body.get('reason'))
    return jsonify({'status': 'success', 'data': loan}), 200


@loans_bp.route('/loans/<loan_id>/remind', methods=['POST'])
@login_required
def remind(loan_id):
    body = request.get_json(silent=True) or {}
    result = service.send_reminder(
        get_supabase(), loan_id, g.user["id"],
        schedule_id=body.get('schedule_id'),
        message=body.get('message'),
    )
    return jsonify({'status': 'success', 'data': result}), 200


@loans_bp.route('/invite/<token>', methods=['GET'])
def view_invite(token):
    supabase = get_supabase()
    loan = service.get_invite(supabase, token)
    return jsonify({'status': 'success', 'data': service.invite_summary(supabase, loan)}), 200


@loans_bp.route('/invite/accept', methods=['POST'])
@login_required
def accept_invite():
    body = request.get_json(silent=True) or {}
    loan = service.accept_invite(get_supabase(), body.get('token'), g.user["id"])
    return jsonify({'status': 'success', 'data': loan}), 200


@loans_bp.route('/invite/decline', methods=['POST'])
def decline_invite():
    body = request.get_json(silent=True) or {}
    service.decline_invite(get_supabase(), body.get('token'), body.get('reason'))
    return jsonify({'status': 'success'}), 200
