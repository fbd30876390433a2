"""Retired guest flows. Every guest loan now goes through a registered account."""
from feyza.errors import error_response
from . import guest_bp

GONE_MESSAGE = "Guest loan flows have been retired. Please sign up or log in to continue."
ALL_METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE']


def _gone():
    return error_response(GONE_MESSAGE, 410, signup_url="/auth/signup")


@guest_bp.route('/guest-loan-request', methods=ALL_METHODS)
def guest_loan_request():
    return _gone()


@guest_bp.route('/guest-loan-request/<path:rest>', methods=ALL_METHODS)
def guest_loan_request_item(rest):
    return _gone()


@guest_bp.route('/guest-lender/<path:rest>', methods=ALL_METHODS)
def guest_lender(rest):
    return _gone()


@guest_bp.route('/guest-borrower/access', methods=ALL_METHODS)
def guest_borrower_access():
    return _gone()


@guest_bp.route('/guest-borrower/<path:rest>', methods=ALL_METHODS)
def guest_borrower(rest):
    return _gone()


@guest_bp.route('/guest/create-lender', methods=ALL_METHODS)
def guest_create_lender():
    return _gone()
