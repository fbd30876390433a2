import re

from flask import request, jsonify, current_app
from postgrest.exceptions import APIError

from feyza.db import get_supabase
from feyza.errors import error_response, is_unique_violation
from feyza.notification.email_utils import send_contact_email
from . import core_bp

EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")

TOPIC_LABELS = {
    'general': 'General Inquiry',
    'support': 'Technical Support',
    'billing': 'Billing Question',
    'partnership': 'Partnership Opportunity',
    'press': 'Press Inquiry',
    'other': 'Other',
}


def _required_text(body, field):
    value = body.get(field)
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


@core_bp.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'success', 'service': 'feyza'}), 200


@core_bp.route('/contact', methods=['POST'])
def contact():
    body = request.get_json(silent=True) or {}
    name = _required_text(body, 'name')
    email = _required_text(body, 'email')
    message = _required_text(body, 'message')
    if not name:
        return error_response("Name is required", 400)
    if not email:
        return error_response("Email is required", 400)
    if not EMAIL_RE.fullmatch(email):
        return error_response("Email is not valid", 400)
    if not message:
        return error_response("Message is required", 400)

    topic = body.get('topic')
    topic_label = TOPIC_LABELS.get(topic) or topic or 'General Inquiry'
    # template autoescaping covers the user-supplied fields
    sent = send_contact_email(current_app.config["SUPPORT_EMAIL"], name, email, message, topic_label)
    if not sent:
        return error_response("Failed to send message. Please try again or email us directly.", 500)
    return jsonify({'status': 'success', 'ok': True}), 200


@core_bp.route('/waitlist', methods=['POST'])
def join_waitlist():
    body = request.get_json(silent=True) or {}
    email = body.get('email')
    interest_type = body.get('interest_type')
    if not email or not interest_type:
        return error_response("Email and interest type required", 400)
    if not EMAIL_RE.fullmatch(email.strip()):
        return error_response("Email is not valid", 400)

    full_name = (body.get('full_name') or '').strip() or None
    try:
        get_supabase().table("waitlist").insert({
            "email": email.lower().strip(),
            "full_name": full_name,
            "interest_type": interest_type,
        }).execute()
    except APIError as e:
        if is_unique_violation(e):
            return error_response("Email already registered!", 409)
        raise
    return jsonify({'status': 'success'}), 201
