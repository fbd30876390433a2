import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.application import MIMEApplication
from flask import render_template, current_app

logger = logging.getLogger(__name__)


def send_email(to_email, subject, html_body, attachments=None, reply_to=None):
    """Send an HTML email. Returns False instead of raising when delivery fails."""
    email_user = current_app.config.get("EMAIL_USER")
    email_password = current_app.config.get("EMAIL_PASSWORD")
    if not email_user or not email_password:
        logger.warning("EMAIL_USER/EMAIL_PASSWORD not set; skipping email to %s", to_email)
        return False
    if not to_email:
        logger.warning("No recipient for email %r", subject)
        return False

    msg = MIMEMultipart()
    msg['From'] = f"Feyza <{email_user}>"
    msg['To'] = to_email
    msg['Subject'] = subject
    if reply_to:
        msg['Reply-To'] = reply_to
    msg.attach(MIMEText(html_body, 'html'))
    if attachments:
        for filename, filebytes in attachments:
            part = MIMEApplication(filebytes, Name=filename)
            part['Content-Disposition'] = f'attachment; filename="{filename}"'
            msg.attach(part)
    try:
        server_host = current_app.config.get("MAIL_SERVER", "smtp.gmail.com")
        server_port = int(current_app.config.get("MAIL_PORT", 465))
        with smtplib.SMTP_SSL(server_host, server_port) as server:
            server.login(email_user, email_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email send error to %s: %s", to_email, e)
        return False
    return True


def _resolve_base_url():
    """Absolute base URL for links in emails."""
    return (current_app.config.get("PUBLIC_BASE_URL") or "http://localhost:5000").rstrip('/')


def send_vouch_received_email(to_email, voucher_name, vouchee_name, relationship=None):
    html_body = render_template(
        "emails/vouch_received.html",
        voucher_name=voucher_name,
        vouchee_name=vouchee_name,
        relationship=relationship,
        dashboard_url=f"{_resolve_base_url()}/dashboard",
    )
    return send_email(to_email, f"{voucher_name} vouched for you on Feyza", html_body)


def send_vouch_request_email(to_email, requester_name, message=None, invite_token=None):
    if invite_token:
        action_url = f"{_resolve_base_url()}/vouch/accept?token={invite_token}"
    else:
        action_url = f"{_resolve_base_url()}/vouch/requests"
    html_body = render_template(
        "emails/vouch_request.html",
        requester_name=requester_name,
        message=message,
        action_url=action_url,
    )
    return send_email(to_email, f"{requester_name} asked you to vouch for them", html_body)


def send_vouching_locked_email(to_email, voucher_name, defaults):
    html_body = render_template(
        "emails/vouching_locked.html",
        voucher_name=voucher_name,
        defaults=defaults,
    )
    return send_email(to_email, "Your vouching privileges have been paused", html_body)


def send_loan_invite_email(to_email, borrower_name, loan):
    invite_url = f"{_resolve_base_url()}/invite/{loan['invite_token']}"
    html_body = render_template(
        "emails/loan_invite.html",
        borrower_name=borrower_name,
        loan=loan,
        invite_url=invite_url,
    )
    return send_email(to_email, f"{borrower_name} sent you a loan request", html_body)


def send_loan_status_email(to_email, recipient_name, loan, status, reason=None):
    html_body = render_template(
        "emails/loan_status.html",
        recipient_name=recipient_name,
        loan=loan,
        status=status,
        reason=reason,
        loan_url=f"{_resolve_base_url()}/loans/{loan['id']}",
    )
    return send_email(to_email, f"Your loan request was {status}", html_body)


def send_payment_reminder_email(to_email, borrower_name, loan, installment, lender_message=None):
    html_body = render_template(
        "emails/payment_reminder.html",
        borrower_name=borrower_name,
        loan=loan,
        installment=installment,
        lender_message=lender_message,
        loan_url=f"{_resolve_base_url()}/loans/{loan['id']}",
    )
    return send_email(to_email, "Payment reminder", html_body)


def send_payment_confirmed_email(to_email, borrower_name, loan, payment):
    html_body = render_template(
        "emails/payment_confirmed.html",
        borrower_name=borrower_name,
        loan=loan,
        payment=payment,
    )
    return send_email(to_email, "Your payment was confirmed", html_body)


def send_business_review_email(to_email, business, approved, notes=None):
    html_body = render_template(
        "emails/business_review.html",
        business=business,
        approved=approved,
        notes=notes,
        dashboard_url=f"{_resolve_base_url()}/business",
    )
    subject = "Your business profile was approved" if approved else "Update on your business profile"
    return send_email(to_email, subject, html_body)


def send_contact_email(support_email, name, email, message, topic_label):
    html_body = render_template(
        "emails/contact.html",
        name=name,
        email=email,
        message=message,
        topic_label=topic_label,
    )
    return send_email(support_email, f"[Feyza Contact] {topic_label} from {name}", html_body, reply_to=email)
