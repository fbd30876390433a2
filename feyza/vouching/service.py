import logging
import secrets

from postgrest.exceptions import APIError

from feyza.db import first_row, utcnow_iso
from feyza.errors import ApiError
from feyza.trust.tier import calculate_simple_trust_tier
from feyza.notification.notify import create_notification
from feyza.notification.email_utils import send_vouch_received_email, send_vouch_request_email
from .eligibility import can_user_vouch, check_vouching_eligibility

logger = logging.getLogger(__name__)

VOUCH_TYPES = ("character", "guarantee", "employment", "family")


def _user(supabase, user_id, columns="id,email,full_name"):
    return first_row(supabase.table("users").select(columns).eq("id", user_id).limit(1).execute())


def ensure_can_vouch(supabase, voucher_id):
    """Both gates, failing closed: any backend error refuses the vouch."""
    try:
        identity = can_user_vouch(supabase, voucher_id)
        accountability = check_vouching_eligibility(supabase, voucher_id)
    except APIError as e:
        logger.error("Vouch eligibility check failed for %s: %s", voucher_id, e.message)
        raise ApiError("Unable to verify vouching eligibility", 500)
    if not identity["eligible"]:
        raise ApiError(identity["reason"], 403)
    if not accountability["eligible"]:
        raise ApiError(accountability["reason"], 403, code=accountability["code"])


def create_vouch(supabase, voucher_id, vouchee_id, vouch_type=None, relationship=None,
                 known_years=None, message=None):
    if not vouchee_id:
        raise ApiError("voucheeId is required", 400)
    if voucher_id == vouchee_id:
        raise ApiError("You can't vouch for yourself", 400)
    vouch_type = vouch_type or "character"
    if vouch_type not in VOUCH_TYPES:
        raise ApiError(f"Invalid vouch_type: {vouch_type}", 400)

    ensure_can_vouch(supabase, voucher_id)

    vouchee = _user(supabase, vouchee_id)
    if not vouchee:
        raise ApiError("User not found", 404)

    existing = supabase.table("vouches") \
        .select("id") \
        .eq("voucher_id", voucher_id) \
        .eq("vouchee_id", vouchee_id) \
        .eq("status", "active") \
        .limit(1) \
        .execute()
    if existing.data:
        raise ApiError("You have already vouched for this person", 409)

    resp = supabase.table("vouches").insert({
        "voucher_id": voucher_id,
        "vouchee_id": vouchee_id,
        "status": "active",
        "vouch_type": vouch_type,
        "relationship": relationship or "friend",
        "known_years": known_years,
        "message": message,
        "loans_active": 0,
        "loans_completed": 0,
        "loans_defaulted": 0,
    }).execute()
    vouch = first_row(resp)

    calculate_simple_trust_tier(supabase, vouchee_id)

    voucher = _user(supabase, voucher_id) or {}
    voucher_name = voucher.get("full_name") or "Someone"
    create_notification(
        supabase, vouchee_id, "vouch_received",
        "You received a vouch",
        f"{voucher_name} vouched for you.",
        data={"vouch_id": vouch and vouch.get("id"), "voucher_id": voucher_id},
    )
    send_vouch_received_email(
        vouchee.get("email"),
        voucher_name,
        (vouchee.get("full_name") or "there").split(" ")[0],
        relationship or "friend",
    )
    return vouch


def request_vouch(supabase, requester_id, target_user_id=None, target_email=None,
                  message=None, suggested_relationship=None):
    if not target_user_id and not target_email:
        raise ApiError("Must provide either user ID or email", 400)
    if target_user_id == requester_id:
        raise ApiError("You can't ask yourself for a vouch", 400)

    resp = supabase.table("vouch_requests").insert({
        "requester_id": requester_id,
        "requested_user_id": target_user_id,
        "requested_email": target_email,
        "message": message,
        "suggested_relationship": suggested_relationship,
        "status": "pending",
        "invite_token": secrets.token_urlsafe(24) if target_email else None,
    }).execute()
    request_row = first_row(resp)

    if target_user_id:
        create_notification(
            supabase, target_user_id, "vouch_request",
            "Vouch request",
            "Someone asked you to vouch for them.",
            data={"request_id": request_row and request_row.get("id"), "requester_id": requester_id},
        )

    requester = _user(supabase, requester_id) or {}
    email_to = target_email
    if not email_to:
        email_to = (_user(supabase, target_user_id) or {}).get("email")
    send_vouch_request_email(
        email_to,
        requester.get("full_name") or "Someone",
        message,
        (request_row or {}).get("invite_token"),
    )
    return request_row


def _pending_request_for(supabase, request_id, user_id):
    request_row = first_row(
        supabase.table("vouch_requests").select("*").eq("id", request_id).limit(1).execute()
    )
    if not request_row:
        raise ApiError("Request not found", 404)
    if request_row.get("requested_user_id") != user_id:
        raise ApiError("Request not found", 404)
    if request_row.get("status") != "pending":
        raise ApiError("Request is no longer pending", 400)
    return request_row


def accept_vouch_request(supabase, request_id, user_id, **vouch_data):
    request_row = _pending_request_for(supabase, request_id, user_id)
    vouch = create_vouch(supabase, user_id, request_row["requester_id"], **vouch_data)
    supabase.table("vouch_requests").update({
        "status": "accepted",
        "responded_at": utcnow_iso(),
    }).eq("id", request_id).execute()
    return vouch


def decline_vouch_request(supabase, request_id, user_id):
    _pending_request_for(supabase, request_id, user_id)
    supabase.table("vouch_requests").update({
        "status": "declined",
        "responded_at": utcnow_iso(),
    }).eq("id", request_id).execute()


def revoke_vouch(supabase, voucher_id, vouch_id, reason=None):
    vouch = first_row(
        supabase.table("vouches").select("id,voucher_id,vouchee_id,status").eq("id", vouch_id).limit(1).execute()
    )
    if not vouch or vouch["voucher_id"] != voucher_id:
        raise ApiError("Vouch not found", 404)
    if vouch["status"] != "active":
        raise ApiError("Vouch is not active", 400)

    supabase.table("vouches").update({
        "status": "revoked",
        "revoked_at": utcnow_iso(),
        "revoked_reason": reason,
    }).eq("id", vouch_id).execute()
    calculate_simple_trust_tier(supabase, vouch["vouchee_id"])


def list_vouches(supabase, user_id, kind="received"):
    if kind == "given":
        resp = supabase.table("vouches") \
            .select("*") \
            .eq("voucher_id", user_id) \
            .order("created_at", desc=True) \
            .execute()
    else:
        resp = supabase.table("vouches") \
            .select("*") \
            .eq("vouchee_id", user_id) \
            .eq("status", "active") \
            .order("created_at", desc=True) \
            .execute()
    return resp.data or []


def pending_requests_for(supabase, user_id):
    resp = supabase.table("vouch_requests") \
        .select("*") \
        .eq("requested_user_id", user_id) \
        .eq("status", "pending") \
        .order("created_at", desc=True) \
        .execute()
    return resp.data or []
