from flask import request, jsonify, g

from feyza.db import get_supabase, first_row
from feyza.auth.decorators import login_required
from feyza.errors import error_response
from . import notification_bp


@notification_bp.route('', methods=['GET'])
@login_required
def list_notifications():
    supabase = get_supabase()
    limit = min(request.args.get('limit', 50, type=int), 200)
    query = supabase.table("notifications").select("*").eq("user_id", g.user["id"])
    if request.args.get('unread') == 'true':
        query = query.eq("is_read", False)
    resp = query.order("created_at", desc=True).limit(limit).execute()
    notifications = resp.data or []
    unread = sum(1 for n in notifications if not n.get("is_read"))
    return jsonify({'status': 'success', 'data': notifications, 'unread_count': unread}), 200


@notification_bp.route('/<notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    supabase = get_supabase()
    resp = supabase.table("notifications").select("id,user_id").eq("id", notification_id).limit(1).execute()
    notification = first_row(resp)
    if not notification or notification["user_id"] != g.user["id"]:
        return error_response("Notification not found", 404)
    supabase.table("notifications").update({"is_read": True}).eq("id", notification_id).execute()
    return jsonify({'status': 'success'}), 200


@notification_bp.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    get_supabase().table("notifications") \
        .update({"is_read": True}) \
        .eq("user_id", g.user["id"]) \
        .eq("is_read", False) \
        .execute()
    return jsonify({'status': 'success'}), 200
