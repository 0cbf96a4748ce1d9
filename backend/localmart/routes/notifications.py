# Overview: Flask API routes for in-app notifications.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..errors import MarketplaceError
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    notifications = notification_service.list_notifications(g.current_user.id, unread_only=unread_only)
    return jsonify({
        "items": [n.to_dict() for n in notifications],
        "count": len(notifications),
    }), 200


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(g.current_user.id, notification_id)
        return jsonify({"notification": notification.to_dict()}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code


@notifications_bp.post("/mark-all-read")
@require_auth
def mark_all_read_route():
    updated = notification_service.mark_all_read(g.current_user.id)
    return jsonify({"updated": updated, "message": "All notifications marked as read"}), 200


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(g.current_user.id, notification_id)
        return jsonify({"message": "Notification deleted"}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
