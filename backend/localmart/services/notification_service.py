# Overview: Fire-and-forget notification dispatch plus in-app notification reads.

"""
Notifications

notify() is always called AFTER the triggering business operation has
committed. It writes an in-app Notification row in its own transaction and
then hands it to any registered outbound dispatchers (email, push, socket).
Every failure here is logged and dropped: a notification problem never
changes the outcome of the operation that triggered it.

Outbound dispatchers live in app.extensions["notification_dispatchers"];
each is a callable taking the Notification.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import NotFound
from ..models import Notification
from localmart.time_utils import utcnow


NOTIFICATION_TITLES = {
    "bargain_received": "New bargain request",
    "bargain_accepted": "Bargain accepted",
    "bargain_rejected": "Bargain rejected",
    "bargain_countered": "Counter offer received",
    "bargain_message": "New bargain message",
    "order_placed": "New order received",
    "order_confirmed": "Order confirmed",
    "order_packed": "Order packed",
    "order_shipped": "Order shipped",
    "order_out_for_delivery": "Out for delivery",
    "order_delivered": "Order delivered",
    "order_cancelled": "Order cancelled",
    "payment_received": "Payment received",
    "payment_settled": "Payment settled",
}


def _jsonable(payload: dict | None) -> dict:
    out = {}
    for key, value in (payload or {}).items():
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out


def _message_for(notification_type: str, data: dict) -> str:
    if notification_type == "bargain_received":
        return f"{data.get('product_name', 'A product')}: offer of {data.get('proposed_price')}"
    if notification_type == "bargain_accepted":
        return f"{data.get('product_name', 'Your bargain')} accepted at {data.get('final_price')}"
    if notification_type == "bargain_countered":
        return f"Seller countered with {data.get('counter_offer')}"
    if notification_type == "bargain_rejected":
        return data.get("reason") or "The seller declined your offer"
    if notification_type.startswith("order_"):
        return f"Order {data.get('order_number', '')} is now {data.get('status', notification_type[6:])}"
    if notification_type == "payment_settled":
        return f"{data.get('amount')} has been transferred to your account"
    return NOTIFICATION_TITLES.get(notification_type, notification_type)


def notify(user_id: int, notification_type: str, payload: dict | None = None) -> Notification | None:
    """
    Record and dispatch a notification. Never raises.
    """
    data = _jsonable(payload)
    try:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=NOTIFICATION_TITLES.get(notification_type, notification_type)[:100],
            message=_message_for(notification_type, data)[:500],
            data=data,
            is_read=False,
            created_at=utcnow(),
        )
        db.session.add(notification)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Dropped %s notification for user %s", notification_type, user_id, exc_info=True
        )
        return None

    for dispatcher in current_app.extensions.get("notification_dispatchers", []):
        try:
            dispatcher(notification)
        except Exception:
            current_app.logger.warning(
                "Notification dispatcher %r failed for notification %s",
                dispatcher, notification.id, exc_info=True,
            )

    return notification


def list_notifications(user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.id.desc()).limit(min(limit, 100)).all()


def mark_read(user_id: int, notification_id: int) -> Notification:
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(user_id: int, now: datetime | None = None) -> int:
    """Mark every unread notification of the user as read. Returns the count."""
    count = (
        db.session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({"is_read": True, "read_at": now or utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return count


def delete_notification(user_id: int, notification_id: int) -> None:
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification not found")
    db.session.delete(notification)
    db.session.commit()
