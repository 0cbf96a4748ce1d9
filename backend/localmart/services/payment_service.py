# Overview: Online payment confirmation; opens the settlement hold for paid orders.

"""
Payment confirmation

The gateway signs "<order_number>|<gateway_payment_id>" with the shared
PAYMENT_GATEWAY_SECRET using HMAC-SHA256. A verified confirmation marks the
order paid and creates its held settlement transaction in the same
database transaction. Cash-on-delivery orders are paid on delivery instead
(see order_service.update_status).
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import Forbidden, InvalidState, NotFound, ValidationError
from ..models import Order
from ..models.orders import ORDER_CANCELLED, PAYMENT_COMPLETED, PAYMENT_METHOD_COD
from ..validation import clean_text
from localmart.time_utils import utcnow
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .settlement_service import create_held_transaction


def sign_payment(order_number: str, gateway_payment_id: str) -> str:
    secret = current_app.config["PAYMENT_GATEWAY_SECRET"].encode("utf-8")
    body = f"{order_number}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret, body, hashlib.sha256).hexdigest()


def verify_signature(order_number: str, gateway_payment_id: str, signature: str) -> bool:
    expected = sign_payment(order_number, gateway_payment_id)
    return hmac.compare_digest(expected, signature or "")


def confirm_payment(
    user,
    order_id: int,
    *,
    gateway_payment_id: str,
    signature: str,
    now: datetime | None = None,
) -> Order:
    gateway_payment_id = clean_text(gateway_payment_id, "gateway_payment_id", max_length=128, required=True)
    signature = clean_text(signature, "signature", max_length=256, required=True)

    def _op():
        now_ = now or utcnow()
        begin_write()

        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFound("Order not found", details={"order_id": order_id})
        if order.buyer_id != user.id:
            raise Forbidden("Not authorized to pay for this order")
        if order.order_status == ORDER_CANCELLED:
            raise InvalidState("Cannot pay for a cancelled order")
        if order.payment_status == PAYMENT_COMPLETED:
            raise InvalidState("Order is already paid", details={"order_number": order.order_number})
        if order.payment_method == PAYMENT_METHOD_COD:
            raise InvalidState("Cash on delivery orders are paid on delivery")

        if not verify_signature(order.order_number, gateway_payment_id, signature):
            current_app.logger.warning(
                "Payment signature mismatch for order %s (payment %s)",
                order.order_number, gateway_payment_id,
            )
            raise ValidationError("Invalid payment signature", details={"field": "signature"})

        order.payment_status = PAYMENT_COMPLETED
        order.gateway_transaction_id = gateway_payment_id
        order.paid_at = now_
        create_held_transaction(order, now_)

        db.session.commit()
        return order

    order = run_with_retry(_op)

    current_app.logger.info("Payment %s confirmed for order %s", gateway_payment_id, order.order_number)
    notification_service.notify(order.buyer_id, "payment_received", {
        "order_id": order.id,
        "order_number": order.order_number,
        "amount": order.total_amount,
    })
    return order
