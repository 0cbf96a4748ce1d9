# Overview: Order assembly, pricing, lifecycle transitions and cancellation.

"""
Order Assembly

Order Invariants (authoritative):
- Every line of an order belongs to the same seller.
- Unit prices are snapshots taken at creation (effective price, or the
  final_price of an accepted bargain) and never re-derived.
- total_amount  = subtotal + platform_fee + delivery_fee - discount
  seller_amount = subtotal - platform_fee
- Creating an order and decrementing stock for every line happen in ONE
  transaction: there is never an order without its stock movement, or a
  stock movement without its order. Cancellation reverses stock the same way.
- orderStatus only moves along ORDER_TRANSITIONS; every move appends one
  status history row.

Deadlines:
- A buyer may cancel while placed/confirmed and no more than
  ORDER_CANCELLATION_HOURS after creation (inclusive).
- Delivery opens a RETURN_WINDOW_DAYS return-eligibility window.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    Forbidden,
    InsufficientStock,
    InvalidState,
    InvalidTransition,
    MultiSeller,
    NotFound,
    Unavailable,
    ValidationError,
    WindowExpired,
)
from ..models import Bargain, Order, OrderLine, OrderStatusHistory, Product
from ..models.bargains import BARGAIN_ACCEPTED
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_OUT_FOR_DELIVERY,
    ORDER_PACKED,
    ORDER_PLACED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_COMPLETED,
    PAYMENT_METHOD_COD,
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
)
from ..models.users import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER
from ..validation import clean_text, parse_positive_int, paginate, quantize_money, require_fields
from localmart.time_utils import utcnow
from . import notification_service
from .catalog_service import adjust_stock, effective_price
from .concurrency import begin_write, lock_for_update, run_with_retry
from .sequence_service import SEQUENCE_ORDER, next_sequence_number
from .settlement_service import create_held_transaction


# Allowed forward moves. Anything absent here is an InvalidTransition.
ORDER_TRANSITIONS = {
    ORDER_PLACED: {ORDER_CONFIRMED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_PACKED, ORDER_CANCELLED},
    ORDER_PACKED: {ORDER_SHIPPED},
    ORDER_SHIPPED: {ORDER_OUT_FOR_DELIVERY},
    ORDER_OUT_FOR_DELIVERY: {ORDER_DELIVERED},
}

CANCELLABLE_STATUSES = (ORDER_PLACED, ORDER_CONFIRMED)

SHIPPING_FIELDS = ("name", "phone", "street", "city", "state", "pincode")


# =============================================================================
# PRICING
# =============================================================================

def compute_pricing(subtotal: Decimal, discount: Decimal = Decimal("0")) -> dict:
    """
    Platform fee and delivery for a subtotal.

    Delivery is free only when the subtotal is strictly above the
    threshold; a subtotal equal to the threshold still pays the flat fee.
    """
    config = current_app.config
    subtotal = quantize_money(Decimal(subtotal))
    fee_percent = Decimal(str(config.get("PLATFORM_FEE_PERCENT", "5")))
    threshold = Decimal(str(config.get("FREE_DELIVERY_THRESHOLD", "500")))
    flat_delivery = Decimal(str(config.get("DELIVERY_FEE", "50")))

    platform_fee = quantize_money(subtotal * fee_percent / Decimal("100"))
    delivery_fee = Decimal("0.00") if subtotal > threshold else quantize_money(flat_delivery)
    discount = quantize_money(Decimal(discount))

    return {
        "subtotal": subtotal,
        "platform_fee": platform_fee,
        "delivery_fee": delivery_fee,
        "discount": discount,
        "total_amount": subtotal + platform_fee + delivery_fee - discount,
        "seller_amount": subtotal - platform_fee,
    }


# =============================================================================
# PURE HELPERS
# =============================================================================

def _cancellation_window() -> timedelta:
    return timedelta(hours=current_app.config.get("ORDER_CANCELLATION_HOURS", 1))


def can_cancel(order: Order, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return (
        order.order_status in CANCELLABLE_STATUSES
        and now - order.created_at <= _cancellation_window()
    )


def can_return(order: Order, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return (
        order.order_status == ORDER_DELIVERED
        and order.return_eligible_until is not None
        and now <= order.return_eligible_until
    )


def serialize(order: Order, now: datetime | None = None, include_lines: bool = True) -> dict:
    data = order.to_dict(include_lines=include_lines)
    data["can_cancel"] = can_cancel(order, now)
    data["can_return"] = can_return(order, now)
    return data


def _record_status(order: Order, status: str, now: datetime, *, note=None, actor_id=None, location=None):
    db.session.add(OrderStatusHistory(
        order_id=order.id,
        status=status,
        note=note,
        actor_user_id=actor_id,
        location=location,
        created_at=now,
    ))


def _parse_shipping(address) -> dict:
    if not isinstance(address, dict):
        raise ValidationError("shipping_address is required", details={"field": "shipping_address"})
    require_fields(address, *SHIPPING_FIELDS)
    return {
        "ship_name": clean_text(address["name"], "name", max_length=120, required=True),
        "ship_phone": clean_text(address["phone"], "phone", max_length=20, required=True),
        "ship_street": clean_text(address["street"], "street", max_length=255, required=True),
        "ship_city": clean_text(address["city"], "city", max_length=120, required=True),
        "ship_state": clean_text(address["state"], "state", max_length=120, required=True),
        "ship_pincode": clean_text(address["pincode"], "pincode", max_length=12, required=True),
        "ship_landmark": clean_text(address.get("landmark"), "landmark", max_length=255),
    }


def _parse_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item", details={"field": "items"})

    parsed = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {idx} must be an object", details={"index": idx})
        if item.get("product_id") is None:
            raise ValidationError(f"Item {idx} missing product_id", details={"index": idx})
        bargain_id = item.get("bargain_id")
        parsed.append({
            "product_id": item["product_id"],
            "bargain_id": bargain_id,
            # Bargain lines default to the negotiated quantity
            "quantity": (
                parse_positive_int(item["quantity"], "quantity")
                if item.get("quantity") is not None
                else (None if bargain_id else 1)
            ),
            "size": clean_text(item.get("size"), "size", max_length=32),
            "color": clean_text(item.get("color"), "color", max_length=32),
        })
    return parsed


def _resolve_bargain(user, item: dict, product: Product) -> Bargain:
    bargain = lock_for_update(db.session.query(Bargain).filter_by(id=item["bargain_id"])).first()
    if bargain is None:
        raise NotFound("Bargain not found", details={"bargain_id": item["bargain_id"]})
    if bargain.buyer_id != user.id:
        raise Forbidden("This bargain belongs to another buyer")
    if bargain.product_id != product.id:
        raise ValidationError(
            "Bargain does not match the ordered product",
            details={"bargain_id": bargain.id, "product_id": product.id},
        )
    if bargain.status != BARGAIN_ACCEPTED:
        raise InvalidState("Only accepted bargains can be ordered", details={"status": bargain.status})

    used = db.session.query(OrderLine.id).filter(OrderLine.bargain_id == bargain.id).first()
    if used:
        raise InvalidState("This bargain has already been used in an order", details={"bargain_id": bargain.id})
    return bargain


# =============================================================================
# CREATE
# =============================================================================

def create_order(
    user,
    *,
    items,
    shipping_address,
    payment_method: str,
    now: datetime | None = None,
) -> Order:
    """
    Assemble, price and persist an order, committing its stock movement
    atomically with it.
    """
    if user.role != ROLE_BUYER:
        raise Forbidden("Only buyers can place orders")

    parsed_items = _parse_items(items)
    shipping = _parse_shipping(shipping_address)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method. Must be one of {list(PAYMENT_METHODS)}",
            details={"field": "payment_method"},
        )

    def _op():
        now_ = now or utcnow()
        begin_write()

        lines = []
        sellers = set()
        store_id = None
        for position, item in enumerate(parsed_items, start=1):
            product = db.session.get(Product, item["product_id"])
            if product is None or not product.is_active:
                raise Unavailable(
                    "Product not available",
                    details={"product_id": item["product_id"]},
                )

            quantity = item["quantity"]
            bargain = None
            if item["bargain_id"] is not None:
                bargain = _resolve_bargain(user, item, product)
                unit_price = bargain.final_price
                # The negotiated price only covers the negotiated quantity
                if quantity is not None and quantity != bargain.quantity:
                    raise ValidationError(
                        "Quantity must match the accepted bargain",
                        details={"bargain_id": bargain.id, "quantity": bargain.quantity},
                    )
                quantity = bargain.quantity
            else:
                unit_price = effective_price(product)

            if product.stock < quantity:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}",
                    details={
                        "product_id": product.id,
                        "available": product.stock,
                        "requested_quantity": quantity,
                    },
                )

            sellers.add(product.seller_id)
            if store_id is None:
                store_id = product.store_id

            lines.append(OrderLine(
                position=position,
                product_id=product.id,
                bargain_id=bargain.id if bargain else None,
                name=product.name,
                unit_price=unit_price,
                quantity=quantity,
                size=item["size"] or (bargain.selected_size if bargain else None),
                color=item["color"] or (bargain.selected_color if bargain else None),
                image_url=product.image_url,
            ))

        if len(sellers) > 1:
            raise MultiSeller(
                "All items in an order must be from the same seller",
                details={"seller_ids": sorted(sellers)},
            )

        pricing = compute_pricing(sum((line.line_total for line in lines), Decimal("0")))

        order = Order(
            order_number=next_sequence_number(sequence_type=SEQUENCE_ORDER, prefix="ORD"),
            buyer_id=user.id,
            seller_id=sellers.pop(),
            store_id=store_id,
            order_status=ORDER_PLACED,
            payment_method=payment_method,
            payment_status=PAYMENT_PENDING,
            created_at=now_,
            **pricing,
            **shipping,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            line.order_id = order.id
            db.session.add(line)
        _record_status(order, ORDER_PLACED, now_, note="Order placed", actor_id=user.id)

        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise InvalidState("This bargain has already been used in an order")

        for line in lines:
            adjust_stock(line.product_id, -line.quantity, line.quantity)

        db.session.commit()
        return order

    order = run_with_retry(_op)

    current_app.logger.info(
        "Order %s placed: buyer=%s seller=%s total=%s",
        order.order_number, order.buyer_id, order.seller_id, order.total_amount,
    )
    notification_service.notify(order.seller_id, "order_placed", {
        "order_id": order.id,
        "order_number": order.order_number,
        "total_amount": order.total_amount,
        "status": ORDER_PLACED,
    })
    return order


# =============================================================================
# TRANSITIONS
# =============================================================================

def _load_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFound("Order not found", details={"order_id": order_id})
    return order


def _apply_cancellation(order: Order, now: datetime, *, reason, actor_id) -> None:
    """Cancel and reverse stock inside the caller's transaction."""
    order.order_status = ORDER_CANCELLED
    order.cancelled_at = now
    order.cancel_reason = reason
    if order.payment_status == PAYMENT_COMPLETED:
        order.payment_status = PAYMENT_REFUNDED

    for line in order.lines:
        adjust_stock(line.product_id, line.quantity, -line.quantity)

    _record_status(order, ORDER_CANCELLED, now, note=reason or "Order cancelled", actor_id=actor_id)


def update_status(
    user,
    order_id: int,
    new_status: str,
    *,
    note: str | None = None,
    location: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Seller moves an order along the lifecycle.

    Delivery opens the return window; a cash-on-delivery order is paid at
    that moment, so its held settlement transaction is created here.
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of {list(ORDER_STATUSES)}",
            details={"field": "status"},
        )
    note = clean_text(note, "note", max_length=255)
    location = clean_text(location, "location", max_length=255)

    def _op():
        now_ = now or utcnow()
        begin_write()
        order = _load_locked(order_id)

        if order.seller_id != user.id:
            raise Forbidden("Not authorized to update this order")

        allowed = ORDER_TRANSITIONS.get(order.order_status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition from {order.order_status} to {new_status}",
                details={"from": order.order_status, "to": new_status, "allowed": sorted(allowed)},
            )

        if new_status == ORDER_CANCELLED:
            _apply_cancellation(order, now_, reason=note, actor_id=user.id)
        else:
            order.order_status = new_status
            if new_status == ORDER_DELIVERED:
                order.delivered_at = now_
                order.return_eligible_until = now_ + timedelta(
                    days=current_app.config.get("RETURN_WINDOW_DAYS", 7)
                )
                if order.payment_method == PAYMENT_METHOD_COD and order.payment_status == PAYMENT_PENDING:
                    order.payment_status = PAYMENT_COMPLETED
                    order.paid_at = now_
                    create_held_transaction(order, now_)
            _record_status(order, new_status, now_, note=note, actor_id=user.id, location=location)

        db.session.commit()
        return order

    order = run_with_retry(_op)

    notification_service.notify(order.buyer_id, f"order_{new_status}", {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": new_status,
    })
    return order


def cancel_order(user, order_id: int, *, reason: str | None = None, now: datetime | None = None) -> Order:
    """Buyer cancels within the cancellation window; stock is returned."""
    reason = clean_text(reason, "reason", max_length=255)

    def _op():
        now_ = now or utcnow()
        begin_write()
        order = _load_locked(order_id)

        if order.buyer_id != user.id:
            raise Forbidden("Not authorized to cancel this order")
        if order.order_status not in CANCELLABLE_STATUSES:
            raise InvalidState(
                "Order cannot be cancelled at this stage",
                details={"status": order.order_status},
            )
        if now_ - order.created_at > _cancellation_window():
            raise WindowExpired(
                "Cancellation window has expired",
                details={"created_at": order.created_at.isoformat()},
            )

        _apply_cancellation(order, now_, reason=reason, actor_id=user.id)
        db.session.commit()
        return order

    order = run_with_retry(_op)

    current_app.logger.info("Order %s cancelled by buyer %s", order.order_number, user.id)
    notification_service.notify(order.seller_id, "order_cancelled", {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": ORDER_CANCELLED,
        "reason": reason,
    })
    return order


# =============================================================================
# READS
# =============================================================================

def get_order(user, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", details={"order_id": order_id})
    if user.role != ROLE_ADMIN and user.id not in (order.buyer_id, order.seller_id):
        raise Forbidden("Not authorized to view this order")
    return order


def list_orders(
    user,
    *,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    now: datetime | None = None,
) -> dict:
    query = db.session.query(Order)
    if user.role == ROLE_BUYER:
        query = query.filter(Order.buyer_id == user.id)
    elif user.role == ROLE_SELLER:
        query = query.filter(Order.seller_id == user.id)

    if status:
        query = query.filter(Order.order_status == status)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())

    result = paginate(query, page, per_page)
    result["items"] = [serialize(o, now, include_lines=False) for o in result["items"]]
    return result
