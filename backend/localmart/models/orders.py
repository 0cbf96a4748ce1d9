from __future__ import annotations

from ..extensions import db
from localmart.time_utils import to_utc_z


ORDER_PLACED = "placed"
ORDER_CONFIRMED = "confirmed"
ORDER_PACKED = "packed"
ORDER_SHIPPED = "shipped"
ORDER_OUT_FOR_DELIVERY = "out_for_delivery"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_RETURNED = "returned"

ORDER_STATUSES = (
    ORDER_PLACED,
    ORDER_CONFIRMED,
    ORDER_PACKED,
    ORDER_SHIPPED,
    ORDER_OUT_FOR_DELIVERY,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_RETURNED,
)

PAYMENT_METHODS = ("card", "upi", "netbanking", "wallet", "cod")
PAYMENT_METHOD_COD = "cod"

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"


def _money(value):
    return str(value) if value is not None else None


class Order(db.Model):
    """
    Priced, stock-committed order from one buyer to one seller.

    WHY single seller: settlement pays one seller per order, so every line
    must resolve to the same seller and store.

    Pricing is computed once at creation by order_service.compute_pricing:
        total_amount  = subtotal + platform_fee + delivery_fee - discount
        seller_amount = subtotal - platform_fee
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        db.Index("ix_orders_seller_status", "seller_id", "order_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-000042"), never regenerated
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Pricing breakdown (base currency units)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    seller_amount = db.Column(db.Numeric(12, 2), nullable=False)

    order_status = db.Column(db.String(24), nullable=False, default=ORDER_PLACED, index=True)

    # Shipping address snapshot
    ship_name = db.Column(db.String(120), nullable=False)
    ship_phone = db.Column(db.String(20), nullable=False)
    ship_street = db.Column(db.String(255), nullable=False)
    ship_city = db.Column(db.String(120), nullable=False)
    ship_state = db.Column(db.String(120), nullable=False)
    ship_pincode = db.Column(db.String(12), nullable=False)
    ship_landmark = db.Column(db.String(255), nullable=True)

    # Payment details
    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    gateway_transaction_id = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Timeline
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_eligible_until = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    store = db.relationship("Store")
    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.position")
    status_history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        order_by="OrderStatusHistory.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number} status={self.order_status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "store_id": self.store_id,
            "pricing": {
                "subtotal": _money(self.subtotal),
                "platform_fee": _money(self.platform_fee),
                "delivery_fee": _money(self.delivery_fee),
                "discount": _money(self.discount),
                "total_amount": _money(self.total_amount),
                "seller_amount": _money(self.seller_amount),
            },
            "order_status": self.order_status,
            "shipping_address": {
                "name": self.ship_name,
                "phone": self.ship_phone,
                "street": self.ship_street,
                "city": self.ship_city,
                "state": self.ship_state,
                "pincode": self.ship_pincode,
                "landmark": self.ship_landmark,
            },
            "payment_details": {
                "method": self.payment_method,
                "status": self.payment_status,
                "transaction_id": self.gateway_transaction_id,
                "paid_at": to_utc_z(self.paid_at),
            },
            "created_at": to_utc_z(self.created_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "return_eligible_until": to_utc_z(self.return_eligible_until),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["status_history"] = [entry.to_dict() for entry in self.status_history]
        return data


class OrderLine(db.Model):
    """Line item with a unit price snapshot taken at order creation."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_lines_quantity_positive"),
        # An accepted bargain can back at most one order line
        db.UniqueConstraint("bargain_id", name="uq_order_lines_bargain"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    bargain_id = db.Column(db.Integer, db.ForeignKey("bargains.id"), nullable=True)

    name = db.Column(db.String(200), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    product = db.relationship("Product")

    @property
    def line_total(self):
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "bargain_id": self.bargain_id,
            "name": self.name,
            "unit_price": _money(self.unit_price),
            "quantity": self.quantity,
            "line_total": _money(self.line_total),
            "size": self.size,
            "color": self.color,
            "image_url": self.image_url,
        }


class OrderStatusHistory(db.Model):
    """
    Append-only order status log. One row per transition, including the
    initial 'placed' entry.
    """
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "location": self.location,
            "timestamp": to_utc_z(self.created_at),
        }
