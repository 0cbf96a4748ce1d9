from __future__ import annotations

from ..extensions import db
from localmart.time_utils import to_utc_z


BARGAIN_PENDING = "pending"
BARGAIN_COUNTERED = "countered"
BARGAIN_ACCEPTED = "accepted"
BARGAIN_REJECTED = "rejected"
BARGAIN_EXPIRED = "expired"

ACTIVE_BARGAIN_STATUSES = (BARGAIN_PENDING, BARGAIN_COUNTERED)
TERMINAL_BARGAIN_STATUSES = (BARGAIN_ACCEPTED, BARGAIN_REJECTED, BARGAIN_EXPIRED)

SENDER_BUYER = "buyer"
SENDER_SELLER = "seller"


def _money(value):
    return str(value) if value is not None else None


class Bargain(db.Model):
    """
    Time-boxed price negotiation between one buyer and one seller for one product.

    LIFECYCLE:
        pending   -> countered | accepted | rejected | expired
        countered -> countered | accepted | rejected | expired
        accepted, rejected, expired are terminal

    original_price is a snapshot of the product's effective price at proposal
    time and is never re-derived. Rows are never deleted.
    """
    __tablename__ = "bargains"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_bargains_quantity_positive"),
        db.CheckConstraint("proposed_price < original_price", name="ck_bargains_proposed_below_original"),
        db.Index("ix_bargains_status_expires", "status", "expires_at"),
        db.Index("ix_bargains_buyer_product_status", "buyer_id", "product_id", "status"),
        # At most one active negotiation per buyer and product
        db.Index(
            "uq_bargains_active_buyer_product",
            "buyer_id",
            "product_id",
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'countered')"),
            postgresql_where=db.text("status IN ('pending', 'countered')"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    original_price = db.Column(db.Numeric(12, 2), nullable=False)
    proposed_price = db.Column(db.Numeric(12, 2), nullable=False)
    counter_offer = db.Column(db.Numeric(12, 2), nullable=True)
    final_price = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BARGAIN_PENDING, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    selected_size = db.Column(db.String(32), nullable=True)
    selected_color = db.Column(db.String(32), nullable=True)

    counter_count = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    messages = db.relationship(
        "BargainMessage",
        backref="bargain",
        lazy=True,
        order_by="BargainMessage.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Bargain id={self.id} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BARGAIN_STATUSES

    def to_dict(self, include_messages: bool = False) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "original_price": _money(self.original_price),
            "proposed_price": _money(self.proposed_price),
            "counter_offer": _money(self.counter_offer),
            "final_price": _money(self.final_price),
            "status": self.status,
            "quantity": self.quantity,
            "selected_size": self.selected_size,
            "selected_color": self.selected_color,
            "counter_count": self.counter_count,
            "expires_at": to_utc_z(self.expires_at),
            "accepted_at": to_utc_z(self.accepted_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


class BargainMessage(db.Model):
    """
    Append-only negotiation chat entry.

    IMMUTABLE: Rows are never updated or deleted.
    """
    __tablename__ = "bargain_messages"
    __table_args__ = (
        db.CheckConstraint("sender IN ('buyer', 'seller')", name="ck_bargain_messages_sender"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bargain_id = db.Column(db.Integer, db.ForeignKey("bargains.id"), nullable=False, index=True)
    sender = db.Column(db.String(8), nullable=False)
    text = db.Column(db.String(500), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bargain_id": self.bargain_id,
            "sender": self.sender,
            "text": self.text,
            "created_at": to_utc_z(self.created_at),
        }
