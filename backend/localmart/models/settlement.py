from __future__ import annotations

from ..extensions import db
from localmart.time_utils import to_utc_z


SETTLEMENT_HELD = "held"
SETTLEMENT_TRANSFERRED = "transferred"
SETTLEMENT_FAILED = "failed"


def _money(value):
    return str(value) if value is not None else None


class SettlementTransaction(db.Model):
    """
    Seller proceeds for one paid order, held for a cooling-off window.

    LIFECYCLE: held -> transferred | failed. Only the settlement sweep moves a
    row out of 'held'; transferred rows are never touched again.

    net_amount = amount - platform_fee - processing_fee, recomputed by
    settlement_service before every flush that changes an amount.
    """
    __tablename__ = "settlement_transactions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_settlement_transactions_order"),
        db.Index("ix_settlement_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(64), nullable=False, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    processing_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    net_amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SETTLEMENT_HELD, index=True)
    transfer_id = db.Column(db.String(128), nullable=True)
    transfer_date = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("settlement", uselist=False))
    seller = db.relationship("User", foreign_keys=[seller_id])

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "order_id": self.order_id,
            "seller_id": self.seller_id,
            "buyer_id": self.buyer_id,
            "amount": _money(self.amount),
            "platform_fee": _money(self.platform_fee),
            "processing_fee": _money(self.processing_fee),
            "net_amount": _money(self.net_amount),
            "payment_method": self.payment_method,
            "status": self.status,
            "transfer_id": self.transfer_id,
            "transfer_date": to_utc_z(self.transfer_date),
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
