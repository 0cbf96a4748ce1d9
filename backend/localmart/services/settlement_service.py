# Overview: Held seller proceeds and the scheduled release of those funds.

"""
Settlement Ledger

Settlement Invariants (authoritative):
- One transaction per paid order (unique order_id).
- net_amount = amount - platform_fee - processing_fee, recomputed by
  compute_net_amount() before the row is persisted.
- held -> transferred | failed, and only settlement_sweep() moves a row
  out of held. Transferred rows are never touched again.

Sweep semantics:
- Eligible rows are held rows created at least SETTLEMENT_HOLD_HOURS ago.
- Each row is processed in its own transaction. A payout error rolls back
  that row only, is logged, and leaves it held for the next run.
- A held row whose order was cancelled is marked failed and never paid.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import Forbidden
from ..models import Order, SettlementTransaction
from ..models.orders import ORDER_CANCELLED
from ..models.settlement import SETTLEMENT_FAILED, SETTLEMENT_HELD, SETTLEMENT_TRANSFERRED
from ..models.users import ROLE_ADMIN, ROLE_SELLER
from ..validation import quantize_money, paginate
from localmart.time_utils import utcnow
from . import notification_service
from .concurrency import begin_write, lock_for_update
from .sequence_service import SEQUENCE_SETTLEMENT, next_sequence_number


def compute_net_amount(amount: Decimal, platform_fee: Decimal, processing_fee: Decimal) -> Decimal:
    return quantize_money(Decimal(amount) - Decimal(platform_fee) - Decimal(processing_fee))


def compute_processing_fee(amount: Decimal) -> Decimal:
    percent = Decimal(str(current_app.config.get("PAYMENT_PROCESSING_FEE_PERCENT", "0")))
    return quantize_money(Decimal(amount) * percent / Decimal("100"))


def create_held_transaction(order: Order, now: datetime | None = None) -> SettlementTransaction:
    """
    Record the seller's proceeds for a paid order.

    Runs inside the caller's transaction (payment confirmation or COD
    delivery); nothing is committed here.
    """
    now = now or utcnow()
    processing_fee = compute_processing_fee(order.subtotal)

    txn = SettlementTransaction(
        transaction_number=next_sequence_number(sequence_type=SEQUENCE_SETTLEMENT, prefix="TXN"),
        order_id=order.id,
        seller_id=order.seller_id,
        buyer_id=order.buyer_id,
        amount=order.subtotal,
        platform_fee=order.platform_fee,
        processing_fee=processing_fee,
        net_amount=compute_net_amount(order.subtotal, order.platform_fee, processing_fee),
        payment_method=order.payment_method,
        status=SETTLEMENT_HELD,
        created_at=now,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def _resolve_gateway(gateway):
    if gateway is not None:
        return gateway
    return current_app.extensions["payout_gateway"]


def _settle_one(txn_id: int, now: datetime, gateway) -> str:
    """Process one held row in its own transaction. Returns the outcome."""
    begin_write()
    txn = lock_for_update(
        db.session.query(SettlementTransaction).filter_by(id=txn_id, status=SETTLEMENT_HELD)
    ).first()
    if txn is None:
        # Moved by a concurrent sweep
        db.session.rollback()
        return "skipped"

    if txn.order.order_status == ORDER_CANCELLED:
        txn.status = SETTLEMENT_FAILED
        txn.failure_reason = "Order was cancelled before settlement"
        db.session.commit()
        current_app.logger.info("Settlement %s failed: order cancelled", txn.transaction_number)
        return "failed"

    transfer_id = gateway.transfer(txn)

    txn.status = SETTLEMENT_TRANSFERRED
    txn.transfer_id = transfer_id
    txn.transfer_date = now
    db.session.commit()

    notification_service.notify(txn.seller_id, "payment_settled", {
        "transaction_number": txn.transaction_number,
        "order_id": txn.order_id,
        "amount": txn.net_amount,
        "transfer_id": transfer_id,
    })
    return "transferred"


def settlement_sweep(now: datetime | None = None, gateway=None) -> dict:
    """
    Release every held transaction past the hold window.

    Safe to run repeatedly and alongside live traffic: rows are re-checked
    under lock, and a row already moved is counted as skipped.
    """
    now = now or utcnow()
    gateway = _resolve_gateway(gateway)
    cutoff = now - timedelta(hours=current_app.config.get("SETTLEMENT_HOLD_HOURS", 24))

    txn_ids = [
        row.id
        for row in db.session.query(SettlementTransaction.id)
        .filter(
            SettlementTransaction.status == SETTLEMENT_HELD,
            SettlementTransaction.created_at <= cutoff,
        )
        .order_by(SettlementTransaction.id.asc())
        .all()
    ]
    db.session.rollback()

    summary = {"processed": len(txn_ids), "transferred": 0, "failed": 0, "skipped": 0}
    for txn_id in txn_ids:
        try:
            outcome = _settle_one(txn_id, now, gateway)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Settlement of transaction %s failed; left held", txn_id)
            outcome = "skipped"
        summary[outcome] += 1

    current_app.logger.info(
        "Settlement sweep: processed=%(processed)s transferred=%(transferred)s "
        "failed=%(failed)s skipped=%(skipped)s",
        summary,
    )
    return summary


def list_settlements(
    user,
    *,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(SettlementTransaction)
    if user.role == ROLE_SELLER:
        query = query.filter(SettlementTransaction.seller_id == user.id)
    elif user.role != ROLE_ADMIN:
        raise Forbidden("Only sellers can view settlements")

    if status:
        query = query.filter(SettlementTransaction.status == status)
    query = query.order_by(SettlementTransaction.created_at.desc(), SettlementTransaction.id.desc())

    result = paginate(query, page, per_page)
    result["items"] = [t.to_dict() for t in result["items"]]
    return result
