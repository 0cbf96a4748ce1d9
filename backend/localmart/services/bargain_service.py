# Overview: Price negotiation state machine; encapsulates business logic and database work.

"""
Bargain Service - buyer/seller price negotiation

Bargain Invariants (authoritative):
- proposed_price < original_price, and >= product.min_price when the
  product defines a floor.
- original_price is the product's effective price at proposal time and is
  never re-derived, so a mid-negotiation price edit changes nothing.
- Only the seller moves pending/countered forward; only expiry (the sweep
  or a lazy check on access) forces pending/countered -> expired.
- accepted, rejected and expired are terminal.
- final_price = counter_offer if set, else proposed_price; set only on accept.
- Each counter replaces counter_offer and pushes expires_at out to at
  least now + window; a counter never shortens the deadline.
- A state change and its message append commit together or not at all.

Time semantics:
- All deadline checks compare against one clock (time_utils.utcnow) or an
  explicit `now`, so lazy expiry and the sweep always agree.
- A bargain is overdue when now > expires_at.

Concurrency:
- Writes lock the row and rely on Bargain.version_id; a writer that lost
  the race retries, re-reads the new status and fails InvalidState.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    DuplicateActive,
    Expired,
    Forbidden,
    InvalidPrice,
    InvalidState,
    NotBargainable,
    NotFound,
    ValidationError,
)
from ..models import Bargain, BargainMessage, Product
from ..models.bargains import (
    ACTIVE_BARGAIN_STATUSES,
    BARGAIN_ACCEPTED,
    BARGAIN_COUNTERED,
    BARGAIN_EXPIRED,
    BARGAIN_PENDING,
    BARGAIN_REJECTED,
    SENDER_BUYER,
    SENDER_SELLER,
)
from ..models.users import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER
from ..validation import clean_text, parse_money, parse_positive_int, paginate
from localmart.time_utils import utcnow
from . import notification_service
from .catalog_service import effective_price
from .concurrency import begin_write, lock_for_update, run_with_retry


ACTION_ACCEPT = "accept"
ACTION_REJECT = "reject"
ACTION_COUNTER = "counter"
VALID_ACTIONS = (ACTION_ACCEPT, ACTION_REJECT, ACTION_COUNTER)


def _expiry_window() -> timedelta:
    return timedelta(hours=current_app.config.get("BARGAIN_EXPIRY_HOURS", 24))


def _message_max_length() -> int:
    return current_app.config.get("BARGAIN_MESSAGE_MAX_LENGTH", 500)


# =============================================================================
# PURE HELPERS
# =============================================================================

def is_overdue(bargain: Bargain, now: datetime) -> bool:
    return bargain.status in ACTIVE_BARGAIN_STATUSES and now > bargain.expires_at


def discount_percentage(bargain: Bargain) -> int:
    """Whole-percent discount of the best current price against original_price."""
    if bargain.final_price is not None:
        price = bargain.final_price
    elif bargain.counter_offer is not None:
        price = bargain.counter_offer
    else:
        price = bargain.proposed_price
    ratio = (bargain.original_price - price) / bargain.original_price * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def time_remaining(bargain: Bargain, now: datetime | None = None) -> timedelta:
    """Time left before expiry; zero for terminal or overdue bargains."""
    now = now or utcnow()
    if bargain.status not in ACTIVE_BARGAIN_STATUSES:
        return timedelta(0)
    return max(timedelta(0), bargain.expires_at - now)


def serialize(bargain: Bargain, now: datetime | None = None, include_messages: bool = False) -> dict:
    data = bargain.to_dict(include_messages=include_messages)
    data["discount_percentage"] = discount_percentage(bargain)
    data["time_remaining_seconds"] = int(time_remaining(bargain, now).total_seconds())
    return data


def _append_message(bargain: Bargain, sender: str, text: str, now: datetime) -> BargainMessage:
    message = BargainMessage(bargain_id=bargain.id, sender=sender, text=text, created_at=now)
    db.session.add(message)
    return message


def _sender_for(user, bargain: Bargain) -> str:
    if user.id == bargain.buyer_id:
        return SENDER_BUYER
    if user.id == bargain.seller_id:
        return SENDER_SELLER
    raise Forbidden("You do not have permission to access this bargain")


def _expire_locked(bargain: Bargain, now: datetime) -> None:
    """Persist the forced expiry, then report it."""
    bargain.status = BARGAIN_EXPIRED
    bargain.updated_at = now
    db.session.commit()
    raise Expired(
        "This bargain has expired",
        details={"bargain_id": bargain.id, "expires_at": bargain.expires_at.isoformat()},
    )


# =============================================================================
# PROPOSE
# =============================================================================

def propose(
    user,
    *,
    product_id: int,
    proposed_price,
    quantity=1,
    selected_size: str | None = None,
    selected_color: str | None = None,
    message: str | None = None,
    now: datetime | None = None,
) -> Bargain:
    """
    Buyer opens a negotiation on a product.

    Check order: role, product availability, bargainable flag, duplicate
    active bargain, price bounds.
    """
    if user.role != ROLE_BUYER:
        raise Forbidden("Only buyers can create bargain requests")

    proposed = parse_money(proposed_price, "proposed_price")
    quantity = parse_positive_int(quantity, "quantity", default=1)
    opening = clean_text(message, "message", max_length=_message_max_length())
    size = clean_text(selected_size, "selected_size", max_length=32)
    color = clean_text(selected_color, "selected_color", max_length=32)

    def _op():
        now_ = now or utcnow()
        begin_write()

        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFound("Product not found or not available", details={"product_id": product_id})

        if not product.is_bargainable:
            raise NotBargainable("This product is not available for bargaining")

        # Overdue negotiations should not block a fresh one
        _bulk_expire(now_, buyer_id=user.id, product_id=product.id)

        existing = (
            db.session.query(Bargain.id)
            .filter(
                Bargain.product_id == product.id,
                Bargain.buyer_id == user.id,
                Bargain.status.in_(ACTIVE_BARGAIN_STATUSES),
            )
            .first()
        )
        if existing:
            raise DuplicateActive(
                "You already have a pending bargain for this product",
                details={"bargain_id": existing.id},
            )

        current_price = effective_price(product)
        if proposed >= current_price:
            raise InvalidPrice(
                "Proposed price must be less than current price",
                details={"current_price": str(current_price)},
            )
        if product.min_price is not None and proposed < product.min_price:
            raise InvalidPrice(
                f"Minimum bargain price is {product.min_price}",
                details={"min_price": str(product.min_price)},
            )

        bargain = Bargain(
            product_id=product.id,
            buyer_id=user.id,
            seller_id=product.seller_id,
            original_price=current_price,
            proposed_price=proposed,
            status=BARGAIN_PENDING,
            quantity=quantity,
            selected_size=size,
            selected_color=color,
            counter_count=0,
            expires_at=now_ + _expiry_window(),
            created_at=now_,
            updated_at=now_,
        )
        db.session.add(bargain)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateActive("You already have a pending bargain for this product")

        if opening:
            _append_message(bargain, SENDER_BUYER, opening, now_)

        db.session.commit()
        return bargain, product.name

    bargain, product_name = run_with_retry(_op)

    notification_service.notify(bargain.seller_id, "bargain_received", {
        "bargain_id": bargain.id,
        "product_name": product_name,
        "proposed_price": bargain.proposed_price,
        "buyer_name": user.name,
    })
    return bargain


# =============================================================================
# RESPOND (seller)
# =============================================================================

def respond(
    user,
    bargain_id: int,
    *,
    action: str,
    counter_offer=None,
    message: str | None = None,
    now: datetime | None = None,
) -> Bargain:
    """
    Seller accepts, rejects or counters an active bargain.

    Expiry is checked on read, before the action: an overdue bargain is
    persisted as expired and the call fails with Expired.
    """
    if action not in VALID_ACTIONS:
        raise ValidationError(
            f"Invalid action: {action}. Must be one of {list(VALID_ACTIONS)}",
            details={"field": "action"},
        )
    if user.role != ROLE_SELLER:
        raise Forbidden("Only sellers can respond to bargains")

    note = clean_text(message, "message", max_length=_message_max_length())
    offer = None
    if action == ACTION_COUNTER:
        if counter_offer in (None, ""):
            raise ValidationError("Counter offer amount is required", details={"field": "counter_offer"})
        offer = parse_money(counter_offer, "counter_offer")

    def _op():
        now_ = now or utcnow()
        begin_write()

        bargain = lock_for_update(db.session.query(Bargain).filter_by(id=bargain_id)).first()
        if bargain is None:
            raise NotFound("Bargain not found", details={"bargain_id": bargain_id})
        if bargain.seller_id != user.id:
            raise Forbidden("You do not have permission to respond to this bargain")

        if bargain.status not in ACTIVE_BARGAIN_STATUSES:
            raise InvalidState(
                "This bargain is no longer active",
                details={"status": bargain.status},
            )

        if is_overdue(bargain, now_):
            _expire_locked(bargain, now_)

        if action == ACTION_ACCEPT:
            bargain.final_price = (
                bargain.counter_offer if bargain.counter_offer is not None else bargain.proposed_price
            )
            bargain.status = BARGAIN_ACCEPTED
            bargain.accepted_at = now_

        elif action == ACTION_REJECT:
            bargain.status = BARGAIN_REJECTED
            bargain.rejected_at = now_
            bargain.rejection_reason = note

        else:
            max_counters = current_app.config.get("BARGAIN_MAX_COUNTERS")
            if max_counters and bargain.counter_count >= max_counters:
                raise InvalidState(
                    f"Counter-offer limit of {max_counters} reached",
                    details={"counter_count": bargain.counter_count},
                )
            if offer <= bargain.proposed_price or offer > bargain.original_price:
                raise InvalidPrice(
                    "Counter offer must be above the proposed price and not above the original price",
                    details={
                        "proposed_price": str(bargain.proposed_price),
                        "original_price": str(bargain.original_price),
                    },
                )
            bargain.counter_offer = offer
            bargain.counter_count += 1
            bargain.status = BARGAIN_COUNTERED
            bargain.expires_at = max(bargain.expires_at, now_ + _expiry_window())

        bargain.updated_at = now_

        if note:
            _append_message(bargain, SENDER_SELLER, note, now_)

        db.session.commit()
        return bargain

    bargain = run_with_retry(_op)

    payload = {"bargain_id": bargain.id, "product_name": bargain.product.name}
    if action == ACTION_ACCEPT:
        payload["final_price"] = bargain.final_price
        notification_service.notify(bargain.buyer_id, "bargain_accepted", payload)
    elif action == ACTION_REJECT:
        payload["reason"] = bargain.rejection_reason
        notification_service.notify(bargain.buyer_id, "bargain_rejected", payload)
    else:
        payload["counter_offer"] = bargain.counter_offer
        payload["expires_at"] = bargain.expires_at
        notification_service.notify(bargain.buyer_id, "bargain_countered", payload)

    return bargain


# =============================================================================
# MESSAGES
# =============================================================================

def add_message(user, bargain_id: int, text: str, now: datetime | None = None) -> BargainMessage:
    """Either party appends to the log of a still-active bargain."""
    body = clean_text(text, "text", max_length=_message_max_length(), required=True)

    def _op():
        now_ = now or utcnow()
        begin_write()

        bargain = lock_for_update(db.session.query(Bargain).filter_by(id=bargain_id)).first()
        if bargain is None:
            raise NotFound("Bargain not found", details={"bargain_id": bargain_id})
        sender = _sender_for(user, bargain)

        if bargain.status not in ACTIVE_BARGAIN_STATUSES:
            raise InvalidState("This bargain is no longer active", details={"status": bargain.status})
        if is_overdue(bargain, now_):
            _expire_locked(bargain, now_)

        entry = _append_message(bargain, sender, body, now_)
        db.session.commit()
        recipient = bargain.seller_id if sender == SENDER_BUYER else bargain.buyer_id
        return entry, recipient

    entry, recipient = run_with_retry(_op)
    notification_service.notify(recipient, "bargain_message", {"bargain_id": bargain_id, "sender": entry.sender})
    return entry


# =============================================================================
# READS (with lazy expiry)
# =============================================================================

def get_bargain(user, bargain_id: int, now: datetime | None = None) -> Bargain:
    now_ = now or utcnow()
    bargain = db.session.get(Bargain, bargain_id)
    if bargain is None:
        raise NotFound("Bargain not found", details={"bargain_id": bargain_id})
    if user.role != ROLE_ADMIN:
        _sender_for(user, bargain)

    if is_overdue(bargain, now_):
        _bulk_expire(now_, bargain_id=bargain.id)
        db.session.commit()
        db.session.refresh(bargain)
    return bargain


def list_bargains(
    user,
    *,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    now: datetime | None = None,
) -> dict:
    now_ = now or utcnow()
    query = db.session.query(Bargain)

    if user.role == ROLE_BUYER:
        query = query.filter(Bargain.buyer_id == user.id)
        _bulk_expire(now_, buyer_id=user.id)
    elif user.role == ROLE_SELLER:
        query = query.filter(Bargain.seller_id == user.id)
        _bulk_expire(now_, seller_id=user.id)
    else:
        _bulk_expire(now_)
    db.session.commit()

    if status:
        query = query.filter(Bargain.status == status)
    query = query.order_by(Bargain.created_at.desc(), Bargain.id.desc())

    result = paginate(query, page, per_page)
    result["items"] = [serialize(b, now_) for b in result["items"]]
    return result


# =============================================================================
# EXPIRY SWEEP
# =============================================================================

def _bulk_expire(
    now: datetime,
    *,
    bargain_id: int | None = None,
    buyer_id: int | None = None,
    seller_id: int | None = None,
    product_id: int | None = None,
) -> int:
    """
    Conditional bulk transition of overdue active bargains to expired,
    inside the caller's transaction.

    The WHERE clause re-checks status, so a bargain accepted a moment ago
    is never overwritten; version_id is bumped so a concurrent ORM writer
    holding the old row fails and retries.
    """
    stmt = update(Bargain).where(
        Bargain.status.in_(ACTIVE_BARGAIN_STATUSES),
        Bargain.expires_at < now,
    )
    if bargain_id is not None:
        stmt = stmt.where(Bargain.id == bargain_id)
    if buyer_id is not None:
        stmt = stmt.where(Bargain.buyer_id == buyer_id)
    if seller_id is not None:
        stmt = stmt.where(Bargain.seller_id == seller_id)
    if product_id is not None:
        stmt = stmt.where(Bargain.product_id == product_id)

    stmt = stmt.values(
        status=BARGAIN_EXPIRED,
        updated_at=now,
        version_id=Bargain.version_id + 1,
    ).execution_options(synchronize_session=False)

    count = db.session.execute(stmt).rowcount
    if count:
        # Loaded copies still carry the old status and version
        db.session.expire_all()
    return count


def expire_overdue(now: datetime | None = None) -> int:
    """
    Expire every overdue pending/countered bargain. Idempotent: a second
    run finds nothing left to expire and returns 0.
    """
    now_ = now or utcnow()

    def _op():
        count = _bulk_expire(now_)
        db.session.commit()
        return count

    return run_with_retry(_op)
