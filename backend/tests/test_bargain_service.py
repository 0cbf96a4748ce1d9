# Overview: Pytest coverage for the bargain negotiation state machine.

from datetime import timedelta
from decimal import Decimal

import pytest

from localmart.errors import (
    DuplicateActive,
    Expired,
    Forbidden,
    InvalidPrice,
    InvalidState,
    NotBargainable,
    NotFound,
    ValidationError,
)
from localmart.extensions import db
from localmart.models import Bargain, BargainMessage, Notification
from localmart.services import bargain_service

from conftest import NOW, make_product


def _propose(buyer, product, price="750", now=NOW, **kwargs):
    return bargain_service.propose(buyer, product_id=product.id, proposed_price=price, now=now, **kwargs)


# =============================================================================
# PROPOSE
# =============================================================================


class TestPropose:
    def test_below_floor_is_invalid_price(self, buyer, product):
        with pytest.raises(InvalidPrice):
            _propose(buyer, product, "650")
        assert db.session.query(Bargain).count() == 0

    def test_at_or_above_effective_price_is_invalid_price(self, buyer, product):
        with pytest.raises(InvalidPrice):
            _propose(buyer, product, "1000")

    def test_effective_price_uses_discount(self, buyer, store):
        discounted = make_product(store, price="1000", min_price="600", discount_price=Decimal("800"))
        with pytest.raises(InvalidPrice):
            _propose(buyer, discounted, "850")

        bargain = _propose(buyer, discounted, "700")
        assert bargain.original_price == Decimal("800")

    def test_creates_pending_with_deadline(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750", message="Would you take 750?")

        assert bargain.status == "pending"
        assert bargain.original_price == Decimal("1000")
        assert bargain.proposed_price == Decimal("750")
        assert bargain.seller_id == seller.id
        assert bargain.expires_at == NOW + timedelta(hours=24)
        assert [m.sender for m in bargain.messages] == ["buyer"]

        notes = db.session.query(Notification).filter_by(user_id=seller.id).all()
        assert [n.type for n in notes] == ["bargain_received"]

    def test_seller_cannot_propose(self, seller, product):
        with pytest.raises(Forbidden):
            _propose(seller, product)

    def test_inactive_product_not_found(self, buyer, store):
        hidden = make_product(store, is_active=False)
        with pytest.raises(NotFound):
            _propose(buyer, hidden)

    def test_not_bargainable(self, buyer, store):
        fixed = make_product(store, is_bargainable=False)
        with pytest.raises(NotBargainable):
            _propose(buyer, fixed)

    def test_duplicate_active(self, buyer, product):
        _propose(buyer, product, "750")
        with pytest.raises(DuplicateActive):
            _propose(buyer, product, "800")

    def test_other_buyer_may_negotiate_same_product(self, buyer, other_buyer, product):
        _propose(buyer, product, "750")
        assert _propose(other_buyer, product, "760").status == "pending"

    def test_overdue_bargain_does_not_block_new_proposal(self, buyer, product):
        first = _propose(buyer, product, "750")
        second = _propose(buyer, product, "800", now=NOW + timedelta(hours=25))

        assert second.status == "pending"
        assert db.session.get(Bargain, first.id).status == "expired"

    def test_non_positive_price_rejected(self, buyer, product):
        with pytest.raises(ValidationError):
            _propose(buyer, product, "0")


# =============================================================================
# RESPOND
# =============================================================================


class TestRespond:
    def test_negotiation_scenario(self, buyer, seller, product):
        """1000 list / 700 floor: 650 rejected, 750 pending, counter 850, accept at 850."""
        with pytest.raises(InvalidPrice):
            _propose(buyer, product, "650")

        bargain = _propose(buyer, product, "750")
        first_deadline = bargain.expires_at

        countered = bargain_service.respond(
            seller, bargain.id, action="counter", counter_offer="850", now=NOW + timedelta(hours=2)
        )
        assert countered.status == "countered"
        assert countered.counter_offer == Decimal("850")
        assert countered.counter_count == 1
        assert countered.expires_at == NOW + timedelta(hours=26)
        assert countered.expires_at > first_deadline

        accepted = bargain_service.respond(seller, bargain.id, action="accept", now=NOW + timedelta(hours=3))
        assert accepted.status == "accepted"
        assert accepted.final_price == Decimal("850")
        assert accepted.accepted_at == NOW + timedelta(hours=3)

        types = [n.type for n in db.session.query(Notification).filter_by(user_id=buyer.id).order_by(Notification.id)]
        assert types == ["bargain_countered", "bargain_accepted"]

    def test_accept_without_counter_uses_proposed_price(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        accepted = bargain_service.respond(seller, bargain.id, action="accept", now=NOW)
        assert accepted.final_price == Decimal("750")

    def test_terminal_bargain_rejects_further_responses(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        bargain_service.respond(seller, bargain.id, action="accept", now=NOW)

        for action in ("accept", "reject"):
            with pytest.raises(InvalidState):
                bargain_service.respond(seller, bargain.id, action=action, now=NOW)
        assert db.session.get(Bargain, bargain.id).final_price == Decimal("750")

    def test_reject_records_reason_and_message(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        rejected = bargain_service.respond(
            seller, bargain.id, action="reject", message="Too low for handloom", now=NOW
        )
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Too low for handloom"
        assert [m.sender for m in rejected.messages] == ["seller"]

    def test_multiple_counters_replace_offer(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        bargain_service.respond(seller, bargain.id, action="counter", counter_offer="900", now=NOW)
        second = bargain_service.respond(
            seller, bargain.id, action="counter", counter_offer="880", now=NOW + timedelta(hours=1)
        )
        assert second.counter_offer == Decimal("880")
        assert second.counter_count == 2

    def test_counter_requires_amount(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(ValidationError):
            bargain_service.respond(seller, bargain.id, action="counter", now=NOW)

    @pytest.mark.parametrize("offer", ["700", "1100"])
    def test_counter_outside_bounds_is_invalid_price(self, buyer, seller, product, offer):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(InvalidPrice):
            bargain_service.respond(seller, bargain.id, action="counter", counter_offer=offer, now=NOW)
        assert db.session.get(Bargain, bargain.id).status == "pending"

    def test_counter_cap(self, app, buyer, seller, product, monkeypatch):
        monkeypatch.setitem(app.config, "BARGAIN_MAX_COUNTERS", 1)
        bargain = _propose(buyer, product, "750")
        bargain_service.respond(seller, bargain.id, action="counter", counter_offer="900", now=NOW)
        with pytest.raises(InvalidState):
            bargain_service.respond(seller, bargain.id, action="counter", counter_offer="880", now=NOW)

    def test_unknown_action(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(ValidationError):
            bargain_service.respond(seller, bargain.id, action="haggle", now=NOW)

    def test_other_seller_forbidden(self, buyer, other_seller, product):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(Forbidden):
            bargain_service.respond(other_seller, bargain.id, action="accept", now=NOW)

    def test_buyer_cannot_respond(self, buyer, product):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(Forbidden):
            bargain_service.respond(buyer, bargain.id, action="accept", now=NOW)

    def test_missing_bargain(self, seller):
        with pytest.raises(NotFound):
            bargain_service.respond(seller, 9999, action="accept", now=NOW)

    def test_original_price_survives_product_edit(self, buyer, seller, product):
        from localmart.services import catalog_service

        bargain = _propose(buyer, product, "750")
        catalog_service.update_product(seller, product.id, {"price": "1200"})

        accepted = bargain_service.respond(seller, bargain.id, action="accept", now=NOW)
        assert accepted.original_price == Decimal("1000")


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpiry:
    def test_lazy_expiry_on_respond(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")

        with pytest.raises(Expired):
            bargain_service.respond(seller, bargain.id, action="accept", now=NOW + timedelta(hours=25))

        stored = db.session.get(Bargain, bargain.id)
        assert stored.status == "expired"
        assert stored.final_price is None

    def test_deadline_is_inclusive(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        accepted = bargain_service.respond(seller, bargain.id, action="accept", now=NOW + timedelta(hours=24))
        assert accepted.status == "accepted"

    def test_lazy_expiry_on_read(self, buyer, product):
        bargain = _propose(buyer, product, "750")
        fetched = bargain_service.get_bargain(buyer, bargain.id, now=NOW + timedelta(hours=30))
        assert fetched.status == "expired"

    def test_sweep_is_idempotent(self, buyer, other_buyer, seller, product):
        stale = _propose(buyer, product, "750")
        countered = _propose(other_buyer, product, "760")
        bargain_service.respond(seller, countered.id, action="counter", counter_offer="900", now=NOW + timedelta(hours=12))

        later = NOW + timedelta(hours=25)
        assert bargain_service.expire_overdue(later) == 1
        assert db.session.get(Bargain, stale.id).status == "expired"
        assert db.session.get(Bargain, countered.id).status == "countered"

        assert bargain_service.expire_overdue(later) == 0
        assert bargain_service.expire_overdue(NOW + timedelta(hours=40)) == 1
        assert db.session.get(Bargain, countered.id).status == "expired"

    def test_sweep_leaves_terminal_bargains(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        bargain_service.respond(seller, bargain.id, action="accept", now=NOW)

        assert bargain_service.expire_overdue(NOW + timedelta(days=3)) == 0
        assert db.session.get(Bargain, bargain.id).status == "accepted"


# =============================================================================
# MESSAGES, READS, HELPERS
# =============================================================================


class TestMessagesAndReads:
    def test_both_parties_can_message(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        bargain_service.add_message(buyer, bargain.id, "Is the colour fast?", now=NOW)
        bargain_service.add_message(seller, bargain.id, "Yes, vegetable dyes.", now=NOW)

        senders = [m.sender for m in db.session.query(BargainMessage).order_by(BargainMessage.id)]
        assert senders == ["buyer", "seller"]

    def test_stranger_cannot_message(self, buyer, other_buyer, product):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(Forbidden):
            bargain_service.add_message(other_buyer, bargain.id, "hello", now=NOW)

    def test_message_length_limit(self, buyer, product):
        bargain = _propose(buyer, product, "750")
        with pytest.raises(ValidationError):
            bargain_service.add_message(buyer, bargain.id, "x" * 501, now=NOW)

    def test_no_messages_on_closed_bargain(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        bargain_service.respond(seller, bargain.id, action="reject", now=NOW)
        with pytest.raises(InvalidState):
            bargain_service.add_message(buyer, bargain.id, "please?", now=NOW)

    def test_list_scoped_to_party(self, buyer, other_buyer, seller, product):
        _propose(buyer, product, "750")
        _propose(other_buyer, product, "760")

        assert bargain_service.list_bargains(buyer, now=NOW)["count"] == 1
        assert bargain_service.list_bargains(seller, now=NOW)["count"] == 2

    def test_list_filters_status_after_lazy_expiry(self, buyer, product):
        _propose(buyer, product, "750")
        result = bargain_service.list_bargains(buyer, status="expired", now=NOW + timedelta(hours=25))
        assert result["count"] == 1
        assert result["items"][0]["time_remaining_seconds"] == 0

    def test_helpers(self, buyer, seller, product):
        bargain = _propose(buyer, product, "750")
        assert bargain_service.discount_percentage(bargain) == 25
        assert bargain_service.time_remaining(bargain, NOW + timedelta(hours=20)) == timedelta(hours=4)

        bargain_service.respond(seller, bargain.id, action="counter", counter_offer="850", now=NOW)
        assert bargain_service.discount_percentage(db.session.get(Bargain, bargain.id)) == 15


def test_failing_dispatcher_does_not_undo_proposal(app, buyer, product):
    def broken(notification):
        raise RuntimeError("push provider down")

    app.extensions["notification_dispatchers"].append(broken)

    bargain = _propose(buyer, product, "750")
    assert db.session.get(Bargain, bargain.id).status == "pending"
    assert db.session.query(Notification).count() == 1
