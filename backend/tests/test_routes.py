"""
HTTP and CLI tests for LocalMart.

Drives the negotiate -> order -> pay -> fulfil flow through the API and
checks error bodies, the health endpoint and the scheduled-job commands.
"""

from decimal import Decimal

from localmart.extensions import db
from localmart.models import Bargain
from localmart.services import bargain_service, order_service, payment_service

from conftest import NOW, make_product


def _propose(client, headers, product_id, price):
    return client.post("/api/bargains", json={
        "product_id": product_id,
        "proposed_price": price,
        "message": "Can you do a better price?",
    }, headers=headers)


class TestBargainRoutes:
    def test_offer_below_floor_is_invalid_price(self, client, product, buyer_headers):
        resp = _propose(client, buyer_headers, product.id, "650")
        assert resp.status_code == 400
        assert resp.json["error"] == "InvalidPrice"

    def test_seller_cannot_propose(self, client, product, seller_headers):
        resp = _propose(client, seller_headers, product.id, "800")
        assert resp.status_code == 403
        assert resp.json["error"] == "Forbidden"

    def test_duplicate_offer_conflicts(self, client, product, buyer_headers):
        assert _propose(client, buyer_headers, product.id, "800").status_code == 201
        resp = _propose(client, buyer_headers, product.id, "850")
        assert resp.status_code == 409
        assert resp.json["error"] == "DuplicateActive"

    def test_negotiation_thread(self, client, product, buyer_headers, seller_headers):
        created = _propose(client, buyer_headers, product.id, "750")
        assert created.status_code == 201
        bargain = created.json["bargain"]
        assert bargain["status"] == "pending"
        assert bargain["discount_percentage"] == 25

        countered = client.post(f"/api/bargains/{bargain['id']}/respond", json={
            "action": "counter", "counter_offer": "850", "message": "Best I can do",
        }, headers=seller_headers)
        assert countered.status_code == 200
        assert countered.json["bargain"]["status"] == "countered"
        assert [m["sender"] for m in countered.json["bargain"]["messages"]] == ["buyer", "seller"]

        reply = client.post(f"/api/bargains/{bargain['id']}/messages", json={"text": "Deal if you ship today"},
                            headers=buyer_headers)
        assert reply.status_code == 201

        fetched = client.get(f"/api/bargains/{bargain['id']}", headers=seller_headers)
        assert fetched.status_code == 200
        assert len(fetched.json["bargain"]["messages"]) == 3

        listed = client.get("/api/bargains?status=countered", headers=buyer_headers)
        assert listed.json["count"] == 1

    def test_unknown_action_rejected(self, client, product, buyer_headers, seller_headers):
        bargain_id = _propose(client, buyer_headers, product.id, "800").json["bargain"]["id"]
        resp = client.post(f"/api/bargains/{bargain_id}/respond", json={"action": "haggle"},
                           headers=seller_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "ValidationError"


class TestOrderFlow:
    def test_bargain_to_delivery(self, client, product, shipping_address, buyer_headers, seller_headers):
        bargain_id = _propose(client, buyer_headers, product.id, "800").json["bargain"]["id"]
        accepted = client.post(f"/api/bargains/{bargain_id}/respond", json={"action": "accept"},
                               headers=seller_headers)
        assert Decimal(accepted.json["bargain"]["final_price"]) == Decimal("800")

        created = client.post("/api/orders", json={
            "items": [{"product_id": product.id, "bargain_id": bargain_id}],
            "shipping_address": shipping_address,
            "payment_method": "upi",
        }, headers=buyer_headers)
        assert created.status_code == 201
        order = created.json["order"]
        assert Decimal(order["pricing"]["subtotal"]) == Decimal("800")
        assert Decimal(order["pricing"]["total_amount"]) == Decimal("840")
        assert order["can_cancel"] is True

        paid = client.post(f"/api/orders/{order['id']}/payment", json={
            "gateway_payment_id": "pay_789",
            "signature": payment_service.sign_payment(order["order_number"], "pay_789"),
        }, headers=buyer_headers)
        assert paid.status_code == 200
        assert paid.json["order"]["payment_details"]["status"] == "completed"

        skipped = client.patch(f"/api/orders/{order['id']}/status", json={"status": "shipped"},
                               headers=seller_headers)
        assert skipped.status_code == 409
        assert skipped.json["error"] == "InvalidTransition"

        for status in ["confirmed", "packed", "shipped", "out_for_delivery", "delivered"]:
            resp = client.patch(f"/api/orders/{order['id']}/status", json={"status": status},
                                headers=seller_headers)
            assert resp.status_code == 200, resp.json

        assert resp.json["order"]["can_return"] is True

        settlements = client.get("/api/settlements", headers=seller_headers)
        assert settlements.json["count"] == 1
        assert settlements.json["items"][0]["status"] == "held"

        notifications = client.get("/api/notifications?unread=1", headers=buyer_headers)
        types = {n["type"] for n in notifications.json["items"]}
        assert {"bargain_accepted", "order_delivered"} <= types

    def test_mixed_sellers_rejected(self, client, product, other_store, shipping_address, buyer_headers):
        foreign = make_product(other_store, name="Brass Lamp")

        resp = client.post("/api/orders", json={
            "items": [{"product_id": product.id}, {"product_id": foreign.id}],
            "shipping_address": shipping_address,
            "payment_method": "cod",
        }, headers=buyer_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "MultiSeller"

    def test_buyer_cancels_own_order(self, client, product, shipping_address, buyer_headers):
        order_id = client.post("/api/orders", json={
            "items": [{"product_id": product.id, "quantity": 2}],
            "shipping_address": shipping_address,
            "payment_method": "cod",
        }, headers=buyer_headers).json["order"]["id"]

        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Changed my mind"},
                           headers=buyer_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["order_status"] == "cancelled"

        product_resp = client.get(f"/api/products/{product.id}")
        assert product_resp.json["product"]["stock"] == 5

    def test_unexpected_failure_is_500(self, client, buyer_headers, monkeypatch):
        def boom(user, order_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(order_service, "get_order", boom)

        resp = client.get("/api/orders/1", headers=buyer_headers)
        assert resp.status_code == 500
        assert resp.json["error"] == "Internal server error"


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["details"]["active_bargains"] == 0


class TestJobCommands:
    def test_expire_bargains_command(self, app, buyer, product):
        bargain = bargain_service.propose(buyer, product_id=product.id, proposed_price="800", now=NOW)

        runner = app.test_cli_runner()
        result = runner.invoke(args=["jobs", "expire-bargains", "--now", "2026-03-03T11:00:00Z"])

        assert "PASS Expired 1 bargain(s)" in result.output
        assert db.session.get(Bargain, bargain.id).status == "expired"

        again = runner.invoke(args=["jobs", "expire-bargains", "--now", "2026-03-03T11:00:00Z"])
        assert "PASS Expired 0 bargain(s)" in again.output

    def test_settle_command(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["jobs", "settle", "--now", "2026-03-03T11:00:00Z"])
        assert "processed=0" in result.output

    def test_bad_clock_rejected(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["jobs", "settle", "--now", "yesterday"])
        assert result.exit_code != 0
