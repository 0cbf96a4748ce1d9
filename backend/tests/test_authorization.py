"""
Authorization tests for LocalMart.

Verifies:
- Unauthenticated requests return 401
- Registration, login, logout and /me
- Role-gated routes return 403 for the wrong role
"""

import pytest

from conftest import PASSWORD, auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("POST", "/api/stores"),
            ("POST", "/api/stores/1/products"),
            ("PATCH", "/api/products/1"),
            ("GET", "/api/bargains"),
            ("POST", "/api/bargains"),
            ("POST", "/api/bargains/1/respond"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("PATCH", "/api/orders/1/status"),
            ("POST", "/api/orders/1/cancel"),
            ("GET", "/api/settlements"),
            ("GET", "/api/notifications"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401


# =============================================================================
# REGISTRATION / LOGIN
# =============================================================================


class TestAuthFlow:
    def test_register_defaults_to_buyer(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Neha",
            "email": "Neha@Example.com",
            "password": PASSWORD,
        })
        assert resp.status_code == 201
        assert resp.json["user"]["role"] == "buyer"
        assert resp.json["user"]["email"] == "neha@example.com"

    def test_weak_password_rejected(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Neha", "email": "neha@example.com", "password": "short",
        })
        assert resp.status_code == 400
        assert resp.json["error"] == "ValidationError"

    def test_admin_cannot_self_register(self, client, db_session):
        resp = client.post("/api/auth/register", json={
            "name": "Mallory", "email": "mallory@example.com", "password": PASSWORD, "role": "admin",
        })
        assert resp.status_code == 400

    def test_duplicate_email_conflict(self, client, buyer):
        resp = client.post("/api/auth/register", json={
            "name": "Asha Again", "email": buyer.email, "password": PASSWORD,
        })
        assert resp.status_code == 409

    def test_bad_credentials(self, client, buyer):
        resp = client.post("/api/auth/login", json={"email": buyer.email, "password": "Wrong12345"})
        assert resp.status_code == 401

    def test_login_me_logout(self, client, buyer):
        token = get_auth_token(client, buyer.email)
        assert token

        me = client.get("/api/auth/me", headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json["user"]["id"] == buyer.id

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


# =============================================================================
# ROLE GATES (403)
# =============================================================================


class TestRoleGates:
    def test_buyer_cannot_open_store(self, client, buyer_headers):
        resp = client.post("/api/stores", json={"name": "Nope"}, headers=buyer_headers)
        assert resp.status_code == 403

    def test_buyer_cannot_view_settlements(self, client, buyer_headers):
        assert client.get("/api/settlements", headers=buyer_headers).status_code == 403

    def test_seller_cannot_cancel_as_buyer(self, client, seller_headers):
        assert client.post("/api/orders/1/cancel", headers=seller_headers).status_code == 403

    def test_buyer_cannot_move_order_status(self, client, buyer_headers):
        resp = client.patch("/api/orders/1/status", json={"status": "confirmed"}, headers=buyer_headers)
        assert resp.status_code == 403
