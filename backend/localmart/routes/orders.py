# Overview: Flask API routes for orders and payments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_role
from ..errors import MarketplaceError
from ..models.users import ROLE_BUYER, ROLE_SELLER
from ..services import order_service, payment_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Place an order.

    Body: items [{product_id, quantity?, size?, color?, bargain_id?}],
    shipping_address {name, phone, street, city, state, pincode, landmark?},
    payment_method.
    """
    try:
        data = request.get_json() or {}
        order = order_service.create_order(
            g.current_user,
            items=data.get("items"),
            shipping_address=data.get("shipping_address"),
            payment_method=data.get("payment_method"),
        )
        return jsonify({"order": order_service.serialize(order)}), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    try:
        result = order_service.list_orders(
            g.current_user,
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.current_user, order_id)
        return jsonify({"order": order_service.serialize(order)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_role(ROLE_SELLER)
def update_status_route(order_id: int):
    """Body: status, note?, location?"""
    try:
        data = request.get_json() or {}
        order = order_service.update_status(
            g.current_user,
            order_id,
            data.get("status"),
            note=data.get("note"),
            location=data.get("location"),
        )
        return jsonify({"order": order_service.serialize(order)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role(ROLE_BUYER)
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(g.current_user, order_id, reason=data.get("reason"))
        return jsonify({"order": order_service.serialize(order)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/payment")
@require_auth
@require_role(ROLE_BUYER)
def confirm_payment_route(order_id: int):
    """Body: gateway_payment_id, signature (HMAC-SHA256 from the gateway)."""
    try:
        data = request.get_json() or {}
        order = payment_service.confirm_payment(
            g.current_user,
            order_id,
            gateway_payment_id=data.get("gateway_payment_id"),
            signature=data.get("signature"),
        )
        return jsonify({"order": order_service.serialize(order)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500
