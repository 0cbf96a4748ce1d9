# Overview: Flask API routes for bargain negotiation; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import MarketplaceError
from ..services import bargain_service


bargains_bp = Blueprint("bargains", __name__, url_prefix="/api/bargains")


@bargains_bp.post("")
@require_auth
def create_bargain_route():
    """
    Buyer proposes a price.

    Body: product_id, proposed_price, quantity?, selected_size?,
    selected_color?, message?
    """
    try:
        data = request.get_json() or {}
        if not data.get("product_id"):
            return jsonify({"error": "ValidationError", "message": "product_id required"}), 400

        bargain = bargain_service.propose(
            g.current_user,
            product_id=data["product_id"],
            proposed_price=data.get("proposed_price"),
            quantity=data.get("quantity"),
            selected_size=data.get("selected_size"),
            selected_color=data.get("selected_color"),
            message=data.get("message"),
        )
        return jsonify({"bargain": bargain_service.serialize(bargain)}), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create bargain")
        return jsonify({"error": "Internal server error"}), 500


@bargains_bp.get("")
@require_auth
def list_bargains_route():
    try:
        page = request.args.get("page", type=int)
        per_page = request.args.get("per_page", type=int)
        result = bargain_service.list_bargains(
            g.current_user,
            status=request.args.get("status"),
            page=page,
            per_page=per_page,
        )
        return jsonify(result), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list bargains")
        return jsonify({"error": "Internal server error"}), 500


@bargains_bp.get("/<int:bargain_id>")
@require_auth
def get_bargain_route(bargain_id: int):
    try:
        bargain = bargain_service.get_bargain(g.current_user, bargain_id)
        return jsonify({"bargain": bargain_service.serialize(bargain, include_messages=True)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get bargain")
        return jsonify({"error": "Internal server error"}), 500


@bargains_bp.post("/<int:bargain_id>/respond")
@require_auth
def respond_bargain_route(bargain_id: int):
    """
    Seller response.

    Body: action (accept | reject | counter), counter_offer (counter only),
    message?
    """
    try:
        data = request.get_json() or {}
        bargain = bargain_service.respond(
            g.current_user,
            bargain_id,
            action=data.get("action"),
            counter_offer=data.get("counter_offer"),
            message=data.get("message"),
        )
        return jsonify({"bargain": bargain_service.serialize(bargain, include_messages=True)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to respond to bargain")
        return jsonify({"error": "Internal server error"}), 500


@bargains_bp.post("/<int:bargain_id>/messages")
@require_auth
def add_message_route(bargain_id: int):
    try:
        data = request.get_json() or {}
        message = bargain_service.add_message(g.current_user, bargain_id, data.get("text"))
        return jsonify({"message": message.to_dict()}), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add bargain message")
        return jsonify({"error": "Internal server error"}), 500
