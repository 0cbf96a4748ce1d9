# Overview: Flask API routes for stores and products; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request, current_app, g

from ..decorators import require_auth, require_role
from ..errors import MarketplaceError
from ..models.users import ROLE_SELLER
from ..services import catalog_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _int_arg(name: str):
    value = request.args.get(name)
    return int(value) if value and value.isdigit() else None


@catalog_bp.post("/stores")
@require_auth
@require_role(ROLE_SELLER)
def create_store_route():
    data = request.get_json() or {}
    try:
        store = catalog_service.create_store(g.current_user, name=data.get("name"), city=data.get("city"))
        return jsonify({"store": store.to_dict()}), 201
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.get("/stores/<int:store_id>")
def get_store_route(store_id: int):
    try:
        store = catalog_service.get_store(store_id)
        return jsonify({"store": store.to_dict()}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.get("/products")
def list_products_route():
    """
    Public catalog listing. Optional filters: store_id, seller_id.
    Pagination: page, per_page (max 100).
    """
    try:
        result = catalog_service.list_products(
            store_id=_int_arg("store_id"),
            seller_id=_int_arg("seller_id"),
            page=_int_arg("page"),
            per_page=_int_arg("per_page"),
        )
        return jsonify(result), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id, require_active=True)
        return jsonify({"product": product.to_dict()}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.post("/stores/<int:store_id>/products")
@require_auth
@require_role(ROLE_SELLER)
def create_product_route(store_id: int):
    try:
        product = catalog_service.create_product(
            g.current_user,
            store_id=store_id,
            payload=request.get_json() or {},
        )
        return jsonify({"product": product.to_dict()}), 201
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.patch("/products/<int:product_id>")
@require_auth
@require_role(ROLE_SELLER)
def update_product_route(product_id: int):
    try:
        product = catalog_service.update_product(g.current_user, product_id, request.get_json() or {})
        return jsonify({"product": product.to_dict()}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
