# Overview: Flask API routes for seller settlement reads.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role
from ..errors import MarketplaceError
from ..models.users import ROLE_ADMIN, ROLE_SELLER
from ..services import settlement_service


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/settlements")


@settlements_bp.get("")
@require_auth
@require_role(ROLE_SELLER, ROLE_ADMIN)
def list_settlements_route():
    try:
        result = settlement_service.list_settlements(
            g.current_user,
            status=request.args.get("status"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
