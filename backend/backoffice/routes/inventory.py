# Overview: Flask API routes for branch inventory; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_product_management
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import inventory_service
from ..validation import ValidationError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("")
@require_auth
@require_product_management
def upsert_inventory():
    """
    Create or replace the stock row for (product_id, branch).

    Body: product_id, branch, quantity, low_stock_threshold?
    """
    try:
        row = inventory_service.upsert_inventory(request.get_json(silent=True))
        return jsonify({"inventory": row.to_dict()}), 200
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to update inventory", e)


@inventory_bp.get("/low-stock")
@require_auth
def low_stock():
    try:
        items = inventory_service.list_low_stock(request.args.get("branch"))
        return jsonify({"items": items, "count": len(items)}), 200
    except ValidationError as e:
        return error_response(e)


@inventory_bp.get("/<int:product_id>")
@require_auth
def get_inventory(product_id: int):
    try:
        return jsonify({"items": inventory_service.get_branch_inventory(product_id)}), 200
    except ServiceError as e:
        return error_response(e)
