# Overview: Flask API routes for stock purchases and accounting entries; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_owner, require_product_management
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import purchase_service
from ..validation import ValidationError


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api")


@purchases_bp.post("/stock-purchases")
@require_auth
@require_product_management
def create_purchase_route():
    """
    Receive stock.

    Body: product_id, branch, quantity, cost_per_unit_cents, purchase_type
    (paid_now | on_credit), currency?, exchange_rate?, supplier_id?, safe_id?,
    supplier_invoice_number?
    """
    try:
        purchase = purchase_service.create_purchase(request.get_json(silent=True), g.current_user)
        return jsonify({"purchase": purchase.to_dict()}), 201
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to record stock purchase", e)


@purchases_bp.get("/stock-purchases")
@require_auth
@require_product_management
def list_purchases_route():
    purchases = purchase_service.list_purchases(
        product_id=request.args.get("product_id", type=int),
        supplier_id=request.args.get("supplier_id", type=int),
    )
    return jsonify({"items": [p.to_dict() for p in purchases], "count": len(purchases)}), 200


@purchases_bp.get("/accounting-entries")
@require_auth
@require_owner
def list_accounting_entries_route():
    entries = purchase_service.list_accounting_entries(reference_type=request.args.get("reference_type"))
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200
