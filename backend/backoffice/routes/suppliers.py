# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_owner
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import supplier_service
from ..validation import ConflictError, ValidationError


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
def list_suppliers_route():
    suppliers = supplier_service.list_suppliers(include_inactive=request.args.get("include_inactive") == "true")
    return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}), 200


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier_route(supplier_id: int):
    try:
        return jsonify({"supplier": supplier_service.get_supplier(supplier_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@suppliers_bp.post("")
@require_auth
@require_owner
def create_supplier_route():
    try:
        supplier = supplier_service.create_supplier(request.get_json(silent=True))
        return jsonify({"supplier": supplier.to_dict()}), 201
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to create supplier", e)


@suppliers_bp.patch("/<int:supplier_id>")
@require_auth
@require_owner
def update_supplier_route(supplier_id: int):
    try:
        supplier = supplier_service.update_supplier(supplier_id, request.get_json(silent=True))
        return jsonify({"supplier": supplier.to_dict()}), 200
    except (ValidationError, ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to update supplier", e)


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_owner
def delete_supplier_route(supplier_id: int):
    try:
        supplier_service.delete_supplier(supplier_id)
        return jsonify({"message": "Supplier deleted", "supplier_id": supplier_id}), 200
    except (ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to delete supplier", e)
