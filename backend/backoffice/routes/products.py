# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/backoffice/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Any staff member can read products (cost price only for owner/stock_manager)
- Writes require owner or stock_manager
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_product_management
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import products_service
from ..validation import ConflictError, ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products.

    Query params:
    - search: matches name or SKU
    - category
    - include_inactive: "true" to include deactivated products
    - page / per_page: optional pagination (per_page default 20, max 100)
    """
    result = products_service.list_products(
        search=request.args.get("search"),
        category=request.args.get("category"),
        include_inactive=request.args.get("include_inactive") == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        include_cost=g.current_user.can_manage_products,
    )
    return jsonify(result), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    try:
        p = products_service.get_product(product_id)
        return jsonify({"product": p.to_dict(include_cost=g.current_user.can_manage_products)}), 200
    except ServiceError as e:
        return error_response(e)


@products_bp.post("")
@require_auth
@require_product_management
def create_product():
    """
    Create product.

    Body: name, sku?, category?, description?, price_cents?, cost_price_cents?,
    plus optional opening stock: branch, initial_quantity, low_stock_threshold.
    """
    try:
        p = products_service.create_product(request.get_json(silent=True))
        return jsonify({"product": p.to_dict()}), 201
    except (ValidationError, ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to create product", e)


@products_bp.patch("/<int:product_id>")
@require_auth
@require_product_management
def update_product(product_id: int):
    try:
        p = products_service.update_product(product_id, request.get_json(silent=True))
        return jsonify({"product": p.to_dict()}), 200
    except (ValidationError, ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to update product", e)


@products_bp.delete("/<int:product_id>")
@require_auth
@require_product_management
def delete_product(product_id: int):
    try:
        products_service.delete_product(product_id)
        return jsonify({"message": "Product deleted", "product_id": product_id}), 200
    except (ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to delete product", e)
