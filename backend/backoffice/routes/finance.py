# Overview: Flask API routes for expenses, currency settlements and the financial summary; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_owner
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import expense_service, finance_service
from ..validation import ConflictError, ValidationError


finance_bp = Blueprint("finance", __name__, url_prefix="/api")


@finance_bp.get("/expense-categories")
@require_auth
def list_expense_categories_route():
    categories = expense_service.list_categories(include_inactive=request.args.get("include_inactive") == "true")
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)}), 200


@finance_bp.post("/expense-categories")
@require_auth
@require_owner
def create_expense_category_route():
    try:
        category = expense_service.create_category(request.get_json(silent=True))
        return jsonify({"category": category.to_dict()}), 201
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to create expense category", e)


@finance_bp.get("/expenses")
@require_auth
@require_owner
def list_expenses_route():
    expenses = expense_service.list_expenses(
        category_id=request.args.get("category_id", type=int),
        safe_id=request.args.get("safe_id", type=int),
    )
    return jsonify({
        "items": [e.to_dict() for e in expenses],
        "count": len(expenses),
    }), 200


@finance_bp.post("/expenses")
@require_auth
@require_owner
def create_expense_route():
    """
    Record an expense.

    Body: category_id, person_name, amount_cents, currency? (LYD | USD),
    direction? (outgoing | incoming), description?, safe_id?
    """
    try:
        expense = expense_service.create_expense(request.get_json(silent=True), g.current_user)
        return jsonify({"expense": expense.to_dict()}), 201
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to create expense", e)


@finance_bp.delete("/expenses/<int:expense_id>")
@require_auth
@require_owner
def delete_expense_route(expense_id: int):
    try:
        body = expense_service.delete_expense(expense_id, g.current_user)
        body["message"] = "Expense deleted"
        return jsonify(body), 200
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to delete expense", e)


@finance_bp.get("/currency-settlements")
@require_auth
@require_owner
def list_settlements_route():
    settlements = finance_service.list_settlements(safe_id=request.args.get("safe_id", type=int))
    return jsonify({"items": [tx.to_dict() for tx in settlements], "count": len(settlements)}), 200


@finance_bp.post("/currency-settlements")
@require_auth
@require_owner
def create_settlement_route():
    """
    Exchange or revalue currency inside a safe.

    Body: safe_id, type? (settlement | currency_adjustment), amount_usd_cents,
    amount_lyd_cents (both signed), exchange_rate?, description?
    """
    try:
        tx = finance_service.create_settlement(request.get_json(silent=True), g.current_user)
        return jsonify({"transaction": tx.to_dict()}), 201
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to create currency settlement", e)


@finance_bp.get("/financial-summary")
@require_auth
@require_owner
def financial_summary_route():
    return jsonify({"summary": finance_service.financial_summary()}), 200
