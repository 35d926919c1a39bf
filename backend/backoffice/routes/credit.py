# Overview: Flask API routes for credit sales and supplier debts; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_owner
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import credit_service, outbox_service
from ..validation import ValidationError


credit_bp = Blueprint("credit", __name__, url_prefix="/api/credit")


@credit_bp.post("/payments")
@require_auth
def record_payment_route():
    """
    Record a payment against a credit invoice.

    Body: invoice_id, amount_cents, payment_method?, safe_id?, description?
    """
    try:
        payment = credit_service.record_payment(request.get_json(silent=True), g.current_user)
        body = {"payment": payment.to_dict(), "invoice": payment.invoice.to_dict(include_items=False)}
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to record credit payment", e)

    outbox_service.dispatch_after_commit()
    return jsonify(body), 201


@credit_bp.get("/payments/<int:invoice_id>")
@require_auth
def list_payments_route(invoice_id: int):
    try:
        payments = credit_service.list_payments(invoice_id)
        return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)}), 200
    except ServiceError as e:
        return error_response(e)


@credit_bp.get("/invoices")
@require_auth
def list_credit_invoices_route():
    try:
        invoices = credit_service.list_credit_invoices(request.args.get("status"))
        return jsonify({"items": [inv.to_dict() for inv in invoices], "count": len(invoices)}), 200
    except ValidationError as e:
        return error_response(e)


@credit_bp.get("/summary")
@require_auth
def credit_summary_route():
    return jsonify({"summary": credit_service.credit_summary()}), 200


@credit_bp.get("/supplier-debts")
@require_auth
def supplier_debts_route():
    suppliers = credit_service.supplier_debts()
    return jsonify({
        "items": [s.to_dict() for s in suppliers],
        "count": len(suppliers),
        "total_owed_cents": sum(s.balance_owed_cents for s in suppliers),
    }), 200


@credit_bp.post("/supplier-payments")
@require_auth
@require_owner
def supplier_payment_route():
    """
    Pay down a supplier balance.

    Body: supplier_id, amount_cents, safe_id?, description?
    """
    try:
        supplier = credit_service.pay_supplier(request.get_json(silent=True), g.current_user)
        return jsonify({"supplier": supplier.to_dict()}), 201
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to record supplier payment", e)
