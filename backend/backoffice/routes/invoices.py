# Overview: Flask API routes for sales invoices; parses input and returns JSON responses.

# backend/backoffice/routes/invoices.py
"""
Sales invoice API routes.

Create and return accept an idempotency key header (X-Idempotency-Key by
default). A replayed key answers 200 with the stored response; a key whose
first request is still running answers 200 with a "being processed" body.

After every successful write the outbox is dispatched so safe postings and
audit rows land right away; a failure there is logged and retried later,
never reported to the caller.
"""

from flask import Blueprint, current_app, request, jsonify, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..extensions import db
from ..models import SalesInvoice
from ..responses import error_response, internal_error
from ..services import audit_service, idempotency_service, invoice_service, outbox_service
from ..validation import ConflictError, ValidationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _run_guarded(scope: str, operation, success_status: int, log_message: str):
    """
    Run operation() under the request's idempotency key (if any).

    operation returns the JSON-ready response body.
    """
    key = request.headers.get(current_app.config["IDEMPOTENCY_HEADER"])
    try:
        guard = idempotency_service.acquire(key, scope)
    except (ValidationError, ConflictError) as e:
        return error_response(e)

    if not guard.acquired:
        return jsonify(guard.body), 200

    try:
        body = operation()
    except (ValidationError, ConflictError, ServiceError) as e:
        db.session.rollback()
        idempotency_service.release(key)
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        idempotency_service.release(key)
        return internal_error(log_message, e)

    idempotency_service.finalize(key, success_status, body)
    outbox_service.dispatch_after_commit()
    return jsonify(body), success_status


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Create invoice.

    Body: customer_name, branch, items[{product_id, quantity, product_name?,
    unit_price_cents?}], discount_type?, discount_value?, service_amount_cents?,
    safe_id?, payment_type?
    """
    payload = request.get_json(silent=True)

    def _op():
        invoice = invoice_service.create_invoice(payload, g.current_user)
        return {"invoice": invoice.to_dict()}

    return _run_guarded(f"invoice.create:{g.current_user.id}", _op, 201, "Failed to create invoice")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """
    Owners see all invoices; other staff see their own.

    Query params: branch, payment_status, payment_type, page, per_page
    """
    result = invoice_service.list_invoices(
        g.current_user,
        branch=request.args.get("branch"),
        payment_status=request.args.get("payment_status"),
        payment_type=request.args.get("payment_type"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@invoices_bp.get("/metrics")
@require_auth
def invoice_metrics_route():
    metrics = invoice_service.invoice_metrics(g.current_user, branch=request.args.get("branch"))
    return jsonify({"metrics": metrics}), 200


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.current_user)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@invoices_bp.put("/<int:invoice_id>")
@require_auth
def edit_invoice_route(invoice_id: int):
    """
    Partial update of customer_name, branch and/or items.

    items, when given, replaces the invoice lines (matched by product_id).
    """
    try:
        invoice = invoice_service.edit_invoice(invoice_id, request.get_json(silent=True), g.current_user)
        body = {"invoice": invoice.to_dict()}
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to edit invoice", e)

    outbox_service.dispatch_after_commit()
    return jsonify(body), 200


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
def delete_invoice_route(invoice_id: int):
    try:
        body = invoice_service.delete_invoice(invoice_id, g.current_user)
    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to delete invoice", e)

    outbox_service.dispatch_after_commit()
    body["message"] = "Invoice deleted"
    return jsonify(body), 200


@invoices_bp.post("/<int:invoice_id>/return")
@require_auth
def return_invoice_route(invoice_id: int):
    """
    Return goods.

    Body: return_items[{item_id, quantity}]
    Answers {"deleted": true, ...} when nothing is left on the invoice.
    """
    payload = request.get_json(silent=True)

    def _op():
        return invoice_service.return_items(invoice_id, payload, g.current_user).to_dict()

    return _run_guarded(f"invoice.return:{invoice_id}:{g.current_user.id}", _op, 200, "Failed to return invoice items")


@invoices_bp.get("/<int:invoice_id>/operations")
@require_auth
def invoice_operations_route(invoice_id: int):
    """Audit rows for an invoice. Rows outlive deleted invoices; only owners see those."""
    invoice = db.session.get(SalesInvoice, invoice_id)
    if invoice is None and not g.current_user.is_owner:
        return jsonify({"message": "Invoice not found"}), 404
    if invoice is not None:
        try:
            invoice_service.get_invoice(invoice_id, g.current_user)
        except ServiceError as e:
            return error_response(e)

    rows = audit_service.list_operations(invoice_id=invoice_id)
    return jsonify({"items": [row.to_dict() for row in rows], "count": len(rows)}), 200
