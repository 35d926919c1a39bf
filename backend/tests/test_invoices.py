"""
Invoice lifecycle tests.

Verifies:
- Totals, stock decrement and safe deposit on create
- All-or-nothing create when a branch runs short
- Edit deltas, branch switch and the one-cent adjustment threshold
- Delete and return give stock back and refund through the safe
- Only the author or an owner can touch an invoice
"""

import pytest

from backoffice.extensions import db
from backoffice.models import OperationLog, OutboxEvent, SafeTransaction, SalesInvoice
from backoffice.services import inventory_service
from backoffice.services.inventory_service import InsufficientStockError

from conftest import safe_balance, stock


def _safe_txs(safe_id):
    return (
        db.session.query(SafeTransaction)
        .filter_by(safe_id=safe_id)
        .order_by(SafeTransaction.id.asc())
        .all()
    )


# =============================================================================
# CREATE
# =============================================================================


class TestCreateInvoice:

    def test_amount_discount_totals_stock_and_safe(self, make_invoice, clerk_headers, brake_pad, safe):
        resp = make_invoice(
            clerk_headers,
            [(brake_pad, 2)],
            discount_type="amount",
            discount_value=1000,
            safe_id=safe.id,
        )
        invoice = resp.get_json()["invoice"]

        assert invoice["invoice_number"] == "INV-000001"
        assert invoice["subtotal_cents"] == 10000
        assert invoice["discount_amount_cents"] == 1000
        assert invoice["total_amount_cents"] == 9000
        assert invoice["payment_status"] == "paid"
        assert invoice["paid_amount_cents"] == 9000
        assert invoice["remaining_amount_cents"] == 0
        assert invoice["items"][0]["product_name"] == "Brake Pad"
        assert invoice["items"][0]["unit_price_cents"] == 5000

        assert stock(brake_pad.id, "BranchA") == 8
        assert stock(brake_pad.id, "BranchB") == 5

        txs = _safe_txs(safe.id)
        assert [(tx.type, tx.amount_lyd_cents, tx.reference_type) for tx in txs] == [
            ("deposit", 9000, "invoice"),
        ]
        assert txs[0].reference_id == str(invoice["id"])
        assert safe_balance(safe.id) == (0, 9000)

    def test_percentage_discount_and_service(self, make_invoice, clerk_headers, oil_filter):
        resp = make_invoice(
            clerk_headers,
            [(oil_filter, 3)],
            discount_type="percentage",
            discount_value=10,
            service_amount_cents=500,
        )
        invoice = resp.get_json()["invoice"]
        assert invoice["subtotal_cents"] == 4500
        assert invoice["discount_amount_cents"] == 450
        assert invoice["total_amount_cents"] == 4550
        assert invoice["discount_value"] == 10

    def test_discount_capped_at_subtotal(self, make_invoice, clerk_headers, oil_filter):
        resp = make_invoice(clerk_headers, [(oil_filter, 1)], discount_value=999999)
        invoice = resp.get_json()["invoice"]
        assert invoice["discount_amount_cents"] == 1500
        assert invoice["total_amount_cents"] == 0

    def test_unit_price_and_name_override_are_snapshots(self, client, clerk_headers, brake_pad):
        resp = client.post("/api/invoices", json={
            "customer_name": "Garage",
            "branch": "BranchA",
            "items": [{"product_id": brake_pad.id, "quantity": 1,
                       "unit_price_cents": 4200, "product_name": "Front pad"}],
        }, headers=clerk_headers)
        assert resp.status_code == 201
        item = resp.get_json()["invoice"]["items"][0]
        assert item["unit_price_cents"] == 4200
        assert item["product_name"] == "Front pad"

        brake_pad.price_cents = 9999
        db.session.commit()
        invoice_id = resp.get_json()["invoice"]["id"]
        again = client.get(f"/api/invoices/{invoice_id}", headers=clerk_headers).get_json()["invoice"]
        assert again["items"][0]["unit_price_cents"] == 4200

    def test_invoice_numbers_increase(self, make_invoice, clerk_headers, oil_filter):
        first = make_invoice(clerk_headers, [(oil_filter, 1)]).get_json()["invoice"]
        second = make_invoice(clerk_headers, [(oil_filter, 1)]).get_json()["invoice"]
        assert first["invoice_number"] == "INV-000001"
        assert second["invoice_number"] == "INV-000002"

    def test_repeated_product_lines_are_summed_for_stock(self, make_invoice, clerk_headers, brake_pad):
        make_invoice(clerk_headers, [(brake_pad, 3), (brake_pad, 4)])
        assert stock(brake_pad.id, "BranchA") == 3

    def test_credit_invoice_starts_unpaid_and_skips_safe(self, make_invoice, clerk_headers, brake_pad, safe):
        resp = make_invoice(clerk_headers, [(brake_pad, 4)], payment_type="credit", safe_id=safe.id)
        invoice = resp.get_json()["invoice"]
        assert invoice["payment_status"] == "unpaid"
        assert invoice["paid_amount_cents"] == 0
        assert invoice["remaining_amount_cents"] == 20000
        assert _safe_txs(safe.id) == []

    def test_audit_rows_written(self, make_invoice, clerk_headers, brake_pad, oil_filter):
        invoice = make_invoice(clerk_headers, [(brake_pad, 1), (oil_filter, 2)]).get_json()["invoice"]
        ops = [row.operation for row in db.session.query(OperationLog).filter_by(invoice_id=invoice["id"])]
        assert sorted(ops) == ["invoice_create", "invoice_create_item", "invoice_create_item"]


class TestCreateValidation:

    def test_reports_every_bad_field(self, client, clerk_headers, db_session):
        resp = client.post("/api/invoices", json={"branch": "Nowhere", "items": []}, headers=clerk_headers)
        assert resp.status_code == 400
        body = resp.get_json()
        fields = {err["field"] for err in body["errors"]}
        assert {"customer_name", "branch", "items"} <= fields

    def test_item_errors_name_their_position(self, client, clerk_headers, brake_pad):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [{"product_id": brake_pad.id, "quantity": 1}, {"product_id": brake_pad.id, "quantity": 0}],
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "items[1].quantity"

    @pytest.mark.parametrize("quantity", [1.5, "2.0", True, "1e3"])
    def test_non_integer_quantities_rejected(self, client, clerk_headers, brake_pad, quantity):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [{"product_id": brake_pad.id, "quantity": quantity}],
        }, headers=clerk_headers)
        assert resp.status_code == 400

    def test_percentage_over_100_rejected(self, client, clerk_headers, brake_pad):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [{"product_id": brake_pad.id, "quantity": 1}],
            "discount_type": "percentage",
            "discount_value": 150,
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "discount_value"

    def test_unknown_product(self, client, clerk_headers, db_session):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [{"product_id": 9999, "quantity": 1}],
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Unknown product"

    def test_inactive_safe_rejected(self, client, clerk_headers, brake_pad, safe):
        safe.is_active = False
        db.session.commit()
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [{"product_id": brake_pad.id, "quantity": 1}],
            "safe_id": safe.id,
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert stock(brake_pad.id, "BranchA") == 10


class TestInsufficientStock:

    def test_short_line_rolls_back_whole_invoice(self, client, clerk_headers, brake_pad, oil_filter, safe):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [
                {"product_id": brake_pad.id, "quantity": 3},
                {"product_id": oil_filter.id, "quantity": 21},
            ],
            "safe_id": safe.id,
        }, headers=clerk_headers)

        assert resp.status_code == 400
        details = resp.get_json()["details"]
        assert details["branch"] == "BranchA"
        assert details["shortages"] == [{
            "product_id": oil_filter.id,
            "product_name": "Oil Filter",
            "requested": 21,
            "available": 20,
        }]

        assert stock(brake_pad.id, "BranchA") == 10
        assert stock(oil_filter.id, "BranchA") == 20
        assert db.session.query(SalesInvoice).count() == 0
        assert db.session.query(OutboxEvent).count() == 0
        assert safe_balance(safe.id) == (0, 0)

    def test_missing_branch_row_counts_as_zero(self, client, clerk_headers, oil_filter):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchB",
            "items": [{"product_id": oil_filter.id, "quantity": 1}],
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert resp.get_json()["details"]["shortages"][0]["available"] == 0

    def test_failed_create_does_not_consume_a_number(self, client, make_invoice, clerk_headers, oil_filter):
        make_invoice(clerk_headers, [(oil_filter, 50)], expected_status=400)
        invoice = make_invoice(clerk_headers, [(oil_filter, 1)]).get_json()["invoice"]
        assert invoice["invoice_number"] == "INV-000001"

    def test_conditional_decrement_refuses_oversell(self, app, brake_pad):
        with pytest.raises(InsufficientStockError):
            inventory_service.decrement(brake_pad.id, "BranchA", 11)
        db.session.rollback()
        assert stock(brake_pad.id, "BranchA") == 10


# =============================================================================
# EDIT
# =============================================================================


class TestEditInvoice:

    def test_same_branch_applies_deltas_and_deposits_difference(
        self, client, make_invoice, clerk_headers, brake_pad, oil_filter, safe
    ):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)], safe_id=safe.id).get_json()["invoice"]

        resp = client.put(f"/api/invoices/{invoice['id']}", json={
            "customer_name": "Renamed",
            "items": [
                {"product_id": brake_pad.id, "quantity": 5},
                {"product_id": oil_filter.id, "quantity": 1},
            ],
        }, headers=clerk_headers)
        assert resp.status_code == 200
        edited = resp.get_json()["invoice"]
        assert edited["customer_name"] == "Renamed"
        assert edited["total_amount_cents"] == 26500

        assert stock(brake_pad.id, "BranchA") == 5
        assert stock(oil_filter.id, "BranchA") == 19

        txs = _safe_txs(safe.id)
        assert [(tx.type, tx.amount_lyd_cents, tx.reference_type) for tx in txs] == [
            ("deposit", 10000, "invoice"),
            ("deposit", 16500, "invoice_edit_add"),
        ]
        assert safe_balance(safe.id) == (0, 26500)

    def test_reducing_items_withdraws_difference(self, client, make_invoice, clerk_headers, brake_pad, safe):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)], safe_id=safe.id).get_json()["invoice"]

        resp = client.put(f"/api/invoices/{invoice['id']}", json={
            "items": [{"product_id": brake_pad.id, "quantity": 1}],
        }, headers=clerk_headers)
        assert resp.status_code == 200
        assert stock(brake_pad.id, "BranchA") == 9
        assert _safe_txs(safe.id)[-1].reference_type == "invoice_edit_return"
        assert safe_balance(safe.id) == (0, 5000)

    def test_kept_discount_is_reapplied(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(
            clerk_headers, [(brake_pad, 2)], discount_type="percentage", discount_value=10
        ).get_json()["invoice"]

        edited = client.put(f"/api/invoices/{invoice['id']}", json={
            "items": [{"product_id": brake_pad.id, "quantity": 4}],
        }, headers=clerk_headers).get_json()["invoice"]
        assert edited["subtotal_cents"] == 20000
        assert edited["discount_amount_cents"] == 2000
        assert edited["total_amount_cents"] == 18000

    def test_branch_switch_moves_all_stock(self, client, make_invoice, clerk_headers, brake_pad, safe):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)], safe_id=safe.id).get_json()["invoice"]

        resp = client.put(f"/api/invoices/{invoice['id']}", json={"branch": "BranchB"}, headers=clerk_headers)
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["branch"] == "BranchB"
        assert stock(brake_pad.id, "BranchA") == 10
        assert stock(brake_pad.id, "BranchB") == 3
        # Same total: no adjustment posting
        assert len(_safe_txs(safe.id)) == 1

    def test_branch_switch_short_in_new_branch_changes_nothing(
        self, client, make_invoice, clerk_headers, brake_pad
    ):
        invoice = make_invoice(clerk_headers, [(brake_pad, 6)]).get_json()["invoice"]

        resp = client.put(f"/api/invoices/{invoice['id']}", json={"branch": "BranchB"}, headers=clerk_headers)
        assert resp.status_code == 400
        assert stock(brake_pad.id, "BranchA") == 4
        assert stock(brake_pad.id, "BranchB") == 5
        assert db.session.get(SalesInvoice, invoice["id"]).branch == "BranchA"

    def test_one_cent_difference_posts_nothing(self, client, make_invoice, clerk_headers, oil_filter, safe):
        resp = client.post("/api/invoices", json={
            "customer_name": "x",
            "branch": "BranchA",
            "items": [{"product_id": oil_filter.id, "quantity": 1, "unit_price_cents": 1}],
            "safe_id": safe.id,
        }, headers=clerk_headers)
        invoice_id = resp.get_json()["invoice"]["id"]

        client.put(f"/api/invoices/{invoice_id}", json={
            "items": [{"product_id": oil_filter.id, "quantity": 2}],
        }, headers=clerk_headers)
        assert len(_safe_txs(safe.id)) == 1

        client.put(f"/api/invoices/{invoice_id}", json={
            "items": [{"product_id": oil_filter.id, "quantity": 4}],
        }, headers=clerk_headers)
        txs = _safe_txs(safe.id)
        assert len(txs) == 2
        assert txs[-1].amount_lyd_cents == 2

    def test_duplicate_products_rejected(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(clerk_headers, [(brake_pad, 1)]).get_json()["invoice"]
        resp = client.put(f"/api/invoices/{invoice['id']}", json={
            "items": [
                {"product_id": brake_pad.id, "quantity": 1},
                {"product_id": brake_pad.id, "quantity": 2},
            ],
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert stock(brake_pad.id, "BranchA") == 9

    def test_repeated_lines_collapse_into_one(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2), (brake_pad, 3)]).get_json()["invoice"]
        assert stock(brake_pad.id, "BranchA") == 5
        first_line_id = invoice["items"][0]["id"]

        resp = client.put(f"/api/invoices/{invoice['id']}", json={
            "items": [{"product_id": brake_pad.id, "quantity": 4}],
        }, headers=clerk_headers)
        assert resp.status_code == 200
        edited = resp.get_json()["invoice"]
        assert [(item["id"], item["quantity"]) for item in edited["items"]] == [(first_line_id, 4)]
        assert edited["total_amount_cents"] == 20000
        assert stock(brake_pad.id, "BranchA") == 6

    def test_other_clerk_forbidden_owner_allowed(
        self, client, make_invoice, clerk_headers, other_clerk_headers, owner_headers, brake_pad
    ):
        invoice = make_invoice(clerk_headers, [(brake_pad, 1)]).get_json()["invoice"]

        resp = client.put(f"/api/invoices/{invoice['id']}", json={"customer_name": "Hijack"},
                          headers=other_clerk_headers)
        assert resp.status_code == 403

        resp = client.put(f"/api/invoices/{invoice['id']}", json={"customer_name": "Owner fix"},
                          headers=owner_headers)
        assert resp.status_code == 200

    def test_missing_invoice(self, client, clerk_headers, db_session):
        resp = client.put("/api/invoices/999", json={"customer_name": "x"}, headers=clerk_headers)
        assert resp.status_code == 404


# =============================================================================
# DELETE
# =============================================================================


class TestDeleteInvoice:

    def test_restores_stock_and_withdraws(self, client, make_invoice, clerk_headers, brake_pad, oil_filter, safe):
        invoice = make_invoice(
            clerk_headers, [(brake_pad, 2), (oil_filter, 3)], safe_id=safe.id
        ).get_json()["invoice"]

        resp = client.delete(f"/api/invoices/{invoice['id']}", headers=clerk_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["deleted"] is True
        assert body["invoice_number"] == invoice["invoice_number"]

        assert stock(brake_pad.id, "BranchA") == 10
        assert stock(oil_filter.id, "BranchA") == 20
        assert safe_balance(safe.id) == (0, 0)
        assert _safe_txs(safe.id)[-1].reference_type == "invoice_delete"
        assert client.get(f"/api/invoices/{invoice['id']}", headers=clerk_headers).status_code == 404

    def test_credit_invoice_with_payments_cannot_be_deleted(
        self, client, make_invoice, clerk_headers, brake_pad
    ):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)], payment_type="credit").get_json()["invoice"]
        client.post("/api/credit/payments", json={"invoice_id": invoice["id"], "amount_cents": 1000},
                    headers=clerk_headers)

        resp = client.delete(f"/api/invoices/{invoice['id']}", headers=clerk_headers)
        assert resp.status_code == 400
        assert stock(brake_pad.id, "BranchA") == 8

    def test_other_clerk_forbidden(self, client, make_invoice, clerk_headers, other_clerk_headers, brake_pad):
        invoice = make_invoice(clerk_headers, [(brake_pad, 1)]).get_json()["invoice"]
        resp = client.delete(f"/api/invoices/{invoice['id']}", headers=other_clerk_headers)
        assert resp.status_code == 403
        assert stock(brake_pad.id, "BranchA") == 9


# =============================================================================
# RETURN
# =============================================================================


class TestReturnItems:

    def test_partial_return_prorates_amount_discount(
        self, client, make_invoice, clerk_headers, brake_pad, oil_filter, safe
    ):
        invoice = make_invoice(
            clerk_headers, [(brake_pad, 2), (oil_filter, 2)],
            discount_type="amount", discount_value=1300, safe_id=safe.id,
        ).get_json()["invoice"]
        assert invoice["total_amount_cents"] == 11700
        brake_line = next(i for i in invoice["items"] if i["product_id"] == brake_pad.id)

        resp = client.post(f"/api/invoices/{invoice['id']}/return", json={
            "return_items": [{"item_id": brake_line["id"], "quantity": 1}],
        }, headers=clerk_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["deleted"] is False
        assert body["refund_amount_cents"] == 4500
        returned = body["invoice"]
        assert returned["subtotal_cents"] == 8000
        assert returned["discount_amount_cents"] == 800
        assert returned["discount_value"] == 800
        assert returned["total_amount_cents"] == 7200

        assert stock(brake_pad.id, "BranchA") == 9
        assert safe_balance(safe.id) == (0, 7200)

    def test_partial_return_reapplies_percentage(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(
            clerk_headers, [(brake_pad, 2)], discount_type="percentage", discount_value=10
        ).get_json()["invoice"]

        body = client.post(f"/api/invoices/{invoice['id']}/return", json={
            "return_items": [{"item_id": invoice["items"][0]["id"], "quantity": 1}],
        }, headers=clerk_headers).get_json()
        assert body["refund_amount_cents"] == 4500
        assert body["invoice"]["total_amount_cents"] == 4500

    def test_full_return_deletes_invoice_and_refunds_total(
        self, client, make_invoice, clerk_headers, brake_pad, safe
    ):
        invoice = make_invoice(
            clerk_headers, [(brake_pad, 2)], discount_value=1000, safe_id=safe.id
        ).get_json()["invoice"]

        resp = client.post(f"/api/invoices/{invoice['id']}/return", json={
            "return_items": [{"item_id": invoice["items"][0]["id"], "quantity": 2}],
        }, headers=clerk_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body == {
            "deleted": True,
            "invoice_id": invoice["id"],
            "invoice_number": invoice["invoice_number"],
            "refund_amount_cents": 9000,
        }

        assert stock(brake_pad.id, "BranchA") == 10
        assert safe_balance(safe.id) == (0, 0)
        assert db.session.get(SalesInvoice, invoice["id"]) is None
        ops = {row.operation for row in db.session.query(OperationLog).filter_by(invoice_id=invoice["id"])}
        assert {"invoice_return_item", "invoice_return_full"} <= ops

    def test_cannot_return_more_than_sold(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)]).get_json()["invoice"]
        resp = client.post(f"/api/invoices/{invoice['id']}/return", json={
            "return_items": [{"item_id": invoice["items"][0]["id"], "quantity": 3}],
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Invalid return"
        assert stock(brake_pad.id, "BranchA") == 8

    def test_foreign_item_rejected(self, client, make_invoice, clerk_headers, brake_pad, oil_filter):
        first = make_invoice(clerk_headers, [(brake_pad, 1)]).get_json()["invoice"]
        second = make_invoice(clerk_headers, [(oil_filter, 1)]).get_json()["invoice"]
        resp = client.post(f"/api/invoices/{first['id']}/return", json={
            "return_items": [{"item_id": second["items"][0]["id"], "quantity": 1}],
        }, headers=clerk_headers)
        assert resp.status_code == 400

    def test_credit_return_below_paid_rejected(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)], payment_type="credit").get_json()["invoice"]
        client.post("/api/credit/payments", json={"invoice_id": invoice["id"], "amount_cents": 8000},
                    headers=clerk_headers)

        resp = client.post(f"/api/invoices/{invoice['id']}/return", json={
            "return_items": [{"item_id": invoice["items"][0]["id"], "quantity": 1}],
        }, headers=clerk_headers)
        assert resp.status_code == 400
        assert stock(brake_pad.id, "BranchA") == 8


# =============================================================================
# READS
# =============================================================================


class TestInvoiceReads:

    def test_list_is_scoped_to_author_unless_owner(
        self, client, make_invoice, clerk_headers, other_clerk_headers, owner_headers, oil_filter
    ):
        make_invoice(clerk_headers, [(oil_filter, 1)])
        make_invoice(clerk_headers, [(oil_filter, 1)])

        assert client.get("/api/invoices", headers=clerk_headers).get_json()["count"] == 2
        assert client.get("/api/invoices", headers=other_clerk_headers).get_json()["count"] == 0
        assert client.get("/api/invoices", headers=owner_headers).get_json()["count"] == 2

    def test_list_pagination_and_filters(self, client, make_invoice, clerk_headers, oil_filter):
        for _ in range(3):
            make_invoice(clerk_headers, [(oil_filter, 1)])
        make_invoice(clerk_headers, [(oil_filter, 1)], payment_type="credit")

        body = client.get("/api/invoices?page=1&per_page=2", headers=clerk_headers).get_json()
        assert body["count"] == 2
        assert body["pagination"]["total"] == 4
        assert body["pagination"]["has_next"] is True

        body = client.get("/api/invoices?payment_status=unpaid", headers=clerk_headers).get_json()
        assert body["count"] == 1

    def test_get_forbidden_for_other_clerk(
        self, client, make_invoice, clerk_headers, other_clerk_headers, oil_filter
    ):
        invoice = make_invoice(clerk_headers, [(oil_filter, 1)]).get_json()["invoice"]
        assert client.get(f"/api/invoices/{invoice['id']}", headers=other_clerk_headers).status_code == 403

    def test_metrics(self, client, make_invoice, clerk_headers, owner_headers, brake_pad, oil_filter):
        make_invoice(clerk_headers, [(brake_pad, 2)], discount_value=1000)
        make_invoice(clerk_headers, [(oil_filter, 1)])

        metrics = client.get("/api/invoices/metrics", headers=owner_headers).get_json()["metrics"]
        assert metrics["invoice_count"] == 2
        assert metrics["total_sales_cents"] == 10500
        assert metrics["total_items"] == 3
        assert metrics["average_order_value_cents"] == 5250
        assert metrics["by_branch"]["BranchA"]["invoice_count"] == 2
        assert metrics["by_branch"]["BranchB"]["invoice_count"] == 0

    def test_operations_follow_deleted_invoice_for_owner(
        self, client, make_invoice, clerk_headers, owner_headers, oil_filter
    ):
        invoice = make_invoice(clerk_headers, [(oil_filter, 1)]).get_json()["invoice"]
        body = client.get(f"/api/invoices/{invoice['id']}/operations", headers=clerk_headers).get_json()
        assert body["count"] == 2

        client.delete(f"/api/invoices/{invoice['id']}", headers=clerk_headers)
        assert client.get(f"/api/invoices/{invoice['id']}/operations", headers=clerk_headers).status_code == 404
        body = client.get(f"/api/invoices/{invoice['id']}/operations", headers=owner_headers).get_json()
        assert body["items"][-1]["operation"] == "invoice_delete"
