"""
Branch inventory tests.
"""

import pytest

from backoffice.extensions import db
from backoffice.services import inventory_service
from backoffice.services.inventory_service import InsufficientStockError

from conftest import stock


class TestUpsert:

    def test_stock_manager_replaces_quantity(self, client, stock_headers, brake_pad):
        resp = client.post("/api/inventory", json={
            "product_id": brake_pad.id, "branch": "BranchB", "quantity": 42, "low_stock_threshold": 7,
        }, headers=stock_headers)
        assert resp.status_code == 200
        row = resp.get_json()["inventory"]
        assert (row["quantity"], row["low_stock_threshold"], row["is_low_stock"]) == (42, 7, False)
        assert stock(brake_pad.id, "BranchB") == 42

    def test_creates_missing_row(self, client, owner_headers, oil_filter):
        resp = client.post("/api/inventory", json={
            "product_id": oil_filter.id, "branch": "BranchB", "quantity": 3,
        }, headers=owner_headers)
        assert resp.status_code == 200
        assert stock(oil_filter.id, "BranchB") == 3

    def test_clerk_forbidden(self, client, clerk_headers, brake_pad):
        resp = client.post("/api/inventory", json={
            "product_id": brake_pad.id, "branch": "BranchA", "quantity": 1,
        }, headers=clerk_headers)
        assert resp.status_code == 403
        assert stock(brake_pad.id, "BranchA") == 10

    def test_unknown_product(self, client, stock_headers, db_session):
        resp = client.post("/api/inventory", json={
            "product_id": 999, "branch": "BranchA", "quantity": 1,
        }, headers=stock_headers)
        assert resp.status_code == 404

    def test_validation(self, client, stock_headers, brake_pad):
        resp = client.post("/api/inventory", json={
            "product_id": brake_pad.id, "branch": "Nowhere", "quantity": -1,
        }, headers=stock_headers)
        assert resp.status_code == 400
        fields = {err["field"] for err in resp.get_json()["errors"]}
        assert fields == {"branch", "quantity"}

    def test_non_object_body_rejected(self, client, stock_headers, brake_pad):
        resp = client.post("/api/inventory", json=[{"product_id": brake_pad.id}], headers=stock_headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Invalid JSON payload"


class TestReads:

    def test_every_branch_is_reported(self, client, clerk_headers, oil_filter):
        items = client.get(f"/api/inventory/{oil_filter.id}", headers=clerk_headers).get_json()["items"]
        assert [(i["branch"], i["quantity"]) for i in items] == [("BranchA", 20), ("BranchB", 0)]
        assert items[1]["id"] is None

    def test_unknown_product(self, client, clerk_headers, db_session):
        assert client.get("/api/inventory/999", headers=clerk_headers).status_code == 404

    def test_low_stock(self, client, clerk_headers, brake_pad, oil_filter):
        body = client.get("/api/inventory/low-stock?branch=BranchB", headers=clerk_headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["product_name"] == "Brake Pad"
        assert body["items"][0]["sku"] == "BP-001"

        body = client.get("/api/inventory/low-stock?branch=BranchA", headers=clerk_headers).get_json()
        assert body["count"] == 0

        assert client.get("/api/inventory/low-stock?branch=Mars", headers=clerk_headers).status_code == 400

    def test_low_stock_requires_auth(self, client, db_session):
        assert client.get("/api/inventory/low-stock").status_code == 401


class TestCounters:

    def test_decrement_refuses_to_go_negative(self, brake_pad):
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.decrement(brake_pad.id, "BranchB", 6)
        db.session.rollback()
        shortage = exc.value.details["shortages"][0]
        assert (shortage["requested"], shortage["available"]) == (6, 5)
        assert stock(brake_pad.id, "BranchB") == 5

    def test_check_availability_lists_all_shortages(self, brake_pad, oil_filter):
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.check_availability("BranchB", {brake_pad.id: 9, oil_filter.id: 1})
        names = [s["product_name"] for s in exc.value.details["shortages"]]
        assert sorted(names) == ["Brake Pad", "Oil Filter"]

    def test_restore_creates_row(self, oil_filter):
        inventory_service.restore(oil_filter.id, "BranchB", 4)
        db.session.commit()
        assert stock(oil_filter.id, "BranchB") == 4

        inventory_service.restore(oil_filter.id, "BranchB", 1)
        db.session.commit()
        assert stock(oil_filter.id, "BranchB") == 5

    def test_apply_deltas_is_signed(self, brake_pad, oil_filter):
        inventory_service.apply_deltas("BranchA", {brake_pad.id: 3, oil_filter.id: -2})
        db.session.commit()
        assert stock(brake_pad.id, "BranchA") == 7
        assert stock(oil_filter.id, "BranchA") == 22
