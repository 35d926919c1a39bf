"""
Product catalog tests.
"""

from conftest import stock


class TestProductReads:

    def test_cost_hidden_from_clerks(self, client, clerk_headers, stock_headers, brake_pad):
        clerk_view = client.get(f"/api/products/{brake_pad.id}", headers=clerk_headers).get_json()["product"]
        assert "cost_price_cents" not in clerk_view
        assert clerk_view["price_cents"] == 5000

        manager_view = client.get(f"/api/products/{brake_pad.id}", headers=stock_headers).get_json()["product"]
        assert manager_view["cost_price_cents"] == 3000

        items = client.get("/api/products", headers=clerk_headers).get_json()["items"]
        assert all("cost_price_cents" not in item for item in items)

    def test_search_and_category(self, client, clerk_headers, brake_pad, oil_filter):
        body = client.get("/api/products?search=of-0", headers=clerk_headers).get_json()
        assert [p["name"] for p in body["items"]] == ["Oil Filter"]

        body = client.get("/api/products?category=brakes", headers=clerk_headers).get_json()
        assert [p["name"] for p in body["items"]] == ["Brake Pad"]

    def test_pagination(self, client, clerk_headers, brake_pad, oil_filter):
        body = client.get("/api/products?page=1&per_page=1", headers=clerk_headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["name"] == "Brake Pad"
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["has_next"] is True

        body = client.get("/api/products?page=2&per_page=1", headers=clerk_headers).get_json()
        assert body["items"][0]["name"] == "Oil Filter"
        assert body["pagination"]["has_prev"] is True

    def test_inactive_hidden_by_default(self, client, stock_headers, brake_pad, oil_filter):
        client.patch(f"/api/products/{oil_filter.id}", json={"is_active": False}, headers=stock_headers)
        assert client.get("/api/products", headers=stock_headers).get_json()["count"] == 1
        assert client.get("/api/products?include_inactive=true", headers=stock_headers).get_json()["count"] == 2

    def test_unknown_product(self, client, clerk_headers, db_session):
        assert client.get("/api/products/999", headers=clerk_headers).status_code == 404


class TestProductWrites:

    def test_create_with_opening_stock(self, client, stock_headers, db_session):
        resp = client.post("/api/products", json={
            "name": "Spark Plug", "sku": "SP-9", "price_cents": 800, "cost_price_cents": 450,
            "branch": "BranchB", "initial_quantity": 12, "low_stock_threshold": 2,
        }, headers=stock_headers)
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["cost_price_cents"] == 450
        assert stock(product["id"], "BranchB") == 12
        assert stock(product["id"], "BranchA") == 0

    def test_create_validation(self, client, stock_headers, db_session):
        resp = client.post("/api/products", json={"price_cents": -1, "colour": "red"}, headers=stock_headers)
        assert resp.status_code == 400
        fields = {err["field"] for err in resp.get_json()["errors"]}
        assert {"name", "colour"} <= fields

    def test_duplicate_sku(self, client, stock_headers, brake_pad):
        resp = client.post("/api/products", json={"name": "Copy", "sku": "BP-001"}, headers=stock_headers)
        assert resp.status_code == 409

    def test_clerk_cannot_write(self, client, clerk_headers, brake_pad):
        assert client.post("/api/products", json={"name": "X"}, headers=clerk_headers).status_code == 403
        assert client.patch(f"/api/products/{brake_pad.id}", json={"price_cents": 1},
                            headers=clerk_headers).status_code == 403
        assert client.delete(f"/api/products/{brake_pad.id}", headers=clerk_headers).status_code == 403

    def test_patch(self, client, stock_headers, brake_pad, oil_filter):
        resp = client.patch(f"/api/products/{brake_pad.id}", json={"price_cents": 5500}, headers=stock_headers)
        assert resp.status_code == 200
        assert resp.get_json()["product"]["price_cents"] == 5500

        resp = client.patch(f"/api/products/{brake_pad.id}", json={"sku": "OF-001"}, headers=stock_headers)
        assert resp.status_code == 409

    def test_delete_unreferenced(self, client, stock_headers, oil_filter):
        resp = client.delete(f"/api/products/{oil_filter.id}", headers=stock_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/products/{oil_filter.id}", headers=stock_headers).status_code == 404
        assert stock(oil_filter.id, "BranchA") == 0

    def test_delete_refused_once_sold(self, client, make_invoice, clerk_headers, stock_headers, brake_pad):
        make_invoice(clerk_headers, [(brake_pad, 1)])
        resp = client.delete(f"/api/products/{brake_pad.id}", headers=stock_headers)
        assert resp.status_code == 409
