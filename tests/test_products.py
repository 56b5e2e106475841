"""Tests for the catalog endpoints and the seller service client."""

import pytest
import requests

from clearance_connect import crud, external_services
from clearance_connect.auth import Customer
from clearance_connect.errors import NotFound, ServiceUnavailable, ValidationFailed
from clearance_connect.models import Product
from clearance_connect.routers import product_router

from .conftest import ADDRESS, SELLER_ID, stock_of

NEW_PRODUCT = {
    "name": "Clearance Blender",
    "description": "Last season model",
    "category": "kitchen",
    "original_price": "2000.00",
    "sale_price": "1500.00",
    "quantity": 4,
}


@pytest.fixture
def seller_approved(monkeypatch):
    monkeypatch.setattr(product_router, "is_seller_approved", lambda seller_id: True)


class TestCreateProduct:
    def test_new_product_waits_for_approval(self, client, seller_headers):
        response = client.post("/api/products", json=NEW_PRODUCT, headers=seller_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Product submitted for approval"
        data = body["data"]
        assert data["status"] == "pending_approval"
        assert data["seller_id"] == SELLER_ID
        assert data["discount_percentage"] == 25
        assert (data["quantity"], data["reserved"], data["available"]) == (4, 0, 4)

    def test_sale_price_above_original(self, client, seller_headers):
        payload = {**NEW_PRODUCT, "sale_price": "2500.00"}
        response = client.post("/api/products", json=payload, headers=seller_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"

    def test_customer_cannot_list_products(self, client, customer_headers):
        response = client.post("/api/products", json=NEW_PRODUCT, headers=customer_headers)
        assert response.status_code == 403


class TestApproveProduct:
    def test_admin_approves(self, client, seller_headers, admin_headers, seller_approved):
        created = client.post("/api/products", json=NEW_PRODUCT, headers=seller_headers).json()["data"]
        response = client.post(f"/api/products/{created['id']}/approve", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "active"

    def test_unapproved_seller(self, client, make_product, admin_headers, monkeypatch):
        monkeypatch.setattr(product_router, "is_seller_approved", lambda seller_id: False)
        product = make_product(status="pending_approval")
        response = client.post(f"/api/products/{product.id}/approve", headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Seller is not approved"

    def test_approving_an_active_product(self, client, make_product, admin_headers, seller_approved):
        product = make_product(status="active")
        response = client.post(f"/api/products/{product.id}/approve", headers=admin_headers)
        assert response.status_code == 400

    def test_only_admin_approves(self, client, make_product, seller_headers):
        product = make_product(status="pending_approval")
        response = client.post(f"/api/products/{product.id}/approve", headers=seller_headers)
        assert response.status_code == 403

    def test_approval_with_no_stock_is_sold_out(self, client, make_product, admin_headers, seller_approved):
        product = make_product(quantity=0, status="pending_approval")
        data = client.post(f"/api/products/{product.id}/approve", headers=admin_headers).json()["data"]
        assert data["status"] == "out_of_stock"


class TestManageProduct:
    def test_update_recomputes_discount(self, client, make_product, seller_headers):
        product = make_product(sale_price="100.00", original_price="200.00")
        response = client.patch(
            f"/api/products/{product.id}", json={"sale_price": "150.00"}, headers=seller_headers
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["sale_price"] == 150.0
        assert data["discount_percentage"] == 25

    def test_update_rejects_sale_above_original(self, client, make_product, seller_headers):
        product = make_product(sale_price="100.00", original_price="150.00")
        response = client.patch(
            f"/api/products/{product.id}", json={"sale_price": "180.00"}, headers=seller_headers
        )
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "sale_price"

    def test_other_seller_cannot_manage(self, client, make_product, other_seller_headers):
        product = make_product()
        response = client.patch(f"/api/products/{product.id}", json={"name": "Mine now"}, headers=other_seller_headers)
        assert response.status_code == 403
        assert response.json()["message"] == "You can only manage your own products"

    def test_admin_can_manage(self, client, make_product, admin_headers):
        product = make_product()
        response = client.patch(f"/api/products/{product.id}", json={"name": "Renamed"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Renamed"

    def test_stock_update_keeps_reservations(self, client, make_product, place_order, seller_headers, db):
        product = make_product(quantity=5)
        place_order(product.id, quantity=2)

        response = client.patch(f"/api/products/{product.id}/stock", json={"quantity": 8}, headers=seller_headers)
        assert response.status_code == 200
        assert stock_of(db, product.id) == (8, 2, 6)

    def test_stock_below_reserved(self, client, make_product, place_order, seller_headers, db):
        product = make_product(quantity=5)
        place_order(product.id, quantity=3)

        response = client.patch(f"/api/products/{product.id}/stock", json={"quantity": 2}, headers=seller_headers)
        assert response.status_code == 400
        assert stock_of(db, product.id) == (5, 3, 2)

    def test_stock_to_zero_and_back(self, client, make_product, seller_headers):
        product = make_product(quantity=5)
        data = client.patch(
            f"/api/products/{product.id}/stock", json={"quantity": 0}, headers=seller_headers
        ).json()["data"]
        assert data["status"] == "out_of_stock"
        data = client.patch(
            f"/api/products/{product.id}/stock", json={"quantity": 3}, headers=seller_headers
        ).json()["data"]
        assert data["status"] == "active"

    def test_soft_delete(self, client, make_product, seller_headers, db):
        product = make_product()
        response = client.delete(f"/api/products/{product.id}", headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "inactive"
        db.expire_all()
        assert db.get(Product, product.id) is not None

    def test_unknown_product(self, client, seller_headers):
        response = client.delete("/api/products/999", headers=seller_headers)
        assert response.status_code == 404


class TestStockAdjustmentRace:
    """An order reserves stock after the seller loaded the product."""

    def _reserve_elsewhere(self, session_factory, product_id, quantity):
        other = session_factory()
        try:
            crud.create_order(
                other,
                customer=Customer(id=2, first_name="Ravi"),
                items=[{"product_id": product_id, "quantity": quantity}],
                shipping_address=ADDRESS,
                payment_method="cod",
            )
        finally:
            other.close()

    def test_reservation_is_kept(self, db, session_factory, make_product):
        product = make_product(quantity=5)
        seller_view = crud.get_product(db, product.id)
        assert seller_view.reserved == 0

        self._reserve_elsewhere(session_factory, product.id, 2)
        updated = crud.set_product_stock(db, product.id, 10)

        assert (updated.quantity, updated.reserved, updated.available) == (10, 2, 8)
        assert stock_of(db, product.id) == (10, 2, 8)

    def test_new_reservation_blocks_lower_quantity(self, db, session_factory, make_product):
        product = make_product(quantity=5)
        crud.get_product(db, product.id)

        self._reserve_elsewhere(session_factory, product.id, 3)
        with pytest.raises(ValidationFailed, match=r"reserved stock \(3\)"):
            crud.set_product_stock(db, product.id, 2)

        assert stock_of(db, product.id) == (5, 3, 2)

    def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            crud.set_product_stock(db, 4242, 3)

    def test_sold_out_when_everything_is_reserved(self, db, session_factory, make_product):
        product = make_product(quantity=5)
        self._reserve_elsewhere(session_factory, product.id, 3)

        updated = crud.set_product_stock(db, product.id, 3)
        assert updated.status == "out_of_stock"
        assert stock_of(db, product.id) == (3, 3, 0)


class TestBrowseProducts:
    def test_list_shows_active_only(self, client, make_product):
        shown = make_product(name="Clearance Kettle")
        make_product(status="pending_approval", name="Clearance Lamp")
        make_product(status="inactive", name="Clearance Fan")

        data = client.get("/api/products").json()["data"]
        assert [p["id"] for p in data] == [shown.id]

    def test_search_and_category(self, client, make_product):
        kettle = make_product(name="Clearance Kettle")
        make_product(name="Clearance Lamp")

        data = client.get("/api/products", params={"search": "kettle"}).json()["data"]
        assert [p["id"] for p in data] == [kettle.id]
        assert client.get("/api/products", params={"category": "garden"}).json()["data"] == []

    def test_view_counts(self, client, make_product, db):
        product = make_product()
        client.get(f"/api/products/{product.id}")
        client.get(f"/api/products/{product.id}")
        db.expire_all()
        assert db.get(Product, product.id).views == 2

    def test_view_unknown_product(self, client):
        response = client.get("/api/products/999")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Product not found"}


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


class TestSellerService:
    def test_approved(self, monkeypatch):
        monkeypatch.setattr(
            external_services.requests, "get", lambda url, timeout: FakeResponse(200, {"status": "APPROVED"})
        )
        assert external_services.get_seller_status(SELLER_ID) == "approved"
        assert external_services.is_seller_approved(SELLER_ID) is True

    def test_pending(self, monkeypatch):
        monkeypatch.setattr(
            external_services.requests, "get", lambda url, timeout: FakeResponse(200, {"status": "pending"})
        )
        assert external_services.is_seller_approved(SELLER_ID) is False

    def test_unknown_seller(self, monkeypatch):
        monkeypatch.setattr(external_services.requests, "get", lambda url, timeout: FakeResponse(404))
        with pytest.raises(NotFound):
            external_services.get_seller_status(SELLER_ID)

    def test_unreachable(self, monkeypatch):
        def boom(url, timeout):
            raise requests.exceptions.ConnectionError("connection refused")

        monkeypatch.setattr(external_services.requests, "get", boom)
        with pytest.raises(ServiceUnavailable):
            external_services.get_seller_status(SELLER_ID)

    def test_server_error(self, monkeypatch):
        monkeypatch.setattr(
            external_services.requests, "get", lambda url, timeout: FakeResponse(500, text="boom")
        )
        with pytest.raises(ServiceUnavailable):
            external_services.get_seller_status(SELLER_ID)

    def test_approval_reports_unreachable_service(self, client, make_product, admin_headers, monkeypatch):
        def boom(url, timeout):
            raise requests.exceptions.Timeout("timed out")

        monkeypatch.setattr(external_services.requests, "get", boom)
        product = make_product(status="pending_approval")
        response = client.post(f"/api/products/{product.id}/approve", headers=admin_headers)
        assert response.status_code == 503
        assert response.json()["success"] is False
