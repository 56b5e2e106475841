"""Pytest fixtures for clearance_connect tests."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from clearance_connect.auth import create_access_token
from clearance_connect.cart_store import build_cart_store_factory
from clearance_connect.database import get_db, make_engine
from clearance_connect.main import app
from clearance_connect.models import Base, Product

CUSTOMER_ID = 1
OTHER_CUSTOMER_ID = 2
SELLER_ID = 100
OTHER_SELLER_ID = 101
ADMIN_ID = 900

ADDRESS = {
    "first_name": "Asha",
    "last_name": "Rao",
    "email": "asha@example.com",
    "phone": "9876543210",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


def auth_headers(user_id, role="customer", first_name="Asha", last_name="Rao"):
    token = create_access_token(
        {
            "sub": user_id,
            "role": role,
            "first_name": first_name,
            "last_name": last_name,
            "email": f"user{user_id}@example.com",
        }
    )
    return {"Authorization": f"Bearer {token}"}


def order_payload(items, payment_method="cod", **extra):
    payload = {
        "items": items,
        "shipping_address": ADDRESS,
        "payment": {"method": payment_method},
    }
    payload.update(extra)
    return payload


def stock_of(db, product_id):
    """(quantity, reserved, available) as currently stored."""
    db.expire_all()
    product = db.get(Product, product_id)
    return product.quantity, product.reserved, product.available


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(params=["database", "memory"])
def cart_backend(request, monkeypatch):
    monkeypatch.setattr(app.state, "cart_store_factory", build_cart_store_factory(request.param))
    return request.param


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers():
    return auth_headers(CUSTOMER_ID)


@pytest.fixture
def other_customer_headers():
    return auth_headers(OTHER_CUSTOMER_ID, first_name="Ravi", last_name="Kumar")


@pytest.fixture
def seller_headers():
    return auth_headers(SELLER_ID, role="seller", first_name="Meera", last_name="Traders")


@pytest.fixture
def other_seller_headers():
    return auth_headers(OTHER_SELLER_ID, role="seller", first_name="Dev", last_name="Outlet")


@pytest.fixture
def admin_headers():
    return auth_headers(ADMIN_ID, role="admin", first_name="Site", last_name="Admin")


@pytest.fixture
def make_product(db):
    def _make(
        quantity=5,
        reserved=0,
        sale_price="100.00",
        original_price="150.00",
        status="active",
        seller_id=SELLER_ID,
        name="Clearance Kettle",
    ):
        product = Product(
            seller_id=seller_id,
            name=name,
            description="Overstock item",
            image_url="https://img.example.com/kettle.jpg",
            category="kitchen",
            original_price=Decimal(original_price),
            sale_price=Decimal(sale_price),
            discount_percentage=0,
            quantity=quantity,
            reserved=reserved,
            available=quantity - reserved,
            status=status,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def place_order(client, customer_headers):
    def _place(product_id, quantity=1, headers=None, **extra):
        response = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product_id, "quantity": quantity}], **extra),
            headers=headers or customer_headers,
        )
        assert response.status_code == 201, response.json()
        return response.json()["data"]

    return _place
