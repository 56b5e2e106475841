"""Tests for bearer token handling and the error envelope."""

import pytest

from clearance_connect.auth import (
    Admin,
    Customer,
    Seller,
    create_access_token,
    decode_actor,
)
from clearance_connect.errors import Unauthorized


@pytest.mark.parametrize("role, cls", [("customer", Customer), ("seller", Seller), ("admin", Admin)])
def test_decode_actor_roles(role, cls):
    token = create_access_token({"sub": 5, "role": role, "first_name": "Asha", "last_name": "Rao"})
    actor = decode_actor(token)
    assert isinstance(actor, cls)
    assert actor.id == 5
    assert actor.display_name == "Asha Rao"


def test_role_defaults_to_customer():
    assert isinstance(decode_actor(create_access_token({"sub": 5})), Customer)


def test_unknown_role_rejected():
    with pytest.raises(Unauthorized):
        decode_actor(create_access_token({"sub": 5, "role": "superuser"}))


def test_garbage_token_rejected():
    with pytest.raises(Unauthorized):
        decode_actor("not-a-token")


def test_expired_token_rejected():
    token = create_access_token({"sub": 5}, expires_minutes=-1)
    with pytest.raises(Unauthorized):
        decode_actor(token)


def test_missing_token_uses_envelope(client):
    response = client.get("/api/cart")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authentication required"}


def test_invalid_token_uses_envelope(client):
    response = client.get("/api/cart", headers={"Authorization": "Bearer broken"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
