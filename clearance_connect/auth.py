import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .errors import Forbidden, Unauthorized

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY", "8f3b9e7a2c4d1f5e6a8b0c9d3e7f2a1b4c6d8e9f0a5b7c2d1e3f4a6b8c9d0e1f2")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Missing credentials are reported through the error envelope, not FastAPI's default 403
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller. Use one of the role subclasses."""

    id: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    role = "anonymous"

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Customer(Actor):
    role = "customer"


@dataclass(frozen=True)
class Seller(Actor):
    role = "seller"


@dataclass(frozen=True)
class Admin(Actor):
    role = "admin"


ROLES = {cls.role: cls for cls in (Customer, Seller, Admin)}


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    """Issue a token carrying ``sub``, ``role`` and display claims.

    Login lives in the identity service; this is used by tooling and tests.
    """
    to_encode = data.copy()
    to_encode["sub"] = str(to_encode["sub"])
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_actor(token: str) -> Actor:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")

    subject = payload.get("sub")
    actor_cls = ROLES.get(payload.get("role", "customer"))
    if subject is None or actor_cls is None:
        raise Unauthorized()
    try:
        actor_id = int(subject)
    except (TypeError, ValueError):
        raise Unauthorized()

    return actor_cls(
        id=actor_id,
        first_name=payload.get("first_name", ""),
        last_name=payload.get("last_name", ""),
        email=payload.get("email", ""),
    )


def get_current_actor(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Actor:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Authentication required")
    return decode_actor(credentials.credentials)


def get_current_seller(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not isinstance(actor, (Seller, Admin)):
        raise Forbidden("Seller access required")
    return actor


def get_current_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not isinstance(actor, Admin):
        raise Forbidden("Not enough permissions. Admin access required.")
    return actor


# -----------------------------
# Per-operation predicates
# -----------------------------


def can_view_order(actor: Actor, order) -> bool:
    return isinstance(actor, Admin) or order.customer_id == actor.id or actor.id in order.seller_ids


def can_update_order_status(actor: Actor, order) -> bool:
    # Any seller on the order may move it; there are no per-seller sub-orders
    return isinstance(actor, Admin) or (isinstance(actor, Seller) and actor.id in order.seller_ids)


def can_cancel_order(actor: Actor, order) -> bool:
    return order.customer_id == actor.id


def can_manage_product(actor: Actor, product) -> bool:
    return isinstance(actor, Admin) or (isinstance(actor, Seller) and product.seller_id == actor.id)
