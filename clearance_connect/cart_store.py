"""Per-customer cart storage.

The cart ledger only needs get/save/delete by customer id, so the backing
store is swappable: ``memory`` keeps carts in the process (they vanish on
restart), ``database`` keeps them in the ``cart_items`` table.
"""
from __future__ import annotations

import datetime as dt
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database import get_db
from .models import CartItem


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class CartEntry:
    product_id: int
    quantity: int
    added_at: dt.datetime = field(default_factory=_utcnow)


@dataclass
class Cart:
    items: List[CartEntry] = field(default_factory=list)
    updated_at: dt.datetime = field(default_factory=_utcnow)

    def find(self, product_id: int) -> Optional[CartEntry]:
        for entry in self.items:
            if entry.product_id == product_id:
                return entry
        return None

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_quantity(self) -> int:
        return sum(entry.quantity for entry in self.items)

    def counts(self) -> dict:
        return {"item_count": self.item_count, "total_quantity": self.total_quantity}


class CartStore(Protocol):
    def get(self, customer_id: int) -> Optional[Cart]: ...

    def save(self, customer_id: int, cart: Cart) -> None: ...

    def delete(self, customer_id: int) -> None: ...


class InMemoryCartStore:
    def __init__(self) -> None:
        self._carts: Dict[int, Cart] = {}
        self._lock = threading.Lock()

    def get(self, customer_id: int) -> Optional[Cart]:
        with self._lock:
            cart = self._carts.get(customer_id)
            if cart is None:
                return None
            # Callers mutate what they get back; hand out a copy
            return Cart(
                items=[CartEntry(e.product_id, e.quantity, e.added_at) for e in cart.items],
                updated_at=cart.updated_at,
            )

    def save(self, customer_id: int, cart: Cart) -> None:
        with self._lock:
            self._carts[customer_id] = cart

    def delete(self, customer_id: int) -> None:
        with self._lock:
            self._carts.pop(customer_id, None)


class SqlCartStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, customer_id: int) -> Optional[Cart]:
        rows = (
            self.db.query(CartItem)
            .filter(CartItem.customer_id == customer_id)
            .order_by(CartItem.id)
            .all()
        )
        if not rows:
            return None
        return Cart(
            items=[CartEntry(r.product_id, r.quantity, r.added_at) for r in rows],
            updated_at=max(r.updated_at for r in rows),
        )

    def save(self, customer_id: int, cart: Cart) -> None:
        existing = {
            row.product_id: row
            for row in self.db.query(CartItem).filter(CartItem.customer_id == customer_id).all()
        }
        wanted = {entry.product_id: entry for entry in cart.items}

        for product_id, row in existing.items():
            if product_id not in wanted:
                self.db.delete(row)

        for product_id, entry in wanted.items():
            row = existing.get(product_id)
            if row is None:
                self.db.add(
                    CartItem(
                        customer_id=customer_id,
                        product_id=product_id,
                        quantity=entry.quantity,
                        added_at=entry.added_at,
                        updated_at=cart.updated_at,
                    )
                )
            else:
                row.quantity = entry.quantity
                row.updated_at = cart.updated_at

        self.db.commit()

    def delete(self, customer_id: int) -> None:
        self.db.query(CartItem).filter(CartItem.customer_id == customer_id).delete(synchronize_session=False)
        self.db.commit()


CartStoreFactory = Callable[[Session], CartStore]


def build_cart_store_factory(backend: str) -> CartStoreFactory:
    backend = (backend or "database").strip().lower()
    if backend == "memory":
        store = InMemoryCartStore()
        return lambda db: store
    if backend == "database":
        return SqlCartStore
    raise ValueError(f"Unknown cart backend: {backend}")


def get_cart_store(request: Request, db: Session = Depends(get_db)) -> CartStore:
    return request.app.state.cart_store_factory(db)
