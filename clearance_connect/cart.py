"""Cart ledger: the customer's pending selection, guarded against stock.

The cart never reserves anything. Stock is re-read from the catalog on
every mutation and on every read, since the stored quantities may be
stale relative to concurrent orders.
"""
import datetime as dt
import logging
import os
from decimal import Decimal
from typing import Dict, List

from sqlalchemy.orm import Session

from . import crud
from .cart_store import Cart, CartEntry, CartStore
from .errors import InsufficientStock, LimitExceeded, NotFound, Unavailable, ValidationFailed
from .models import Product

logger = logging.getLogger(__name__)

MAX_QUANTITY_PER_ITEM = int(os.getenv("MAX_QUANTITY_PER_ITEM", "10"))


def _touch(store: CartStore, customer_id: int, cart: Cart) -> None:
    cart.updated_at = dt.datetime.now(dt.timezone.utc)
    store.save(customer_id, cart)


def _products_by_id(db: Session, product_ids: List[int]) -> Dict[int, Product]:
    if not product_ids:
        return {}
    rows = db.query(Product).filter(Product.id.in_(product_ids)).all()
    return {p.id: p for p in rows}


def add_item(db: Session, store: CartStore, customer_id: int, product_id: int, quantity: int) -> dict:
    product = crud.get_product(db, product_id)
    if not product:
        raise NotFound("Product not found")
    if product.status != crud.ACTIVE:
        raise Unavailable("Product is not available")
    if product.available < quantity:
        raise InsufficientStock(
            f"Only {product.available} items available in stock", available=product.available
        )

    cart = store.get(customer_id) or Cart()
    entry = cart.find(product_id)
    if entry is not None:
        new_quantity = entry.quantity + quantity
        if new_quantity > product.available:
            raise InsufficientStock(
                f"Cannot add {quantity} more items. "
                f"Only {product.available - entry.quantity} more available",
                available=product.available,
            )
        if new_quantity > MAX_QUANTITY_PER_ITEM:
            raise LimitExceeded(f"Maximum {MAX_QUANTITY_PER_ITEM} items allowed per product")
        entry.quantity = new_quantity
    else:
        if quantity > MAX_QUANTITY_PER_ITEM:
            raise LimitExceeded(f"Maximum {MAX_QUANTITY_PER_ITEM} items allowed per product")
        cart.items.append(CartEntry(product_id=product_id, quantity=quantity))

    _touch(store, customer_id, cart)

    crud.increment_cart_adds(db, product_id)
    return cart.counts()


def update_item(db: Session, store: CartStore, customer_id: int, product_id: int, quantity: int) -> dict:
    cart = store.get(customer_id)
    if cart is None:
        raise NotFound("Cart is empty")
    entry = cart.find(product_id)
    if entry is None:
        raise NotFound("Item not found in cart")

    if quantity == 0:
        cart.items.remove(entry)
    else:
        if quantity > MAX_QUANTITY_PER_ITEM:
            raise LimitExceeded(f"Maximum {MAX_QUANTITY_PER_ITEM} items allowed per product")
        product = crud.get_product(db, product_id)
        if not product:
            raise NotFound("Product not found")
        if product.available < quantity:
            raise InsufficientStock(
                f"Only {product.available} items available in stock", available=product.available
            )
        entry.quantity = quantity

    _touch(store, customer_id, cart)
    return cart.counts()


def remove_item(store: CartStore, customer_id: int, product_id: int) -> dict:
    cart = store.get(customer_id)
    if cart is None:
        raise NotFound("Cart is empty")
    entry = cart.find(product_id)
    if entry is None:
        raise NotFound("Item not found in cart")

    cart.items.remove(entry)
    _touch(store, customer_id, cart)
    return cart.counts()


def clear_cart(store: CartStore, customer_id: int) -> dict:
    store.delete(customer_id)
    return {"item_count": 0, "total_quantity": 0}


def validate_cart(db: Session, store: CartStore, customer_id: int) -> dict:
    """Re-check every entry against live stock.

    Does not modify the cart, so repeated calls agree until something changes.
    """
    cart = store.get(customer_id)
    if cart is None or not cart.items:
        raise ValidationFailed("Cart is empty")

    products = _products_by_id(db, [e.product_id for e in cart.items])
    valid_items = []
    errors = []
    for entry in cart.items:
        product = products.get(entry.product_id)
        if product is None:
            errors.append({"product_id": entry.product_id, "error": "Product not found"})
            continue
        if product.status != crud.ACTIVE:
            errors.append(
                {
                    "product_id": entry.product_id,
                    "product_name": product.name,
                    "error": "Product is no longer available",
                }
            )
            continue
        if product.available < entry.quantity:
            errors.append(
                {
                    "product_id": entry.product_id,
                    "product_name": product.name,
                    "error": f"Only {product.available} items available, but {entry.quantity} requested",
                }
            )
            continue
        valid_items.append(
            {
                "product_id": entry.product_id,
                "product_name": product.name,
                "quantity": entry.quantity,
                "price": float(product.sale_price),
                "available": True,
            }
        )

    return {
        "valid_items": valid_items,
        "errors": errors,
        "can_proceed_to_checkout": not errors,
    }


def read_cart(db: Session, store: CartStore, customer_id: int) -> dict:
    cart = store.get(customer_id) or Cart()
    products = _products_by_id(db, [e.product_id for e in cart.items])

    items = []
    subtotal = Decimal("0")
    for entry in cart.items:
        product = products.get(entry.product_id)
        # Missing or inactive products drop out of the view, not out of storage
        if product is None or product.status != crud.ACTIVE:
            continue
        line_total = Decimal(str(product.sale_price)) * entry.quantity
        subtotal += line_total
        items.append(
            {
                "product_id": product.id,
                "seller_id": product.seller_id,
                "name": product.name,
                "image": product.image_url,
                "price": float(product.sale_price),
                "original_price": float(product.original_price),
                "discount_percentage": product.discount_percentage,
                "quantity": entry.quantity,
                "total": float(line_total),
                "stock": product.available,
                "added_at": entry.added_at,
            }
        )

    totals = crud.calculate_totals(subtotal)
    return {
        "items": items,
        "summary": {
            "item_count": len(items),
            "total_quantity": sum(i["quantity"] for i in items),
            "subtotal": float(totals["subtotal"]),
            "shipping_cost": float(totals["shipping_cost"]),
            "tax": float(totals["tax"]),
            "total": float(totals["total"]),
            "free_shipping_threshold": float(crud.FREE_SHIPPING_THRESHOLD),
            "free_shipping_eligible": totals["subtotal"] >= crud.FREE_SHIPPING_THRESHOLD,
        },
        "updated_at": cart.updated_at,
    }


def checkout_items(db: Session, store: CartStore, customer_id: int) -> List[dict]:
    """Validated cart lines ready to become an order, or ValidationFailed."""
    result = validate_cart(db, store, customer_id)
    if not result["can_proceed_to_checkout"]:
        raise ValidationFailed("Cart validation failed", errors=result["errors"])
    return [{"product_id": i["product_id"], "quantity": i["quantity"]} for i in result["valid_items"]]
