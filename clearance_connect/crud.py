import datetime as dt
import logging
import os
import secrets
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import Actor, can_cancel_order, can_update_order_status
from .errors import (
    Forbidden,
    InsufficientStock,
    InvalidState,
    NotFound,
    ProductNotFound,
    ProductUnavailable,
    ValidationFailed,
)
from .models import Order, OrderItem, OrderTimelineEntry, Product
from .schemas import OrderStatus, PaymentMethod, ProductStatus

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "500"))
FLAT_SHIPPING_FEE = Decimal(os.getenv("FLAT_SHIPPING_FEE", "50"))
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.18"))

ACTIVE = ProductStatus.ACTIVE.value
OUT_OF_STOCK = ProductStatus.OUT_OF_STOCK.value

UPDATABLE_STATUSES = {
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
}
TERMINAL_STATUSES = {
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.RETURNED.value,
    OrderStatus.REFUNDED.value,
}
CANCELLABLE_STATUSES = {OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value}

ORDER_NUMBER_ATTEMPTS = 3


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _money(value) -> Decimal:
    return Decimal(str(value))


def calculate_totals(subtotal, discount=Decimal("0")) -> Dict[str, Decimal]:
    """Shipping, tax and grand total for a subtotal.

    Shipping is free at or above ``FREE_SHIPPING_THRESHOLD`` and a flat fee
    below it (nothing is charged for an empty selection). Tax is a whole
    amount, rounded half up.
    """
    subtotal = _money(subtotal)
    discount = _money(discount)
    if subtotal <= 0 or subtotal >= FREE_SHIPPING_THRESHOLD:
        shipping_cost = Decimal("0")
    else:
        shipping_cost = FLAT_SHIPPING_FEE
    tax = (subtotal * TAX_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping_cost,
        "tax": tax,
        "discount": discount,
        "total": subtotal + shipping_cost + tax - discount,
    }


# -----------------------------
# Products
# -----------------------------


def _discount_percentage(original_price, sale_price) -> int:
    original_price = _money(original_price)
    if original_price <= 0:
        return 0
    pct = (original_price - _money(sale_price)) / original_price * 100
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _sync_stock_status(product: Product) -> None:
    if product.status == ACTIVE and product.available <= 0:
        product.status = OUT_OF_STOCK
    elif product.status == OUT_OF_STOCK and product.available > 0:
        product.status = ACTIVE


def create_product(db: Session, seller_id: int, product_data: dict) -> Product:
    name = (product_data.get("name") or "").strip()
    if not name:
        raise ValidationFailed("Product name is required")

    quantity = int(product_data.get("quantity", 0))
    db_product = Product(
        seller_id=seller_id,
        name=name,
        description=product_data.get("description"),
        image_url=product_data.get("image_url"),
        category=product_data.get("category"),
        original_price=product_data["original_price"],
        sale_price=product_data["sale_price"],
        discount_percentage=_discount_percentage(product_data["original_price"], product_data["sale_price"]),
        quantity=quantity,
        reserved=0,
        available=quantity,
        status=ProductStatus.PENDING_APPROVAL.value,
    )
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_products(
    db: Session,
    skip: int = 0,
    limit: int = 20,
    search: Optional[str] = None,
    category: Optional[str] = None,
    seller_id: Optional[int] = None,
    statuses: Iterable[str] = (ACTIVE,),
) -> List[Product]:
    query = db.query(Product).filter(Product.status.in_(list(statuses)))
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(search_pattern),
                Product.description.ilike(search_pattern),
                Product.category.ilike(search_pattern),
            )
        )
    if category:
        query = query.filter(Product.category == category)
    if seller_id is not None:
        query = query.filter(Product.seller_id == seller_id)
    return query.order_by(Product.created_at.desc(), Product.id.desc()).offset(skip).limit(limit).all()


def update_product(db: Session, product: Product, update_data: dict) -> Product:
    if "name" in update_data:
        new_name = str(update_data["name"]).strip()
        if not new_name:
            raise ValidationFailed("Product name is required")
        update_data["name"] = new_name

    original_price = update_data.get("original_price", product.original_price)
    sale_price = update_data.get("sale_price", product.sale_price)
    if _money(sale_price) > _money(original_price):
        raise ValidationFailed(
            "Validation failed",
            errors=[{"field": "sale_price", "message": "Sale price cannot exceed original price"}],
        )

    for key, value in update_data.items():
        if value is not None:
            setattr(product, key, value)
    product.discount_percentage = _discount_percentage(original_price, sale_price)
    db.commit()
    db.refresh(product)
    return product


def set_product_stock(db: Session, product_id: int, quantity: int) -> Product:
    """Replace the owned quantity of a product, keeping reservations intact.

    ``available`` is derived from the stored ``reserved`` inside the same
    UPDATE, so a reservation committed by another order is never lost.
    """
    try:
        updated = (
            db.query(Product)
            .filter(Product.id == product_id, Product.reserved <= quantity)
            .update(
                {
                    Product.quantity: quantity,
                    Product.available: quantity - Product.reserved,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            reserved = db.query(Product.reserved).filter(Product.id == product_id).scalar()
            if reserved is None:
                raise NotFound("Product not found")
            raise ValidationFailed(f"Quantity cannot be lower than reserved stock ({reserved})")

        _refresh_stock_status(db, product_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return get_product(db, product_id)


def _refresh_stock_status(db: Session, product_id: int) -> None:
    """Flip active/out_of_stock from the stored ``available``; does not commit."""
    db.query(Product).filter(
        Product.id == product_id, Product.status == ACTIVE, Product.available <= 0
    ).update({Product.status: OUT_OF_STOCK}, synchronize_session=False)
    db.query(Product).filter(
        Product.id == product_id, Product.status == OUT_OF_STOCK, Product.available > 0
    ).update({Product.status: ACTIVE}, synchronize_session=False)


def approve_product(db: Session, product: Product) -> Product:
    if product.status not in (ProductStatus.PENDING_APPROVAL.value, ProductStatus.INACTIVE.value):
        raise InvalidState(f"Product cannot be approved from status '{product.status}'")
    product.status = ACTIVE
    _sync_stock_status(product)
    db.commit()
    db.refresh(product)
    return product


def soft_delete_product(db: Session, product: Product) -> Product:
    # Historical orders keep referencing the row
    product.status = ProductStatus.INACTIVE.value
    db.commit()
    db.refresh(product)
    return product


def _bump_counter(db: Session, product_id: int, column) -> None:
    try:
        db.query(Product).filter(Product.id == product_id).update(
            {column: column + 1}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("could not update %s for product %s", column.key, product_id, exc_info=True)


def increment_views(db: Session, product_id: int) -> None:
    _bump_counter(db, product_id, Product.views)


def increment_cart_adds(db: Session, product_id: int) -> None:
    _bump_counter(db, product_id, Product.cart_adds)


# -----------------------------
# Stock accounting
# -----------------------------


def _merge_quantities(items: Iterable) -> Dict[int, int]:
    merged: Dict[int, int] = {}
    for item in items:
        pid = int(item["product_id"])
        qty = int(item["quantity"])
        if qty <= 0:
            raise ValidationFailed("Quantity must be at least 1")
        merged[pid] = merged.get(pid, 0) + qty
    return merged


def reserve_stock(db: Session, requested: Dict[int, int]) -> None:
    """Reserve every requested quantity or raise; does not commit.

    Each product is reserved with one conditional UPDATE, so a concurrent
    request can never take the same units. The caller owns the
    transaction and rolls back everything on failure.
    """
    for pid in sorted(requested):
        qty = requested[pid]
        updated = (
            db.query(Product)
            .filter(Product.id == pid, Product.status == ACTIVE, Product.available >= qty)
            .update(
                {
                    Product.reserved: Product.reserved + qty,
                    Product.available: Product.available - qty,
                },
                synchronize_session=False,
            )
        )
        if updated == 1:
            continue

        row = (
            db.query(Product.name, Product.status, Product.available)
            .filter(Product.id == pid)
            .first()
        )
        if row is None:
            raise ProductNotFound(pid)
        if row.status != ACTIVE:
            raise ProductUnavailable(row.name)
        raise InsufficientStock(
            f'Insufficient stock for product "{row.name}". Available: {row.available}',
            available=row.available,
        )


def release_stock(db: Session, items: Iterable) -> None:
    """Give reserved units back to available stock; does not commit."""
    for pid, qty in sorted(_merge_quantities(items).items()):
        updated = (
            db.query(Product)
            .filter(Product.id == pid, Product.reserved >= qty)
            .update(
                {
                    Product.reserved: Product.reserved - qty,
                    Product.available: Product.available + qty,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            logger.warning("could not release %s reserved units of product %s", qty, pid)
            continue
        _refresh_stock_status(db, pid)


def commit_sale(db: Session, items: Iterable) -> None:
    """Turn reserved units into sold units on delivery; does not commit."""
    for pid, qty in sorted(_merge_quantities(items).items()):
        updated = (
            db.query(Product)
            .filter(Product.id == pid, Product.reserved >= qty, Product.quantity >= qty)
            .update(
                {
                    Product.quantity: Product.quantity - qty,
                    Product.reserved: Product.reserved - qty,
                    Product.purchases: Product.purchases + qty,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            logger.warning("could not settle %s sold units of product %s", qty, pid)


# -----------------------------
# Orders
# -----------------------------


def generate_order_number() -> str:
    return f"CC{int(time.time() * 1000)}{secrets.randbelow(1_000_000):06d}"


def _append_timeline(order: Order, status: str, message: str, actor_id: Optional[int], at: dt.datetime) -> None:
    order.timeline.append(
        OrderTimelineEntry(status=status, message=message, timestamp=at, actor_id=actor_id)
    )
    order.status = status


def _snapshot_line(product: Product, quantity: int) -> OrderItem:
    unit_price = _money(product.sale_price)
    original_unit_price = _money(product.original_price)
    return OrderItem(
        product_id=product.id,
        seller_id=product.seller_id,
        name=product.name,
        image=product.image_url,
        quantity=quantity,
        unit_price=unit_price,
        original_unit_price=original_unit_price,
        line_discount=(original_unit_price - unit_price) * quantity,
        line_total=unit_price * quantity,
    )


def _create_order_once(
    db: Session,
    *,
    customer: Actor,
    items: List[dict],
    shipping_address: dict,
    billing_address: Optional[dict],
    payment_method: str,
    customer_notes: Optional[str],
) -> Order:
    try:
        lines: List[OrderItem] = []
        for item in items:
            pid = int(item["product_id"])
            qty = int(item["quantity"])
            product = get_product(db, pid)
            if product is None:
                raise ProductNotFound(pid)
            if product.status != ACTIVE:
                raise ProductUnavailable(product.name)
            if product.available < qty:
                raise InsufficientStock(
                    f'Insufficient stock for product "{product.name}". Available: {product.available}',
                    available=product.available,
                )
            lines.append(_snapshot_line(product, qty))

        reserve_stock(db, _merge_quantities(items))

        totals = calculate_totals(sum((line.line_total for line in lines), Decimal("0")))
        now = _utcnow()
        db_order = Order(
            order_number=generate_order_number(),
            customer_id=customer.id,
            customer_name=customer.display_name or None,
            customer_email=customer.email or None,
            items=lines,
            subtotal=totals["subtotal"],
            shipping_cost=totals["shipping_cost"],
            tax=totals["tax"],
            discount=totals["discount"],
            total=totals["total"],
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            payment_method=payment_method,
            payment_status="pending",
            customer_notes=customer_notes,
        )
        _append_timeline(db_order, OrderStatus.PENDING.value, "Order placed successfully", customer.id, now)
        db.add(db_order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_order)
    return db_order


def create_order(
    db: Session,
    *,
    customer: Actor,
    items: List[dict],
    shipping_address: dict,
    billing_address: Optional[dict] = None,
    payment_method: str,
    customer_notes: Optional[str] = None,
) -> Order:
    """Place an order, reserving stock for all lines as one unit of work.

    Items are checked in input order and the first failing item decides
    the error. Nothing is reserved unless every line can be reserved.
    """
    if not items:
        raise ValidationFailed("Order must contain at least one item")
    if payment_method not in {m.value for m in PaymentMethod}:
        raise ValidationFailed("Valid payment method is required")

    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        try:
            return _create_order_once(
                db,
                customer=customer,
                items=items,
                shipping_address=shipping_address,
                billing_address=billing_address,
                payment_method=payment_method,
                customer_notes=customer_notes,
            )
        except IntegrityError:
            # The rollback already undid the reservations
            if attempt == ORDER_NUMBER_ATTEMPTS:
                raise
            logger.warning("order number collision, retrying (attempt %s)", attempt)


def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def _filter_status(query, status: Optional[str]):
    if status:
        query = query.filter(Order.status == status)
    return query


def _newest_first(query):
    return query.order_by(Order.created_at.desc(), Order.id.desc())


def get_orders(db: Session, skip: int = 0, limit: int = 100, status: Optional[str] = None) -> List[Order]:
    query = _filter_status(db.query(Order), status)
    return _newest_first(query).offset(skip).limit(limit).all()


def get_order_count(db: Session, status: Optional[str] = None) -> int:
    return _filter_status(db.query(Order), status).count()


def get_orders_by_customer(
    db: Session, customer_id: int, skip: int = 0, limit: int = 20, status: Optional[str] = None
) -> List[Order]:
    query = _filter_status(db.query(Order).filter(Order.customer_id == customer_id), status)
    return _newest_first(query).offset(skip).limit(limit).all()


def get_customer_order_count(db: Session, customer_id: int, status: Optional[str] = None) -> int:
    return _filter_status(db.query(Order).filter(Order.customer_id == customer_id), status).count()


def _seller_orders(db: Session, seller_id: int):
    order_ids = db.query(OrderItem.order_id).filter(OrderItem.seller_id == seller_id)
    return db.query(Order).filter(Order.id.in_(order_ids))


def get_orders_by_seller(
    db: Session, seller_id: int, skip: int = 0, limit: int = 20, status: Optional[str] = None
) -> List[Order]:
    query = _filter_status(_seller_orders(db, seller_id), status)
    return _newest_first(query).offset(skip).limit(limit).all()


def get_seller_order_count(db: Session, seller_id: int, status: Optional[str] = None) -> int:
    return _filter_status(_seller_orders(db, seller_id), status).count()


def _item_quantities(order: Order) -> List[dict]:
    return [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items]


def _record_cancellation(order: Order, reason: str, at: dt.datetime) -> None:
    order.cancellation_reason = reason
    order.cancellation_requested_at = at
    # Cancellation is approved on request
    order.cancellation_approved_at = at
    if order.payment_method == PaymentMethod.COD.value:
        order.refund_amount = Decimal("0")
    else:
        order.refund_amount = order.total


def update_order_status(
    db: Session,
    order: Order,
    *,
    actor: Actor,
    new_status: OrderStatus,
    message: Optional[str] = None,
    tracking_number: Optional[str] = None,
) -> Order:
    if not can_update_order_status(actor, order):
        raise Forbidden("You do not have permission to update this order")

    new_status = OrderStatus(new_status)
    if new_status not in UPDATABLE_STATUSES:
        raise ValidationFailed(
            "Validation failed",
            errors=[{"field": "status", "message": "Invalid order status"}],
        )
    if order.status in TERMINAL_STATUSES:
        raise InvalidState(f"Order is already {order.status} and cannot change status")
    if new_status == OrderStatus.CANCELLED and order.status not in CANCELLABLE_STATUSES:
        raise InvalidState("Order cannot be cancelled at this stage")

    now = _utcnow()
    status_message = message or f"Order status updated to {new_status.value}"
    try:
        _append_timeline(order, new_status.value, status_message, actor.id, now)

        if new_status == OrderStatus.SHIPPED and tracking_number:
            order.tracking_number = tracking_number
            order.shipped_at = now
        elif new_status == OrderStatus.DELIVERED:
            order.delivered_at = now
            commit_sale(db, _item_quantities(order))
        elif new_status == OrderStatus.CANCELLED:
            _record_cancellation(order, message or f"Cancelled by {actor.role}", now)
            release_stock(db, _item_quantities(order))

        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    return order


def cancel_order(db: Session, order: Order, *, actor: Actor, reason: str) -> Order:
    if not can_cancel_order(actor, order):
        raise Forbidden("You can only cancel your own orders")
    if order.status not in CANCELLABLE_STATUSES:
        raise InvalidState("Order cannot be cancelled at this stage")

    now = _utcnow()
    try:
        _record_cancellation(order, reason, now)
        _append_timeline(
            order,
            OrderStatus.CANCELLED.value,
            f"Order cancelled by customer. Reason: {reason}",
            actor.id,
            now,
        )
        release_stock(db, _item_quantities(order))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    return order
