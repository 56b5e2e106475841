from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Product(Base):
    """A sellable clearance item.

    Stock is tracked as three counters: ``quantity`` (owned), ``reserved``
    (held by open orders) and ``available`` (``quantity - reserved``). Every
    write path updates ``available`` in the same statement as the counter it
    changes.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("reserved >= 0", name="ck_products_reserved_non_negative"),
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text)
    image_url = Column(String(500))
    category = Column(String(50), index=True)

    original_price = Column(Numeric(10, 2), nullable=False)
    sale_price = Column(Numeric(10, 2), nullable=False)
    discount_percentage = Column(Integer, default=0)

    quantity = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False, default=0)

    status = Column(String(30), nullable=False, default="pending_approval", index=True)

    views = Column(Integer, nullable=False, default=0)
    cart_adds = Column(Integer, nullable=False, default=0)
    purchases = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CartItem(Base):
    """Backing rows for the database cart store."""

    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("customer_id", "product_id", name="uq_cart_items_customer_product"),)

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False)
    # Last change to the whole cart, repeated on each of its rows
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), nullable=False, unique=True, index=True)

    customer_id = Column(Integer, nullable=False, index=True)
    customer_name = Column(String(200))
    customer_email = Column(String(200))

    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)

    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)

    status = Column(String(30), nullable=False, default="pending", index=True)

    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending")

    shipping_method = Column(String(20), nullable=False, default="standard")
    tracking_number = Column(String(100))
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))

    cancellation_reason = Column(Text)
    cancellation_requested_at = Column(DateTime(timezone=True))
    cancellation_approved_at = Column(DateTime(timezone=True))
    refund_amount = Column(Numeric(12, 2))

    customer_notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    timeline = relationship(
        "OrderTimelineEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderTimelineEntry.id",
    )

    @property
    def shipping(self) -> dict:
        return {
            "method": self.shipping_method,
            "tracking_number": self.tracking_number,
            "shipped_at": self.shipped_at,
            "delivered_at": self.delivered_at,
        }

    @property
    def cancellation(self):
        if self.cancellation_requested_at is None:
            return None
        return {
            "reason": self.cancellation_reason,
            "requested_at": self.cancellation_requested_at,
            "approved_at": self.cancellation_approved_at,
            "refund_amount": self.refund_amount,
        }

    @property
    def seller_ids(self) -> set:
        return {item.seller_id for item in (self.items or [])}


class OrderItem(Base):
    """Price snapshot of one product at order time."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    image = Column(String(500))
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    original_unit_price = Column(Numeric(10, 2), nullable=False)
    line_discount = Column(Numeric(12, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderTimelineEntry(Base):
    """Append-only status history of an order."""

    __tablename__ = "order_timeline"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    message = Column(String(500), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    actor_id = Column(Integer)

    order = relationship("Order", back_populates="timeline")
