from pydantic import BaseModel, EmailStr, Field, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from enum import Enum


class ProductStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    ONLINE = "online"
    WALLET = "wallet"
    UPI = "upi"


# -----------------------------
# Products
# -----------------------------


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    image_url: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=50)
    original_price: Decimal = Field(..., gt=0)
    sale_price: Decimal = Field(..., gt=0)
    quantity: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _sale_not_above_original(self):
        if self.sale_price > self.original_price:
            raise ValueError("sale_price cannot exceed original_price")
        return self


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    image_url: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=50)
    original_price: Optional[Decimal] = Field(None, gt=0)
    sale_price: Optional[Decimal] = Field(None, gt=0)


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0, description="New total quantity owned")


class ProductOut(BaseModel):
    id: int
    seller_id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    original_price: float
    sale_price: float
    discount_percentage: int
    quantity: int
    reserved: int
    available: int
    status: ProductStatus
    views: int
    cart_adds: int
    purchases: int

    model_config = {"from_attributes": True}


# -----------------------------
# Cart
# -----------------------------


class CartAdd(BaseModel):
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(1, ge=1, le=10, description="Quantity must be between 1 and 10")


class CartUpdate(BaseModel):
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., ge=0, le=10, description="0 removes the item")


# -----------------------------
# Orders
# -----------------------------

PHONE_PATTERN = r"^[6-9]\d{9}$"
PINCODE_PATTERN = r"^[1-9][0-9]{5}$"


class Address(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN, description="Valid Indian phone number")
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=PINCODE_PATTERN, description="Valid Indian pincode")
    country: str = "India"

    model_config = {"str_strip_whitespace": True}


class OrderItemCreate(BaseModel):
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., ge=1, description="Quantity must be at least 1")


class PaymentIn(BaseModel):
    method: PaymentMethod


class CheckoutDetails(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment: PaymentIn
    customer_notes: Optional[str] = Field(None, max_length=1000)


class OrderCreate(CheckoutDetails):
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Order must contain at least one item")


class StatusUpdate(BaseModel):
    status: OrderStatus
    message: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = Field(None, max_length=100)

    model_config = {"str_strip_whitespace": True}


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Cancellation reason is required")

    model_config = {"str_strip_whitespace": True}


class OrderItemOut(BaseModel):
    product_id: int
    seller_id: int
    name: str
    image: Optional[str] = None
    quantity: int
    unit_price: float
    original_unit_price: float
    line_discount: float
    line_total: float

    model_config = {"from_attributes": True}


class TimelineEntryOut(BaseModel):
    status: OrderStatus
    message: str
    timestamp: datetime
    actor_id: Optional[int] = None

    model_config = {"from_attributes": True}


class ShippingOut(BaseModel):
    method: str
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class CancellationOut(BaseModel):
    reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    refund_amount: Optional[float] = None


class OrderOut(BaseModel):
    id: int
    order_number: str
    customer_id: int
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[OrderItemOut] = []
    subtotal: float
    shipping_cost: float
    tax: float
    discount: float
    total: float
    shipping_address: dict
    billing_address: dict
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: str
    shipping: ShippingOut
    timeline: List[TimelineEntryOut] = []
    cancellation: Optional[CancellationOut] = None
    customer_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrderTrackOut(BaseModel):
    order_number: str
    status: OrderStatus
    timeline: List[TimelineEntryOut]
    shipping: ShippingOut
    created_at: Optional[datetime] = None
    customer_name: Optional[str] = None

    model_config = {"from_attributes": True}


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    skip: int
    limit: int
