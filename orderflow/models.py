"""
Order records and the value types passed into and out of the lifecycle engine.
Snapshots (line items, address, money) are frozen models: a transition builds a new Order via model_copy.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderflow.order_state import Status, derive_status

CENT = Decimal("0.01")
PAYMENT_METHODS = ("PayPal", "Stripe", "Credit Card", "Bank Transfer")


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class ActorContext(BaseModel):
    """Who is issuing a command. Resolved by the identity collaborator and trusted as-is."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)


class ShippingAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    city: str
    postal_code: str
    country: str


class NewOrder(BaseModel):
    """Checkout snapshot supplied by the cart/checkout collaborator. Business rules are checked by the handler."""

    items: list[LineItem]
    shipping_address: ShippingAddress
    payment_method: str
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    total: Decimal
    contact_email: str | None = None


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    customer_id: str
    contact_email: str | None = None
    items: tuple[LineItem, ...]
    shipping_address: ShippingAddress
    payment_method: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    is_paid: bool = False
    paid_at: datetime | None = None
    is_shipped: bool = False
    shipped_at: datetime | None = None
    is_delivered: bool = False
    delivered_at: datetime | None = None
    is_cancelled: bool = False
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    review_id: str | None = None

    created_at: datetime
    updated_at: datetime
    version: int = 1

    @property
    def status(self) -> Status:
        return derive_status(self)


class OrderFilters(BaseModel):
    search: str | None = None  # order id, or substring of customer id / contact e-mail
    status: Status | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    min_total: Decimal | None = None
    max_total: Decimal | None = None

    @field_validator("date_from", "date_to")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def matches(self, order: Order) -> bool:
        if self.search:
            needle = self.search.strip().lower()
            haystacks = [order.customer_id.lower(), (order.contact_email or "").lower()]
            if order.id != self.search.strip() and not any(needle in h for h in haystacks):
                return False
        if self.status is not None and derive_status(order) is not self.status:
            return False
        if self.date_from is not None and order.created_at < self.date_from:
            return False
        if self.date_to is not None and order.created_at > self.date_to:
            return False
        if self.min_total is not None and order.total < self.min_total:
            return False
        if self.max_total is not None and order.total > self.max_total:
            return False
        return True


class AdminOrderFilters(OrderFilters):
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1)


class OrderPage(BaseModel):
    orders: list[Order]
    page: int
    page_size: int
    total: int
    pages: int
