"""
Order lifecycle status. Status is derived from the stored flags and never persisted on its own.
"""
from decimal import Decimal
from enum import Enum

from orderflow.errors import InvariantViolation


class Status(str, Enum):
    AWAITING_PAYMENT = "AwaitingPayment"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


# Flag -> status, first match wins. No flag set -> AWAITING_PAYMENT.
STATUS_PRECEDENCE: list[tuple[str, Status]] = [
    ("is_cancelled", Status.CANCELLED),
    ("is_delivered", Status.DELIVERED),
    ("is_shipped", Status.SHIPPED),
    ("is_paid", Status.PROCESSING),
]

# Fields captured at creation; no transition may touch them.
FROZEN_FIELDS = (
    "id",
    "customer_id",
    "contact_email",
    "items",
    "shipping_address",
    "payment_method",
    "subtotal",
    "tax",
    "shipping",
    "total",
    "created_at",
)

# flag -> companion timestamp
FLAG_TIMESTAMPS = {
    "is_paid": "paid_at",
    "is_shipped": "shipped_at",
    "is_delivered": "delivered_at",
    "is_cancelled": "cancelled_at",
}


def derive_status(order) -> Status:
    """Single source of truth for an order's status."""
    for flag, status in STATUS_PRECEDENCE:
        if getattr(order, flag):
            return status
    return Status.AWAITING_PAYMENT


def status_flags(status: Status) -> dict[str, bool]:
    """
    Flag values selecting exactly the orders that derive_status maps to status.
    Stores build their status filters from this instead of re-encoding the precedence.
    """
    flags: dict[str, bool] = {}
    for flag, candidate in STATUS_PRECEDENCE:
        if candidate is status:
            flags[flag] = True
            return flags
        flags[flag] = False
    return flags


def check_invariants(order, previous=None) -> None:
    """Raise InvariantViolation if order is not a legal record (or not a legal successor of previous)."""

    def fail(rule: str) -> None:
        raise InvariantViolation(order.id, rule)

    for flag, stamp in FLAG_TIMESTAMPS.items():
        if getattr(order, flag) != (getattr(order, stamp) is not None):
            fail(f"{stamp} must be set iff {flag}")

    if order.is_shipped and not order.is_paid:
        fail("shipped before payment")
    if order.is_delivered and not order.is_shipped:
        fail("delivered before shipment")
    if order.is_cancelled and order.is_delivered:
        fail("cancelled order cannot be delivered")
    if order.is_cancelled and order.is_shipped and order.shipped_at > order.cancelled_at:
        fail("shipped after cancellation")
    if order.is_cancelled and not (order.cancellation_reason or "").strip():
        fail("cancellation reason required")
    if order.review_id is not None and not order.is_delivered:
        fail("review before delivery")

    if order.subtotal != sum((item.line_total for item in order.items), Decimal("0")):
        fail("subtotal must equal the sum of line items")
    if order.total != order.subtotal + order.tax + order.shipping:
        fail("total must equal subtotal + tax + shipping")

    if previous is not None:
        for name in FROZEN_FIELDS:
            if getattr(order, name) != getattr(previous, name):
                fail(f"{name} is frozen after creation")
        if previous.review_id is not None and order.review_id != previous.review_id:
            fail("review reference is final")
        if previous.is_cancelled and not order.is_cancelled:
            fail("cancellation is terminal")
