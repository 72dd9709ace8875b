"""
Transition commands and their rules.

One tagged model per command. Everything here is pure: `authorize` and `validate_payload` reject
a command before anything is read or written, `apply_command` evaluates the guard against a record
and returns the successor record (or None when the command would not change any flag).
OrderService wraps these in the read / commit / audit / notify cycle.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, NamedTuple, Union

from pydantic import BaseModel, Field

from orderflow.errors import InvalidTransition, Unauthorized, ValidationError
from orderflow.models import CENT, PAYMENT_METHODS, ActorContext, NewOrder, Order, Role
from orderflow.order_state import derive_status

MAX_REASON_LENGTH = 500
# customer, actor, e-mail and review references are VARCHAR(255) columns
MAX_REFERENCE_LENGTH = 255


class MarkPaid(BaseModel):
    kind: Literal["mark_paid"] = "mark_paid"


class MarkUnpaid(BaseModel):
    kind: Literal["mark_unpaid"] = "mark_unpaid"


class MarkShipped(BaseModel):
    kind: Literal["mark_shipped"] = "mark_shipped"


class MarkUnshipped(BaseModel):
    kind: Literal["mark_unshipped"] = "mark_unshipped"


class MarkDelivered(BaseModel):
    kind: Literal["mark_delivered"] = "mark_delivered"


class Cancel(BaseModel):
    kind: Literal["cancel_order"] = "cancel_order"
    reason: str = ""


class SubmitReview(BaseModel):
    kind: Literal["submit_review"] = "submit_review"
    review_id: str = ""


class Reorder(BaseModel):
    kind: Literal["reorder"] = "reorder"


Command = Annotated[
    Union[MarkPaid, MarkUnpaid, MarkShipped, MarkUnshipped, MarkDelivered, Cancel, SubmitReview, Reorder],
    Field(discriminator="kind"),
]

ADMIN_COMMANDS = frozenset({"mark_paid", "mark_unpaid", "mark_shipped", "mark_unshipped", "mark_delivered"})
OWNER_COMMANDS = frozenset({"submit_review", "reorder"})


class Transition(NamedTuple):
    order: Order
    description: str


def authorize(order: Order, actor: ActorContext, command) -> None:
    """Role and ownership rules. Runs before any mutation."""
    kind = command.kind
    if kind in ADMIN_COMMANDS:
        if not actor.is_admin:
            raise Unauthorized(actor.id, f"{kind} requires the admin role")
    elif kind in OWNER_COMMANDS:
        if actor.role is not Role.CUSTOMER or actor.id != order.customer_id:
            raise Unauthorized(actor.id, f"only the customer who placed order {order.id} may {kind}")
    elif not actor.is_admin and actor.id != order.customer_id:
        raise Unauthorized(actor.id, f"not the owner of order {order.id}")


def validate_actor(actor: ActorContext) -> None:
    if not actor.id.strip():
        raise ValidationError("actor_id", "is required")
    if len(actor.id) > MAX_REFERENCE_LENGTH:
        raise ValidationError("actor_id", f"must be at most {MAX_REFERENCE_LENGTH} characters")


def validate_payload(command) -> None:
    if isinstance(command, Cancel):
        reason = command.reason.strip()
        if not reason:
            raise ValidationError("reason", "cancellation reason is required")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError("reason", f"must be at most {MAX_REASON_LENGTH} characters")
    elif isinstance(command, SubmitReview):
        if not command.review_id.strip():
            raise ValidationError("review_id", "review reference is required")
        if len(command.review_id.strip()) > MAX_REFERENCE_LENGTH:
            raise ValidationError("review_id", f"must be at most {MAX_REFERENCE_LENGTH} characters")


def _reject(order: Order, command, reason: str) -> InvalidTransition:
    return InvalidTransition(derive_status(order).value, command.kind, reason)


def _require_open(order: Order, command) -> None:
    if order.is_cancelled:
        raise _reject(order, command, "order is cancelled")


def _mark_paid(order, actor, command, now):
    _require_open(order, command)
    if order.is_paid:
        return None
    return {"is_paid": True, "paid_at": now}, f"Marked order {order.id} as paid"


def _mark_unpaid(order, actor, command, now):
    _require_open(order, command)
    if order.is_shipped:
        raise _reject(order, command, "order is already shipped")
    if not order.is_paid:
        return None
    return {"is_paid": False, "paid_at": None}, f"Marked order {order.id} as unpaid"


def _mark_shipped(order, actor, command, now):
    _require_open(order, command)
    if not order.is_paid:
        raise _reject(order, command, "order is not paid")
    if order.is_shipped:
        return None
    return {"is_shipped": True, "shipped_at": now}, f"Marked order {order.id} as shipped"


def _mark_unshipped(order, actor, command, now):
    _require_open(order, command)
    if order.is_delivered:
        raise _reject(order, command, "order is already delivered")
    if not order.is_shipped:
        return None
    return {"is_shipped": False, "shipped_at": None}, f"Marked order {order.id} as not shipped"


def _mark_delivered(order, actor, command, now):
    _require_open(order, command)
    if not order.is_shipped:
        raise _reject(order, command, "order is not shipped")
    if order.is_delivered:
        return None
    return {"is_delivered": True, "delivered_at": now}, f"Marked order {order.id} as delivered"


def _cancel(order, actor, command, now):
    if order.is_cancelled:
        raise _reject(order, command, "order is already cancelled")
    if order.is_delivered:
        raise _reject(order, command, "order is already delivered")
    reason = command.reason.strip()
    updates = {
        "is_cancelled": True,
        "cancelled_at": now,
        "cancellation_reason": reason,
        "cancelled_by": actor.id,
    }
    return updates, f"Cancelled order {order.id}: {reason}"


def _submit_review(order, actor, command, now):
    if not order.is_delivered:
        raise _reject(order, command, "order is not delivered")
    if order.review_id is not None:
        raise _reject(order, command, "order is already reviewed")
    review_id = command.review_id.strip()
    return {"review_id": review_id}, f"Added review {review_id} for order {order.id}"


_EFFECTS = {
    "mark_paid": _mark_paid,
    "mark_unpaid": _mark_unpaid,
    "mark_shipped": _mark_shipped,
    "mark_unshipped": _mark_unshipped,
    "mark_delivered": _mark_delivered,
    "cancel_order": _cancel,
    "submit_review": _submit_review,
}


def apply_command(order: Order, actor: ActorContext, command, now: datetime) -> Transition | None:
    """
    Evaluate command against order. Raises InvalidTransition when the guard fails.
    Returns None when the flag already has the requested value (idempotent no-op).
    The successor carries updated_at=now and version+1.
    """
    effect = _EFFECTS.get(command.kind)
    if effect is None:
        raise ValueError(f"{command.kind} does not mutate orders")
    result = effect(order, actor, command, now)
    if result is None:
        return None
    updates, description = result
    updates.update(updated_at=now, version=order.version + 1)
    return Transition(order.model_copy(update=updates), description)


def build_order(new_order: NewOrder, customer_id: str, now: datetime) -> Order:
    """Validate a checkout snapshot and freeze it into a version-1 Order."""
    if not new_order.items:
        raise ValidationError("items", "order must contain at least one item")
    for index, item in enumerate(new_order.items):
        if not item.product_id.strip() or not item.name.strip():
            raise ValidationError(f"items[{index}]", "product and name are required")
        if item.quantity <= 0:
            raise ValidationError(f"items[{index}].quantity", "must be greater than 0")
        if item.unit_price <= 0:
            raise ValidationError(f"items[{index}].unit_price", "must be greater than 0")
        if item.unit_price != item.unit_price.quantize(CENT):
            raise ValidationError(f"items[{index}].unit_price", "must have at most two decimal places")

    for name, value in new_order.shipping_address.model_dump().items():
        if not value.strip():
            raise ValidationError(f"shipping_address.{name}", "is required")

    if new_order.payment_method not in PAYMENT_METHODS:
        raise ValidationError("payment_method", f"must be one of {', '.join(PAYMENT_METHODS)}")

    if new_order.contact_email is not None and "@" not in new_order.contact_email:
        raise ValidationError("contact_email", "is not an e-mail address")
    if new_order.contact_email is not None and len(new_order.contact_email) > MAX_REFERENCE_LENGTH:
        raise ValidationError("contact_email", f"must be at most {MAX_REFERENCE_LENGTH} characters")

    money = {}
    for name in ("tax", "shipping", "total"):
        value = getattr(new_order, name)
        if value < 0:
            raise ValidationError(name, "must not be negative")
        if value != value.quantize(CENT):
            raise ValidationError(name, "must have at most two decimal places")
        money[name] = value.quantize(CENT)

    subtotal = sum((item.line_total for item in new_order.items), Decimal("0"))
    if money["total"] != subtotal + money["tax"] + money["shipping"]:
        raise ValidationError("total", "does not match items + tax + shipping")

    return Order(
        id=str(uuid.uuid4()),
        customer_id=customer_id,
        contact_email=new_order.contact_email,
        items=tuple(new_order.items),
        shipping_address=new_order.shipping_address,
        payment_method=new_order.payment_method,
        subtotal=subtotal,
        tax=money["tax"],
        shipping=money["shipping"],
        total=money["total"],
        created_at=now,
        updated_at=now,
        version=1,
    )
