"""
Shared helpers for the order lifecycle tests: sample checkout snapshots, actors, a ticking clock,
and recording fakes for the notification and cart collaborators.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from orderflow.commands import build_order
from orderflow.models import ActorContext, LineItem, NewOrder, Order, Role, ShippingAddress

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

CUSTOMER = ActorContext(id="cust-1", role=Role.CUSTOMER)
OTHER_CUSTOMER = ActorContext(id="cust-2", role=Role.CUSTOMER)
ADMIN = ActorContext(id="admin-1", role=Role.ADMIN)


def new_order(**overrides) -> NewOrder:
    """2 x 12.50 + 1 x 20.00 = 45.00, plus 4.50 tax and 5.00 shipping."""
    data = {
        "items": [
            LineItem(product_id="p-mug", name="Mug", unit_price=Decimal("12.50"), quantity=2),
            LineItem(product_id="p-tee", name="T-shirt", unit_price=Decimal("20.00"), quantity=1),
        ],
        "shipping_address": ShippingAddress(
            address="1 Harbour Road", city="Lisbon", postal_code="1100-001", country="PT"
        ),
        "payment_method": "PayPal",
        "tax": Decimal("4.50"),
        "shipping": Decimal("5.00"),
        "total": Decimal("54.50"),
        "contact_email": "Buyer@Example.com",
    }
    data.update(overrides)
    return NewOrder(**data)


def new_order_json(**overrides) -> dict:
    return new_order(**overrides).model_dump(mode="json")


def make_order(customer_id: str = "cust-1", now: datetime = T0, **updates) -> Order:
    """A version-1 order, optionally with flags and timestamps forced (bypasses the command guards)."""
    order = build_order(new_order(), customer_id, now)
    return order.model_copy(update=updates) if updates else order


class TickingClock:
    """Each call returns a time one second later than the previous one."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def order_changed(self, order, action, actor) -> None:
        if self.fail:
            raise ConnectionError("notification queue unavailable")
        self.calls.append((order.id, action, actor.id))


class FakeCartGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests = []

    async def populate(self, request) -> None:
        if self.fail:
            raise ConnectionError("cart service unavailable")
        self.requests.append(request)
