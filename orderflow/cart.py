"""
Cart collaborator: Reorder hands it the line items of a past order. The cart re-prices from the live catalog.
"""
import uuid
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field

from orderflow.config import settings
from orderflow.models import Order
from orderflow.queue import CART_REQUESTS_QUEUE_KEY, push


class CartItem(BaseModel):
    product_id: str
    quantity: int


class CartRequest(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    customer_id: str
    source_order_id: str
    items: list[CartItem]
    requested_at: datetime


def reorder_request(order: Order, now: datetime) -> CartRequest:
    return CartRequest(
        customer_id=order.customer_id,
        source_order_id=order.id,
        items=[CartItem(product_id=item.product_id, quantity=item.quantity) for item in order.items],
        requested_at=now,
    )


class CartGateway(Protocol):
    async def populate(self, request: CartRequest) -> None: ...


class QueueCartGateway:
    async def populate(self, request: CartRequest) -> None:
        await push(CART_REQUESTS_QUEUE_KEY, request.model_dump(mode="json"), settings.sqs_cart_url)
