from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from orderflow.handler import OrderService
from orderflow.models import ActorContext, NewOrder, OrderFilters
from orderflow.order_state import Status
from orderflow.routes.deps import get_actor, get_service
from orderflow.views import order_view, tracking_view

router = APIRouter(prefix="/orders", tags=["orders"])


class CancelBody(BaseModel):
    reason: str = Field(default="", description="Why the order is cancelled (required, max 500 chars)")


class ReviewBody(BaseModel):
    review_id: str = Field(default="", description="Reference to the review stored by the catalog")


@router.post("")
async def create_order(
    body: NewOrder,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    order = await service.create_order(actor, body)
    return JSONResponse(status_code=201, content=order_view(order))


@router.get("/mine")
async def my_orders(
    status: Status | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    min_total: Decimal | None = Query(default=None),
    max_total: Decimal | None = Query(default=None),
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Orders placed by the calling customer, newest first."""
    filters = OrderFilters(
        status=status,
        date_from=date_from,
        date_to=date_to,
        min_total=min_total,
        max_total=max_total,
    )
    orders = await service.list_orders_for_customer(actor.id, filters)
    return JSONResponse(status_code=200, content={"orders": [order_view(o) for o in orders]})


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    order = await service.get_order(order_id, actor)
    return JSONResponse(status_code=200, content=order_view(order))


@router.get("/{order_id}/track")
async def track_order(
    order_id: str,
    email: str = Query(..., min_length=3),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Public tracking page. No actor context; the contact e-mail proves knowledge of the order."""
    order = await service.track_order(order_id, email)
    return JSONResponse(status_code=200, content=tracking_view(order))


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelBody,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    order = await service.cancel(order_id, actor, body.reason)
    return JSONResponse(status_code=200, content=order_view(order))


@router.post("/{order_id}/review")
async def submit_review(
    order_id: str,
    body: ReviewBody,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    order = await service.submit_review(order_id, actor, body.review_id)
    return JSONResponse(status_code=200, content=order_view(order))


@router.post("/{order_id}/reorder")
async def reorder(
    order_id: str,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """
    Hand the order's items to the cart. The order itself is not changed; the cart re-prices
    from the live catalog. 202: the cart fills asynchronously.
    """
    request = await service.reorder(order_id, actor)
    return JSONResponse(
        status_code=202,
        content={"status": "accepted", "cart_request": request.model_dump(mode="json")},
    )
