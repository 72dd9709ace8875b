from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from orderflow.commands import MarkDelivered, MarkPaid, MarkShipped, MarkUnpaid, MarkUnshipped
from orderflow.handler import OrderService
from orderflow.models import ActorContext, AdminOrderFilters
from orderflow.order_state import Status
from orderflow.routes.deps import get_actor, get_service
from orderflow.views import order_view

router = APIRouter(prefix="/admin", tags=["admin"])

# URL segment -> flag command
FLAG_COMMANDS = {
    "mark-paid": MarkPaid,
    "mark-unpaid": MarkUnpaid,
    "mark-shipped": MarkShipped,
    "mark-unshipped": MarkUnshipped,
    "mark-delivered": MarkDelivered,
}


class AdminCancelBody(BaseModel):
    reason: str = Field(default="", description="Shown to the customer and kept on the order")


@router.get("/orders")
async def list_orders(
    search: str | None = Query(default=None, description="Order id, or part of a customer id / e-mail"),
    status: Status | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    min_total: Decimal | None = Query(default=None),
    max_total: Decimal | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    filters = AdminOrderFilters(
        search=search,
        status=status,
        date_from=date_from,
        date_to=date_to,
        min_total=min_total,
        max_total=max_total,
        page=page,
        page_size=page_size,
    )
    result = await service.list_orders_for_admin(actor, filters)
    return JSONResponse(
        status_code=200,
        content={
            "orders": [order_view(o) for o in result.orders],
            "page": result.page,
            "page_size": result.page_size,
            "total": result.total,
            "pages": result.pages,
        },
    )


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: AdminCancelBody,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    order = await service.cancel(order_id, actor, body.reason)
    return JSONResponse(status_code=200, content=order_view(order))


@router.post("/orders/{order_id}/{action}")
async def flag_command(
    order_id: str,
    action: str,
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """mark-paid, mark-unpaid, mark-shipped, mark-unshipped, mark-delivered. Repeating one is a no-op."""
    command = FLAG_COMMANDS.get(action)
    if command is None:
        raise HTTPException(status_code=404, detail=f"Unknown order action: {action}")
    order = await service.execute(order_id, actor, command())
    return JSONResponse(status_code=200, content=order_view(order))


@router.get("/activity")
async def activity(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    order_id: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    actor: ActorContext = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Activity log, newest first."""
    result = await service.list_activity(actor, page=page, page_size=page_size, order_id=order_id, actor_id=actor_id)
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))
