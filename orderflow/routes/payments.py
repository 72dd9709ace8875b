from decimal import Decimal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from orderflow.metrics import payment_events_ingested_total
from orderflow.queue import push_payment_event
from orderflow.redis_client import claim_payment_event, release_payment_event

router = APIRouter(prefix="/payments", tags=["payments"])


class PaymentEventBody(BaseModel):
    event_id: str = Field(..., min_length=1, description="Unique idempotency key from the payment collaborator")
    order_id: str = Field(..., min_length=1, description="Order the payment settles")
    payment_id: str = Field(..., description="Payment reference at the provider")
    amount: Decimal = Field(..., description="Amount captured")


@router.post("/events")
async def ingest_payment_event(body: PaymentEventBody) -> JSONResponse:
    """
    Accept a payment-succeeded event. The worker applies it as MarkPaid.
    Idempotent: same event_id twice -> 200 (already processed). New event -> 202 Accepted.
    """
    if not await claim_payment_event(body.event_id):
        return JSONResponse(
            status_code=200,
            content={"status": "already_processed", "event_id": body.event_id},
        )

    try:
        await push_payment_event(
            event_id=body.event_id,
            order_id=body.order_id,
            payment_id=body.payment_id,
            amount=str(body.amount),
        )
    except Exception:
        # not queued: let the provider's redelivery through
        await release_payment_event(body.event_id)
        raise
    payment_events_ingested_total.inc()
    return JSONResponse(
        status_code=202,
        content={"status": "accepted", "event_id": body.event_id},
    )
