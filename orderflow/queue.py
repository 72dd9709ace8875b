"""
Push JSON messages to collaborator queues. Backend: Redis (LPUSH) or AWS SQS when the queue's URL is set.
"""
import json

from orderflow.config import settings
from orderflow.redis_client import get_redis
from orderflow.sqs_client import send_message

NOTIFICATIONS_QUEUE_KEY = "queue:order_notifications"
CART_REQUESTS_QUEUE_KEY = "queue:cart_requests"
PAYMENT_EVENTS_QUEUE_KEY = "queue:payment_events"
PAYMENT_EVENTS_DLQ_KEY = "queue:payment_events:dlq"


async def push(key: str, body: dict, sqs_url: str | None = None) -> None:
    if sqs_url:
        await send_message(sqs_url, body)
    else:
        r = await get_redis()
        await r.lpush(key, json.dumps(body))


def make_payment_body(
    event_id: str,
    order_id: str,
    payment_id: str,
    amount: str,
    attempts: int = 0,
) -> dict:
    return {
        "event_id": event_id,
        "order_id": order_id,
        "payment_id": payment_id,
        "amount": amount,
        "attempts": attempts,
    }


async def push_payment_event(
    event_id: str,
    order_id: str,
    payment_id: str,
    amount: str,
    attempts: int = 0,
) -> None:
    body = make_payment_body(event_id, order_id, payment_id, amount, attempts)
    await push(PAYMENT_EVENTS_QUEUE_KEY, body, settings.sqs_payments_url)
