"""
Payment event worker: pull payment-succeeded events from Redis or AWS SQS and apply them as MarkPaid.
- Unknown order / order that can no longer be paid: straight to the DLQ, retrying cannot help.
- Version conflicts and infrastructure errors: Redis exponential backoff + manual DLQ;
  SQS visibility backoff, SQS redrive to DLQ after max receives.
- Prometheus /metrics on port 9090 (worker metrics).
- Graceful shutdown on SIGTERM.
Run: python -m orderflow.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time
from decimal import Decimal, InvalidOperation

import redis.asyncio as redis

from orderflow.config import settings
from orderflow.db import close_pool
from orderflow.errors import InvalidTransition, NotFound, ValidationError
from orderflow.handler import OrderService, build_service
from orderflow.metrics import messages_dlq_total, messages_failed_total, messages_processed_total
from orderflow.models import ActorContext, Role
from orderflow.queue import PAYMENT_EVENTS_DLQ_KEY, PAYMENT_EVENTS_QUEUE_KEY, make_payment_body
from orderflow.redis_client import close_redis
from orderflow.sqs_client import change_message_visibility, delete_message, receive_messages, send_message

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30
WORKER_METRICS_PORT = 9090

# Retrying these cannot succeed: the event needs a human
PERMANENT_ERRORS = (NotFound, InvalidTransition, ValidationError)


def _start_metrics_server() -> None:
    from prometheus_client import start_http_server
    start_http_server(WORKER_METRICS_PORT)


def payment_actor() -> ActorContext:
    return ActorContext(id=settings.payment_actor_id, role=Role.ADMIN)


def _parse(raw: str) -> dict | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON from queue: %s", e)
        return None
    if not isinstance(data, dict) or not data.get("event_id") or not data.get("order_id"):
        logger.warning("Message missing event_id or order_id, skipping")
        return None
    return data


async def apply_payment(service: OrderService, data: dict) -> None:
    """
    MarkPaid on the event's order. An order that is already paid is a no-op, not an error.
    The captured amount must equal the order total; anything else needs a human.
    """
    order = await service.get_order(data["order_id"])
    try:
        amount = Decimal(str(data.get("amount", "")))
    except InvalidOperation:
        raise ValidationError("amount", f"not a number: {data.get('amount')!r}")
    if amount != order.total:
        raise ValidationError("amount", f"captured {amount} but order {order.id} totals {order.total}")
    order = await service.mark_paid(order.id, payment_actor())
    logger.info(
        "Applied payment event_id=%s payment_id=%s to order_id=%s (version %d)",
        data["event_id"],
        data.get("payment_id"),
        order.id,
        order.version,
    )


def _dlq_message(data: dict, attempts: int, error: Exception) -> dict:
    return {
        **make_payment_body(
            data["event_id"],
            data["order_id"],
            data.get("payment_id", ""),
            data.get("amount", ""),
            attempts,
        ),
        "last_error": str(error),
        "error_type": type(error).__name__,
        "failed_at": time.time(),
    }


async def process_one_redis(
    r: redis.Redis,
    service: OrderService,
    raw: str,
    sem: asyncio.Semaphore,
) -> None:
    data = _parse(raw)
    if data is None:
        return
    event_id = data["event_id"]
    attempts = data.get("attempts", 0)

    async with sem:
        try:
            await apply_payment(service, data)
            messages_processed_total.inc()
        except PERMANENT_ERRORS as e:
            messages_failed_total.inc()
            logger.warning("Payment event_id=%s rejected, moving to DLQ: %s", event_id, e)
            await r.lpush(PAYMENT_EVENTS_DLQ_KEY, json.dumps(_dlq_message(data, attempts + 1, e)))
            messages_dlq_total.inc()
        except Exception as e:
            messages_failed_total.inc()
            logger.exception("Failed to process event_id=%s (attempt %d): %s", event_id, attempts + 1, e)
            next_attempts = attempts + 1
            if next_attempts >= settings.worker_max_retries:
                await r.lpush(PAYMENT_EVENTS_DLQ_KEY, json.dumps(_dlq_message(data, next_attempts, e)))
                messages_dlq_total.inc()
                logger.warning("Moved event_id=%s to DLQ after %d attempts", event_id, settings.worker_max_retries)
            else:
                backoff_sec = 2 ** attempts
                logger.info(
                    "Re-queuing event_id=%s in %ds (attempt %d/%d)",
                    event_id,
                    backoff_sec,
                    next_attempts,
                    settings.worker_max_retries,
                )
                await asyncio.sleep(backoff_sec)
                retry_message = {**data, "attempts": next_attempts}
                await r.lpush(PAYMENT_EVENTS_QUEUE_KEY, json.dumps(retry_message))


async def process_one_sqs(
    service: OrderService,
    body: str,
    receipt_handle: str,
    receive_count: int,
    sem: asyncio.Semaphore,
) -> None:
    queue_url = settings.sqs_payments_url
    data = _parse(body)
    if data is None:
        await asyncio.to_thread(delete_message, queue_url, receipt_handle)
        return
    event_id = data["event_id"]

    async with sem:
        try:
            await apply_payment(service, data)
            messages_processed_total.inc()
            await asyncio.to_thread(delete_message, queue_url, receipt_handle)
        except PERMANENT_ERRORS as e:
            messages_failed_total.inc()
            logger.warning("Payment event_id=%s rejected, moving to DLQ: %s", event_id, e)
            if settings.sqs_payments_dlq_url:
                await send_message(settings.sqs_payments_dlq_url, _dlq_message(data, receive_count, e))
                messages_dlq_total.inc()
            await asyncio.to_thread(delete_message, queue_url, receipt_handle)
        except Exception as e:
            messages_failed_total.inc()
            logger.exception("Failed to process event_id=%s (receive #%d): %s", event_id, receive_count, e)
            # Don't delete: message will reappear after visibility timeout; after max receives SQS moves to DLQ
            backoff = min(2 ** receive_count, 900)
            await asyncio.to_thread(change_message_visibility, queue_url, receipt_handle, backoff)


async def _drain(tasks: set[asyncio.Task]) -> None:
    if not tasks:
        return
    logger.info("Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...", len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
    _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC, return_when=asyncio.ALL_COMPLETED)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def run_worker_redis(service: OrderService, shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=Redis. Listening on %s (concurrency=%d, max_retries=%d) ...",
        PAYMENT_EVENTS_QUEUE_KEY,
        settings.worker_concurrency,
        settings.worker_max_retries,
    )
    r = redis.from_url(settings.redis_url, decode_responses=True)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(PAYMENT_EVENTS_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if result is None:
                continue
            _key, raw = result
            t = asyncio.create_task(process_one_redis(r, service, raw, sem))
            tasks.add(t)
            t.add_done_callback(tasks.discard)
    finally:
        await _drain(tasks)
        await r.aclose()


async def run_worker_sqs(service: OrderService, shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=SQS. Queue=%s (concurrency=%d) ...",
        settings.sqs_payments_url,
        settings.worker_concurrency,
    )
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            messages = await asyncio.to_thread(receive_messages, settings.sqs_payments_url, 10, 5)
            for msg in messages:
                body = msg.get("Body") or "{}"
                receipt = msg.get("ReceiptHandle") or ""
                attrs = msg.get("Attributes") or {}
                receive_count = int(attrs.get("ApproximateReceiveCount", 1))
                t = asyncio.create_task(process_one_sqs(service, body, receipt, receive_count, sem))
                tasks.add(t)
                t.add_done_callback(tasks.discard)
    finally:
        await _drain(tasks)


async def run_worker(shutdown_event: asyncio.Event) -> None:
    service = await build_service()
    try:
        if settings.sqs_payments_url:
            await run_worker_sqs(service, shutdown_event)
        else:
            await run_worker_redis(service, shutdown_event)
    finally:
        # notifications from MarkPaid go through the shared Redis connection
        await close_redis()
        await close_pool()
        logger.info("Worker stopped.")


def main() -> None:
    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)

    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_worker(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
