"""
HTTP API: customer and admin order routes, payment event intake, /health and /metrics.
Run: uvicorn orderflow.main:app
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from orderflow.config import settings
from orderflow.db import close_pool
from orderflow.errors import (
    ConcurrentModification,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    OrderError,
    Unauthorized,
    ValidationError,
)
from orderflow.handler import OrderService, build_service
from orderflow.metrics import get_metrics_bytes, get_metrics_content_type, sqs_queue_messages_in_flight, sqs_queue_messages_waiting
from orderflow.redis_client import close_redis
from orderflow.routes import admin, orders, payments
from orderflow.sqs_client import get_queue_depth

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[OrderError], int] = {
    NotFound: 404,
    InvalidTransition: 409,
    Unauthorized: 403,
    ConcurrentModification: 409,
    ValidationError: 422,
    InvariantViolation: 500,
}


def error_status(exc: OrderError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_body(exc: OrderError) -> dict:
    body = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, InvalidTransition):
        body["current_status"] = exc.current_status
        body["command"] = exc.command
    elif isinstance(exc, ValidationError):
        body["field"] = exc.field
    return body


def create_app(service: OrderService | None = None) -> FastAPI:
    """Build the API. Tests pass a ready OrderService; otherwise one is wired from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service if service is not None else await build_service()
        yield
        await close_redis()
        await close_pool()

    app = FastAPI(title="Order Lifecycle", lifespan=lifespan)
    app.include_router(orders.router)
    app.include_router(admin.router)
    app.include_router(payments.router)

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint: order transitions, payment intake, SQS queue depth (when using SQS)."""
        if settings.sqs_payments_url:
            try:
                waiting, in_flight = await get_queue_depth(settings.sqs_payments_url)
                sqs_queue_messages_waiting.set(waiting)
                sqs_queue_messages_in_flight.set(in_flight)
            except Exception:
                logger.warning("Could not read SQS queue depth", exc_info=True)
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()
