"""
OrderService: transition command handler and read operations.

Every mutating command runs the same cycle: read the record, authorize the actor, evaluate the
guard, commit the successor together with exactly one activity entry via compare-and-swap on
`version`, then notify. A lost compare-and-swap re-reads and re-evaluates the guard against the
fresh record; after `max_attempts` rounds the caller gets ConcurrentModification.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Callable

from orderflow.audit import ActivityPage, AuditAction, AuditEntry
from orderflow.cart import CartGateway, CartRequest, reorder_request
from orderflow.commands import (
    Cancel,
    MarkDelivered,
    MarkPaid,
    MarkShipped,
    MarkUnpaid,
    MarkUnshipped,
    Reorder,
    SubmitReview,
    apply_command,
    authorize,
    build_order,
    validate_actor,
    validate_payload,
)
from orderflow.config import settings
from orderflow.errors import ConcurrentModification, InvalidTransition, NotFound, Unauthorized
from orderflow.metrics import (
    notifications_failed_total,
    order_cas_conflicts_total,
    order_transitions_total,
    orders_created_total,
)
from orderflow.models import (
    ActorContext,
    AdminOrderFilters,
    NewOrder,
    Order,
    OrderFilters,
    OrderPage,
    Role,
)
from orderflow.notifications import Notifier
from orderflow.order_state import check_invariants, derive_status
from orderflow.store import OrderStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size)


class OrderService:
    def __init__(
        self,
        store: OrderStore,
        notifier: Notifier,
        cart: CartGateway,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.cart = cart
        self.clock = clock
        self.max_attempts = max_attempts or settings.transition_max_attempts

    # ------------------------------------------------------------------ reads

    async def _load(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise NotFound(order_id)
        return order

    @staticmethod
    def _require_admin(actor: ActorContext) -> None:
        if not actor.is_admin:
            raise Unauthorized(actor.id, "admin role required")

    async def get_order(self, order_id: str, actor: ActorContext | None = None) -> Order:
        """Customers may only read their own orders; admins and internal callers (actor=None) read any."""
        order = await self._load(order_id)
        if actor is not None and not actor.is_admin and actor.id != order.customer_id:
            raise Unauthorized(actor.id, f"not the owner of order {order_id}")
        return order

    async def list_orders_for_customer(self, customer_id: str, filters: OrderFilters | None = None) -> list[Order]:
        return await self.store.list_for_customer(customer_id, filters or OrderFilters())

    async def list_orders_for_admin(self, actor: ActorContext, filters: AdminOrderFilters | None = None) -> OrderPage:
        self._require_admin(actor)
        filters = filters or AdminOrderFilters()
        page_size = min(filters.page_size or settings.admin_page_size, settings.max_page_size)
        orders, total = await self.store.list_orders(filters, (filters.page - 1) * page_size, page_size)
        return OrderPage(
            orders=orders,
            page=filters.page,
            page_size=page_size,
            total=total,
            pages=_pages(total, page_size),
        )

    async def track_order(self, order_id: str, email: str) -> Order:
        """Public tracking lookup. A wrong e-mail looks exactly like a missing order."""
        order = await self.store.get(order_id)
        if order is None or not order.contact_email:
            raise NotFound(order_id)
        if order.contact_email.strip().lower() != email.strip().lower():
            raise NotFound(order_id)
        return order

    async def list_activity(
        self,
        actor: ActorContext,
        page: int = 1,
        page_size: int | None = None,
        order_id: str | None = None,
        actor_id: str | None = None,
    ) -> ActivityPage:
        self._require_admin(actor)
        page = max(page, 1)
        page_size = min(page_size or settings.activity_page_size, settings.max_page_size)
        entries = await self.store.activity.entries(target_order_id=order_id, actor_id=actor_id)
        start = (page - 1) * page_size
        return ActivityPage(
            entries=entries[start : start + page_size],
            page=page,
            pages=_pages(len(entries), page_size),
            total=len(entries),
        )

    # --------------------------------------------------------------- creation

    async def create_order(self, actor: ActorContext, new_order: NewOrder) -> Order:
        """Freeze a checkout snapshot into a new order owned by the placing customer."""
        if actor.role is not Role.CUSTOMER:
            raise Unauthorized(actor.id, "only customers place orders")
        validate_actor(actor)
        now = self.clock()
        order = build_order(new_order, actor.id, now)
        check_invariants(order)
        entry = AuditEntry.by(actor, AuditAction.CREATE_ORDER, order.id, f"Created new order {order.id}", now)
        await self.store.create(order, entry)
        orders_created_total.inc()
        logger.info(
            "Order created order_id=%s customer_id=%s total=%s items=%d",
            order.id,
            order.customer_id,
            order.total,
            len(order.items),
        )
        await self._notify(order, AuditAction.CREATE_ORDER, actor)
        return order

    # --------------------------------------------------------------- commands

    async def execute(self, order_id: str, actor: ActorContext, command) -> Order:
        """Run one transition command. Returns the order as stored after the command."""
        validate_actor(actor)
        validate_payload(command)
        if isinstance(command, Reorder):
            order, _ = await self._reorder(order_id, actor, command)
            return order

        for attempt in range(1, self.max_attempts + 1):
            order = await self._load(order_id)
            try:
                authorize(order, actor, command)
                transition = apply_command(order, actor, command, self.clock())
            except Unauthorized:
                order_transitions_total.labels(command=command.kind, outcome="unauthorized").inc()
                raise
            except InvalidTransition as e:
                order_transitions_total.labels(command=command.kind, outcome="rejected").inc()
                logger.info("Rejected %s on order_id=%s: %s", command.kind, order_id, e)
                raise

            if transition is None:
                order_transitions_total.labels(command=command.kind, outcome="noop").inc()
                logger.info("%s on order_id=%s changes nothing, skipped", command.kind, order_id)
                return order

            check_invariants(transition.order, previous=order)
            action = AuditAction(command.kind)
            entry = AuditEntry.by(actor, action, order.id, transition.description, transition.order.updated_at)
            if await self.store.replace(transition.order, order.version, entry):
                order_transitions_total.labels(command=command.kind, outcome="applied").inc()
                logger.info(
                    "Applied %s on order_id=%s by %s=%s, status now %s",
                    command.kind,
                    order_id,
                    actor.role.value,
                    actor.id,
                    derive_status(transition.order).value,
                )
                await self._notify(transition.order, action, actor)
                return transition.order

            order_cas_conflicts_total.inc()
            logger.info(
                "Version conflict on order_id=%s (%s, attempt %d/%d), re-reading",
                order_id,
                command.kind,
                attempt,
                self.max_attempts,
            )

        order_transitions_total.labels(command=command.kind, outcome="conflict").inc()
        raise ConcurrentModification(order_id, self.max_attempts)

    async def _reorder(self, order_id: str, actor: ActorContext, command: Reorder) -> tuple[Order, CartRequest]:
        validate_actor(actor)
        order = await self._load(order_id)
        try:
            authorize(order, actor, command)
        except Unauthorized:
            order_transitions_total.labels(command=command.kind, outcome="unauthorized").inc()
            raise
        now = self.clock()
        request = reorder_request(order, now)
        await self.cart.populate(request)
        description = f"Reordered the items of order {order.id} (cart request {request.request_id})"
        entry = AuditEntry.by(actor, AuditAction.REORDER, order.id, description, now)
        try:
            await self.store.activity.record(entry)
        except Exception:
            logger.exception(
                "Reorder of order_id=%s reached the cart as request_id=%s but was not recorded",
                order.id,
                request.request_id,
            )
            raise
        order_transitions_total.labels(command=command.kind, outcome="applied").inc()
        logger.info("Reorder of order_id=%s sent to cart as request_id=%s", order.id, request.request_id)
        return order, request

    async def _notify(self, order: Order, action: AuditAction, actor: ActorContext) -> None:
        try:
            await self.notifier.order_changed(order, action, actor)
        except Exception:
            notifications_failed_total.inc()
            logger.exception("Notification for order_id=%s (%s) failed; transition kept", order.id, action.value)

    # one entry point per command

    async def mark_paid(self, order_id: str, actor: ActorContext) -> Order:
        return await self.execute(order_id, actor, MarkPaid())

    async def mark_unpaid(self, order_id: str, actor: ActorContext) -> Order:
        return await self.execute(order_id, actor, MarkUnpaid())

    async def mark_shipped(self, order_id: str, actor: ActorContext) -> Order:
        return await self.execute(order_id, actor, MarkShipped())

    async def mark_unshipped(self, order_id: str, actor: ActorContext) -> Order:
        return await self.execute(order_id, actor, MarkUnshipped())

    async def mark_delivered(self, order_id: str, actor: ActorContext) -> Order:
        return await self.execute(order_id, actor, MarkDelivered())

    async def cancel(self, order_id: str, actor: ActorContext, reason: str) -> Order:
        return await self.execute(order_id, actor, Cancel(reason=reason))

    async def submit_review(self, order_id: str, actor: ActorContext, review_id: str) -> Order:
        return await self.execute(order_id, actor, SubmitReview(review_id=review_id))

    async def reorder(self, order_id: str, actor: ActorContext) -> CartRequest:
        _, request = await self._reorder(order_id, actor, Reorder())
        return request


async def build_service() -> OrderService:
    """Wire an OrderService from settings: store backend plus the queue-backed collaborators."""
    from orderflow.cart import QueueCartGateway
    from orderflow.db import PostgresOrderStore, get_pool, init_schema
    from orderflow.notifications import QueueNotifier
    from orderflow.store import MemoryOrderStore

    if settings.store_backend == "memory":
        store = MemoryOrderStore()
    else:
        pool = await get_pool()
        await init_schema(pool)
        store = PostgresOrderStore(pool)
    logger.info("Order store backend=%s", settings.store_backend)
    return OrderService(store, QueueNotifier(), QueueCartGateway())
