"""
OrderService against the in-memory store: the lifecycle scenarios end to end, audit and notification
side effects, ownership rules, listings and tracking.
"""
from decimal import Decimal

import pytest
from _helper import ADMIN, CUSTOMER, OTHER_CUSTOMER, T0, FakeCartGateway, FakeNotifier, new_order

from orderflow.audit import AuditAction, AuditEntry
from orderflow.errors import InvalidTransition, NotFound, Unauthorized, ValidationError
from orderflow.handler import OrderService
from orderflow.models import AdminOrderFilters, OrderFilters
from orderflow.order_state import Status
from orderflow.timeline import MilestoneState, build_timeline


async def place(service, actor=CUSTOMER, **overrides):
    return await service.create_order(actor, new_order(**overrides))


async def audit_actions(service, order_id):
    entries = await service.store.activity.entries(target_order_id=order_id)
    return [e.action for e in reversed(entries)]


@pytest.mark.asyncio
async def test_scenario_a_new_order_awaits_payment(service):
    order = await place(service)
    assert order.status is Status.AWAITING_PAYMENT
    assert [m.completed for m in build_timeline(order)] == [True, False, False, False]
    assert await audit_actions(service, order.id) == [AuditAction.CREATE_ORDER]


@pytest.mark.asyncio
async def test_scenario_b_full_fulfilment(service, notifier):
    order = await place(service)
    await service.mark_paid(order.id, ADMIN)
    await service.mark_shipped(order.id, ADMIN)
    delivered = await service.mark_delivered(order.id, ADMIN)

    assert delivered.status is Status.DELIVERED
    assert delivered.version == 4
    timeline = build_timeline(delivered)
    assert all(m.completed for m in timeline)
    stamps = [m.timestamp for m in timeline]
    assert stamps == sorted(stamps) and len(set(stamps)) == 4
    assert await audit_actions(service, order.id) == [
        AuditAction.CREATE_ORDER,
        AuditAction.MARK_PAID,
        AuditAction.MARK_SHIPPED,
        AuditAction.MARK_DELIVERED,
    ]
    assert [action for _, action, _ in notifier.calls] == await audit_actions(service, order.id)


@pytest.mark.asyncio
async def test_scenario_c_shipping_unpaid_order_changes_nothing(service, notifier):
    order = await place(service)
    with pytest.raises(InvalidTransition) as exc_info:
        await service.mark_shipped(order.id, ADMIN)
    assert exc_info.value.current_status == Status.AWAITING_PAYMENT.value
    assert await service.get_order(order.id) == order
    assert await audit_actions(service, order.id) == [AuditAction.CREATE_ORDER]
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_scenario_d_customer_cancels_processing_order(service):
    order = await place(service)
    await service.mark_paid(order.id, ADMIN)
    cancelled = await service.cancel(order.id, CUSTOMER, "changed my mind")

    assert cancelled.is_cancelled
    assert cancelled.cancellation_reason == "changed my mind"
    assert cancelled.cancelled_by == CUSTOMER.id
    assert cancelled.status is Status.CANCELLED
    with pytest.raises(InvalidTransition):
        await service.mark_shipped(order.id, ADMIN)

    states = {m.label: m.state for m in build_timeline(cancelled)}
    assert states["Shipped"] is MilestoneState.UNREACHABLE
    assert states["Cancelled"] is MilestoneState.COMPLETED


@pytest.mark.asyncio
async def test_scenario_e_review_before_delivery_is_rejected(service):
    order = await place(service)
    await service.mark_paid(order.id, ADMIN)
    await service.mark_shipped(order.id, ADMIN)
    with pytest.raises(InvalidTransition):
        await service.submit_review(order.id, CUSTOMER, "rev-1")


@pytest.mark.asyncio
async def test_review_after_delivery(service):
    order = await place(service)
    for step in (service.mark_paid, service.mark_shipped, service.mark_delivered):
        await step(order.id, ADMIN)
    reviewed = await service.submit_review(order.id, CUSTOMER, "rev-1")
    assert reviewed.review_id == "rev-1"
    assert (await audit_actions(service, order.id))[-1] is AuditAction.SUBMIT_REVIEW


@pytest.mark.asyncio
async def test_repeated_mark_paid_writes_once(service, notifier):
    order = await place(service)
    first = await service.mark_paid(order.id, ADMIN)
    second = await service.mark_paid(order.id, ADMIN)
    assert second == first
    assert second.paid_at == first.paid_at and second.version == 2
    assert await audit_actions(service, order.id) == [AuditAction.CREATE_ORDER, AuditAction.MARK_PAID]
    assert len(notifier.calls) == 2


@pytest.mark.asyncio
async def test_customer_cannot_issue_admin_commands(service):
    order = await place(service)
    with pytest.raises(Unauthorized):
        await service.mark_paid(order.id, CUSTOMER)
    assert (await service.get_order(order.id)).version == 1


@pytest.mark.asyncio
async def test_other_customer_cannot_touch_order(service):
    order = await place(service)
    with pytest.raises(Unauthorized):
        await service.cancel(order.id, OTHER_CUSTOMER, "not mine")
    with pytest.raises(Unauthorized):
        await service.get_order(order.id, OTHER_CUSTOMER)
    assert await audit_actions(service, order.id) == [AuditAction.CREATE_ORDER]


@pytest.mark.asyncio
async def test_invalid_payload_rejected_before_read(service):
    with pytest.raises(ValidationError):
        await service.cancel("does-not-exist", CUSTOMER, " ")


@pytest.mark.asyncio
async def test_unknown_order(service):
    with pytest.raises(NotFound):
        await service.mark_paid("missing", ADMIN)


@pytest.mark.asyncio
async def test_admins_do_not_place_orders(service):
    with pytest.raises(Unauthorized):
        await place(service, actor=ADMIN)


@pytest.mark.asyncio
async def test_notification_failure_keeps_transition(store, cart, clock):
    service = OrderService(store, FakeNotifier(fail=True), cart, clock=clock)
    order = await place(service)
    paid = await service.mark_paid(order.id, ADMIN)
    assert paid.is_paid
    assert (await service.get_order(order.id)).is_paid


@pytest.mark.asyncio
async def test_reorder_hands_items_to_cart_without_touching_order(service, cart):
    order = await place(service)
    cancelled = await service.cancel(order.id, CUSTOMER, "wrong size")

    request = await service.reorder(order.id, CUSTOMER)

    assert cart.requests == [request]
    assert request.source_order_id == order.id
    assert [(i.product_id, i.quantity) for i in request.items] == [("p-mug", 2), ("p-tee", 1)]
    assert await service.get_order(order.id) == cancelled
    assert (await audit_actions(service, order.id))[-1] is AuditAction.REORDER


@pytest.mark.asyncio
async def test_reorder_is_owner_only(service, cart):
    order = await place(service)
    with pytest.raises(Unauthorized):
        await service.reorder(order.id, ADMIN)
    assert cart.requests == []


@pytest.mark.asyncio
async def test_failed_cart_request_records_nothing(store, notifier, clock):
    service = OrderService(store, notifier, FakeCartGateway(fail=True), clock=clock)
    order = await place(service)
    with pytest.raises(ConnectionError):
        await service.reorder(order.id, CUSTOMER)
    assert await audit_actions(service, order.id) == [AuditAction.CREATE_ORDER]


@pytest.mark.asyncio
async def test_customer_listing_is_scoped_and_newest_first(service):
    first = await place(service)
    second = await place(service)
    await place(service, actor=OTHER_CUSTOMER)
    await service.mark_paid(second.id, ADMIN)

    mine = await service.list_orders_for_customer(CUSTOMER.id)
    assert [o.id for o in mine] == [second.id, first.id]

    processing = await service.list_orders_for_customer(CUSTOMER.id, OrderFilters(status=Status.PROCESSING))
    assert [o.id for o in processing] == [second.id]


@pytest.mark.asyncio
async def test_admin_listing_paginates_and_filters(service):
    orders = [await place(service) for _ in range(5)]
    big = await place(
        service,
        items=new_order().items[:1],
        tax=Decimal("0"),
        shipping=Decimal("0"),
        total=Decimal("25.00"),
    )

    page = await service.list_orders_for_admin(ADMIN, AdminOrderFilters(page=2, page_size=4))
    assert page.total == 6 and page.pages == 2 and page.page_size == 4
    assert [o.id for o in page.orders] == [orders[1].id, orders[0].id]

    cheap = await service.list_orders_for_admin(ADMIN, AdminOrderFilters(max_total=Decimal("30")))
    assert [o.id for o in cheap.orders] == [big.id]

    by_email = await service.list_orders_for_admin(ADMIN, AdminOrderFilters(search="buyer@example"))
    assert by_email.total == 6

    with pytest.raises(Unauthorized):
        await service.list_orders_for_admin(CUSTOMER)


@pytest.mark.asyncio
async def test_tracking_requires_matching_email(service):
    order = await place(service)
    tracked = await service.track_order(order.id, "  buyer@EXAMPLE.com ")
    assert tracked.id == order.id
    with pytest.raises(NotFound):
        await service.track_order(order.id, "someone@else.com")


@pytest.mark.asyncio
async def test_activity_listing(service):
    order = await place(service)
    await service.mark_paid(order.id, ADMIN)
    await service.mark_shipped(order.id, ADMIN)

    page = await service.list_activity(ADMIN, page_size=2)
    assert page.total == 3 and page.pages == 2
    assert [e.action for e in page.entries] == [AuditAction.MARK_SHIPPED, AuditAction.MARK_PAID]

    by_admin = await service.list_activity(ADMIN, actor_id=ADMIN.id)
    assert by_admin.total == 2
    assert all(e.actor_id == ADMIN.id for e in by_admin.entries)

    with pytest.raises(Unauthorized):
        await service.list_activity(CUSTOMER)


@pytest.mark.asyncio
async def test_oversized_actor_reference_is_rejected(service):
    order = await place(service)
    with pytest.raises(ValidationError) as exc_info:
        await service.mark_paid(order.id, ADMIN.model_copy(update={"id": "a" * 256}))
    assert exc_info.value.field == "actor_id"
    with pytest.raises(ValidationError):
        await place(service, actor=CUSTOMER.model_copy(update={"id": "c" * 256}))


class BrokenActivityLog:
    async def record(self, entry):
        raise ConnectionError("activity log unavailable")


@pytest.mark.asyncio
async def test_unrecorded_reorder_is_logged_with_cart_request(service, store, cart, caplog):
    order = await place(service)
    store.activity = BrokenActivityLog()

    with pytest.raises(ConnectionError):
        await service.reorder(order.id, CUSTOMER)

    [request] = cart.requests
    assert request.request_id in caplog.text
    assert "was not recorded" in caplog.text


@pytest.mark.asyncio
async def test_reorder_entry_names_cart_request(service):
    order = await place(service)
    request = await service.reorder(order.id, CUSTOMER)
    [latest, *_] = await service.store.activity.entries(target_order_id=order.id)
    assert request.request_id in latest.description


@pytest.mark.asyncio
async def test_activity_entries_with_equal_timestamps_newest_append_first(store):
    first = AuditEntry.by(ADMIN, AuditAction.MARK_PAID, "ord-1", "first", T0)
    second = AuditEntry.by(ADMIN, AuditAction.MARK_SHIPPED, "ord-1", "second", T0)
    await store.activity.record(first)
    await store.activity.record(second)
    assert [e.description for e in await store.activity.entries()] == ["second", "first"]
