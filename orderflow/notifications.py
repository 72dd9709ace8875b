"""
Notification collaborator: told about every applied transition so it can e-mail the customer.
Delivery is best-effort; OrderService logs and counts a failed publish and keeps the transition.
"""
from typing import Protocol

from orderflow.audit import AuditAction
from orderflow.config import settings
from orderflow.models import ActorContext, Order
from orderflow.order_state import derive_status
from orderflow.queue import NOTIFICATIONS_QUEUE_KEY, push


class Notifier(Protocol):
    async def order_changed(self, order: Order, action: AuditAction, actor: ActorContext) -> None: ...


def notification_body(order: Order, action: AuditAction, actor: ActorContext) -> dict:
    return {
        "event": action.value,
        "order_id": order.id,
        "customer_id": order.customer_id,
        "contact_email": order.contact_email,
        "status": derive_status(order).value,
        "actor_id": actor.id,
        "actor_role": actor.role.value,
        "occurred_at": order.updated_at.isoformat(),
    }


class QueueNotifier:
    async def order_changed(self, order: Order, action: AuditAction, actor: ActorContext) -> None:
        await push(NOTIFICATIONS_QUEUE_KEY, notification_body(order, action, actor), settings.sqs_notifications_url)
