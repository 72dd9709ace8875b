"""
JSON shapes returned by the HTTP layer. Status and timeline are computed here on every read.
"""
from orderflow.models import Order
from orderflow.order_state import derive_status
from orderflow.timeline import build_timeline


def timeline_view(order: Order) -> list[dict]:
    return [
        {**milestone.model_dump(mode="json"), "completed": milestone.completed}
        for milestone in build_timeline(order)
    ]


def order_view(order: Order) -> dict:
    data = order.model_dump(mode="json")
    data["status"] = derive_status(order).value
    data["timeline"] = timeline_view(order)
    return data


def tracking_view(order: Order) -> dict:
    """What the public tracking page may see: no address, no money, no customer reference."""
    return {
        "order_id": order.id,
        "status": derive_status(order).value,
        "timeline": timeline_view(order),
    }
