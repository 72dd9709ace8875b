"""
Fulfillment timeline rebuilt from the order flags on every read.
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class MilestoneState(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    UNREACHABLE = "unreachable"  # never reached before the order was cancelled


class Milestone(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    timestamp: datetime | None
    state: MilestoneState

    @property
    def completed(self) -> bool:
        return self.state is MilestoneState.COMPLETED


# (label, flag, timestamp attribute); Created has no flag and is always reached
MILESTONES: list[tuple[str, str | None, str]] = [
    ("Created", None, "created_at"),
    ("Payment Received", "is_paid", "paid_at"),
    ("Shipped", "is_shipped", "shipped_at"),
    ("Delivered", "is_delivered", "delivered_at"),
]
CANCELLED_LABEL = "Cancelled"


def build_timeline(order) -> list[Milestone]:
    open_state = MilestoneState.UNREACHABLE if order.is_cancelled else MilestoneState.PENDING
    timeline = []
    for label, flag, stamp in MILESTONES:
        reached = flag is None or getattr(order, flag)
        timeline.append(
            Milestone(
                label=label,
                timestamp=getattr(order, stamp) if reached else None,
                state=MilestoneState.COMPLETED if reached else open_state,
            )
        )
    if order.is_cancelled:
        timeline.append(
            Milestone(label=CANCELLED_LABEL, timestamp=order.cancelled_at, state=MilestoneState.COMPLETED)
        )
    return timeline
