"""
Activity log: append-only record of who changed which order. Entries are never updated or deleted.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from orderflow.models import ActorContext, Role


class AuditAction(str, Enum):
    CREATE_ORDER = "create_order"
    MARK_PAID = "mark_paid"
    MARK_UNPAID = "mark_unpaid"
    MARK_SHIPPED = "mark_shipped"
    MARK_UNSHIPPED = "mark_unshipped"
    MARK_DELIVERED = "mark_delivered"
    CANCEL = "cancel_order"
    SUBMIT_REVIEW = "submit_review"
    REORDER = "reorder"


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: str
    actor_role: Role
    action: AuditAction
    target_order_id: str
    description: str
    timestamp: datetime

    @classmethod
    def by(
        cls,
        actor: ActorContext,
        action: AuditAction,
        order_id: str,
        description: str,
        timestamp: datetime,
    ) -> "AuditEntry":
        return cls(
            actor_id=actor.id,
            actor_role=actor.role,
            action=action,
            target_order_id=order_id,
            description=description,
            timestamp=timestamp,
        )


class ActivityPage(BaseModel):
    entries: list[AuditEntry]
    page: int
    pages: int
    total: int


class ActivityRecorder(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...

    async def entries(
        self,
        target_order_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[AuditEntry]:
        """Matching entries, newest first. Callers paginate."""
        ...


class MemoryActivityLog:
    """In-process recorder. MemoryOrderStore appends to it under its own lock."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    async def entries(
        self,
        target_order_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[AuditEntry]:
        matching = [
            e
            for e in self._entries
            if (target_order_id is None or e.target_order_id == target_order_id)
            and (actor_id is None or e.actor_id == actor_id)
        ]
        # equal timestamps: later appends first
        return sorted(reversed(matching), key=lambda e: e.timestamp, reverse=True)
