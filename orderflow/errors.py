"""
Typed failures raised by the order lifecycle engine. Each maps to one HTTP status in orderflow.main.
"""


class OrderError(Exception):
    """Base exception for all order lifecycle errors."""


class NotFound(OrderError):
    """Referenced order does not exist (or is not visible to the caller)."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransition(OrderError):
    """Raised when a command's guard rejects the order's current state. Nothing is written."""

    def __init__(self, current_status: str, command: str, reason: str | None = None):
        self.current_status = current_status
        self.command = command
        msg = f"Cannot {command} an order in {current_status} state"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class Unauthorized(OrderError):
    """Actor is not the order owner, or lacks the role the command requires."""

    def __init__(self, actor_id: str, reason: str):
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not allowed: {reason}")


class ConcurrentModification(OrderError):
    """Optimistic version check kept failing; the caller should re-read and retry."""

    def __init__(self, order_id: str, attempts: int):
        self.order_id = order_id
        self.attempts = attempts
        super().__init__(f"Order {order_id} changed concurrently ({attempts} attempts)")


class ValidationError(OrderError):
    """Malformed command payload or checkout snapshot."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class InvariantViolation(OrderError):
    """A transition produced a record that breaks an order invariant. Never committed."""

    def __init__(self, order_id: str, rule: str):
        self.order_id = order_id
        self.rule = rule
        super().__init__(f"Order {order_id} violates invariant: {rule}")
