"""
Error taxonomy for the order pipeline.

Only ProviderError and PersistenceError end an attempt and reach the job
queue's retry policy. NotificationError is logged and absorbed.
"""

from __future__ import annotations


class OrderflowError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(OrderflowError, ValueError):
    """Malformed order input (pair, amount, direction)."""


class ProviderError(OrderflowError):
    """Quote or execute call failed or timed out."""

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class PersistenceError(OrderflowError):
    """Order store read or write failed; the current transition did not happen."""


class OrderNotFoundError(PersistenceError, KeyError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(OrderflowError):
    """Attempted to move an order backward or out of a terminal state."""


class NotificationError(OrderflowError):
    """Publish failed. Never fatal to an attempt."""


class JobNotFoundError(OrderflowError, KeyError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id

    def __str__(self) -> str:
        return self.args[0]
