"""
Order: one trade request tracked from acceptance to confirmation or failure.

Immutable snapshots. The store hands out a new Order for every write; nothing
in the core mutates an Order in place.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from orderflow_core.errors import InvalidTransitionError, ValidationError

MIN_AMOUNT = 0.001

_PAIR_RE = re.compile(r"^[A-Z]+-[A-Z]+$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Direction(Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: Direction | str) -> Direction:
        if isinstance(value, Direction):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValidationError("Direction must be either BUY or SELL") from None


class OrderStatus(Enum):
    """Order lifecycle. Forward order is fixed; FAILED is reachable from any non-terminal state."""

    PENDING = "PENDING"
    ROUTING = "ROUTING"
    BUILDING = "BUILDING"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CONFIRMED, OrderStatus.FAILED)


_FORWARD = (
    OrderStatus.PENDING,
    OrderStatus.ROUTING,
    OrderStatus.BUILDING,
    OrderStatus.SUBMITTED,
    OrderStatus.CONFIRMED,
)


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """
    Raise InvalidTransitionError unless current -> target is allowed.

    ROUTING opens an attempt and is allowed from anything but CONFIRMED: a
    redelivered job starts over from the top, whatever the previous attempt
    reached. All other forward moves advance exactly one step.
    """
    if target is OrderStatus.FAILED:
        if current.is_terminal:
            raise InvalidTransitionError(f"{current.value} is terminal; cannot fail")
        return
    if target is OrderStatus.ROUTING:
        if current is OrderStatus.CONFIRMED:
            raise InvalidTransitionError("CONFIRMED is terminal; cannot restart routing")
        return
    if target is OrderStatus.PENDING or current is OrderStatus.FAILED:
        raise InvalidTransitionError(f"Illegal transition {current.value} -> {target.value}")
    if _FORWARD.index(target) != _FORWARD.index(current) + 1:
        raise InvalidTransitionError(f"Illegal transition {current.value} -> {target.value}")


@dataclass(frozen=True)
class TradingPair:
    """Two upper-case token symbols, rendered BASE-QUOTE."""

    base: str
    quote: str

    @classmethod
    def parse(cls, value: TradingPair | str) -> TradingPair:
        if isinstance(value, TradingPair):
            return value
        text = str(value)
        if not _PAIR_RE.match(text):
            raise ValidationError("Pair must be in format TOKEN-TOKEN (e.g., SOL-USDC)")
        base, quote = text.split("-")
        return cls(base=base, quote=quote)

    def __str__(self) -> str:
        return f"{self.base}-{self.quote}"


@dataclass(frozen=True)
class LogEntry:
    message: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "timestamp": isoformat(self.timestamp)}


def validate_amount(amount: Any) -> float:
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a number")
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number") from None
    if not value > 0:
        raise ValidationError("Amount must be positive")
    if value < MIN_AMOUNT:
        raise ValidationError(f"Amount must be at least {MIN_AMOUNT}")
    return value


@dataclass(frozen=True)
class Order:
    """
    Persisted order record. id is immutable; logs is append-only.

    execution_price is set at BUILDING (effective quote price) and overwritten
    at CONFIRMED with the settled price; tx_hash is set at CONFIRMED.
    """

    id: str
    pair: TradingPair
    amount: float
    direction: Direction
    status: OrderStatus = OrderStatus.PENDING
    execution_price: float | None = None
    tx_hash: str | None = None
    logs: tuple[LogEntry, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pair", TradingPair.parse(self.pair))
        object.__setattr__(self, "direction", Direction.parse(self.direction))
        object.__setattr__(self, "amount", validate_amount(self.amount))
        if not isinstance(self.logs, tuple):
            object.__setattr__(self, "logs", tuple(self.logs))

    @classmethod
    def new(cls, pair: TradingPair | str, amount: float, direction: Direction | str) -> Order:
        """Fresh PENDING order with a generated id and empty log."""
        now = utc_now()
        return cls(
            id=uuid.uuid4().hex,
            pair=pair,
            amount=amount,
            direction=direction,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        """Record shape handed to transports (camelCase keys)."""
        return {
            "id": self.id,
            "pair": str(self.pair),
            "amount": self.amount,
            "direction": self.direction.value,
            "status": self.status.value,
            "executionPrice": self.execution_price,
            "txHash": self.tx_hash,
            "logs": [entry.to_dict() for entry in self.logs],
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
