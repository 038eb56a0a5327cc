"""
Order state machine: drives one attempt of an order through the pipeline.

PENDING -> ROUTING -> BUILDING -> SUBMITTED -> CONFIRMED, or FAILED from any
non-terminal state. Every transition is one store update followed by one
publish carrying the same fields. Persistence is authoritative: a failed store
write ends the attempt, a failed publish is logged and ignored.

Attempts are not resumable. A redelivered job starts again at ROUTING even if
the previous attempt got as far as SUBMITTED, so a retried attempt can call
execute() a second time for the same order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from orderflow_core.errors import NotificationError, PersistenceError, ProviderError
from orderflow_core.execution.provider import QuoteProvider
from orderflow_core.execution.routing import format_fee, select_best_quote
from orderflow_core.jobs import JobPayload
from orderflow_core.notifier import Notifier
from orderflow_core.order import Direction, Order, OrderStatus, TradingPair, check_transition, isoformat
from orderflow_core.store import OrderStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Store field name -> notification message key
_MESSAGE_KEYS = {"execution_price": "executionPrice", "tx_hash": "txHash"}


@dataclass(frozen=True)
class ExecutionOutcome:
    """What a successful attempt returns to the queue as the job result."""

    order_id: str
    tx_hash: str
    execution_price: float
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "txHash": self.tx_hash,
            "executionPrice": self.execution_price,
            "source": self.source,
        }


@dataclass
class _Attempt:
    """Per-attempt state. The machine itself is shared by all workers."""

    order_id: str
    number: int
    status: OrderStatus


class OrderStateMachine:
    """
    Runs orders through routing, building, submission and confirmation.
    Stateless between runs; one instance serves every worker.
    """

    def __init__(
        self,
        store: OrderStore,
        notifier: Notifier,
        provider: QuoteProvider,
        *,
        build_delay: float = 0.5,
        provider_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.provider = provider
        self.build_delay = build_delay
        self.provider_timeout = provider_timeout
        self._sleep = sleep
        self.publish_failures = 0

    async def run(self, payload: JobPayload, *, attempt: int = 1) -> ExecutionOutcome:
        """
        Run one attempt for the order in payload.

        Returns the outcome on CONFIRMED. On any provider or persistence error
        the order is marked FAILED (with the error appended to its log) and the
        error is re-raised for the queue's retry policy.
        """
        pair = TradingPair.parse(payload.pair)
        direction = Direction.parse(payload.direction)
        order = await self._persist(self.store.get(payload.order_id))
        if order.status is OrderStatus.CONFIRMED:
            logger.warning("Order %s already CONFIRMED; nothing to do", order.id)
            return ExecutionOutcome(
                order_id=order.id,
                tx_hash=order.tx_hash or "",
                execution_price=order.execution_price or 0.0,
            )

        ctx = _Attempt(order_id=order.id, number=attempt, status=order.status)
        logger.info(
            "Processing order %s - %s %s %s (attempt %d)",
            ctx.order_id, direction.value, payload.amount, pair, attempt,
        )
        try:
            # ROUTING: persisted before any quote call so a crash here is visible
            await self._transition(ctx, OrderStatus.ROUTING)
            await self._log(ctx, f"Fetching quotes for {pair} (attempt {attempt})")
            quotes = await self._call_provider("routing", self.provider.quote(pair, payload.amount))
            if not quotes:
                raise ProviderError("No quotes returned", stage="routing")
            for q in quotes:
                await self._log(ctx, f"{q.source} quote: ${q.price} (fee: {format_fee(q.fee)})")
            best = select_best_quote(quotes, direction)
            effective_price = best.effective_price
            await self._log(ctx, f"Selected {best.source} with effective price: ${effective_price:.4f}")

            # BUILDING
            await self._transition(ctx, OrderStatus.BUILDING, execution_price=effective_price)
            await self._log(ctx, f"Building transaction on {best.source}")
            await self._sleep(self.build_delay)

            # SUBMITTED
            await self._transition(ctx, OrderStatus.SUBMITTED)
            await self._log(ctx, f"Submitting transaction to {best.source}")
            settlement = await self._call_provider(
                "submission",
                self.provider.execute(best.source, pair, payload.amount, best.price),
            )
            await self._log(ctx, f"Transaction submitted with hash: {settlement.tx_ref}")

            # CONFIRMED
            await self._transition(
                ctx,
                OrderStatus.CONFIRMED,
                tx_hash=settlement.tx_ref,
                execution_price=settlement.executed_price,
            )
            await self._log(
                ctx,
                f"Order confirmed! Final price: ${settlement.executed_price} on {settlement.source}",
            )
        except Exception as exc:
            await self._record_failure(ctx, exc)
            raise

        logger.info("Order %s confirmed: %s @ %s", ctx.order_id, settlement.tx_ref, settlement.executed_price)
        return ExecutionOutcome(
            order_id=ctx.order_id,
            tx_hash=settlement.tx_ref,
            execution_price=settlement.executed_price,
            source=settlement.source,
        )

    async def _transition(self, ctx: _Attempt, target: OrderStatus, **fields: Any) -> Order:
        check_transition(ctx.status, target)
        order = await self._persist(self.store.update(ctx.order_id, status=target, **fields))
        ctx.status = target
        message: dict[str, Any] = {
            "orderId": ctx.order_id,
            "status": target.value,
            "timestamp": isoformat(order.updated_at),
        }
        for name, value in fields.items():
            message[_MESSAGE_KEYS.get(name, name)] = value
        if target is OrderStatus.FAILED:
            message["logs"] = [entry.to_dict() for entry in order.logs]
        await self._publish(ctx.order_id, message)
        return order

    async def _log(self, ctx: _Attempt, message: str) -> Order:
        return await self._persist(self.store.append_log(ctx.order_id, message))

    async def _publish(self, order_id: str, message: dict[str, Any]) -> None:
        try:
            await self.notifier.publish(order_id, message)
        except Exception as exc:
            if not isinstance(exc, NotificationError):
                exc = NotificationError(str(exc) or type(exc).__name__)
            self.publish_failures += 1
            logger.exception(
                "Publish failed for order %s (%s): %s; continuing", order_id, message.get("status"), exc
            )

    async def _persist(self, op: Awaitable[T]) -> T:
        try:
            return await op
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Order store error: {exc}") from exc

    async def _call_provider(self, stage: str, call: Awaitable[T]) -> T:
        try:
            if self.provider_timeout is None:
                return await call
            return await asyncio.wait_for(call, self.provider_timeout)
        except asyncio.TimeoutError as exc:
            limit = f" after {self.provider_timeout}s" if self.provider_timeout is not None else ""
            raise ProviderError(f"Provider {stage} call timed out{limit}", stage=stage) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(str(exc) or type(exc).__name__, stage=stage) from exc

    async def _record_failure(self, ctx: _Attempt, exc: Exception) -> None:
        """Append the error and mark FAILED. Never masks the original error."""
        reason = str(exc) or type(exc).__name__
        if ctx.status.is_terminal:
            logger.error("Order %s errored after reaching %s: %s", ctx.order_id, ctx.status.value, reason)
            return
        try:
            await self._log(ctx, f"Error on attempt {ctx.number}: {reason}")
            await self._transition(ctx, OrderStatus.FAILED)
        except Exception:
            logger.exception("Could not record failure for order %s", ctx.order_id)
