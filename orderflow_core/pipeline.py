"""
OrderPipeline: the explicitly constructed service object.

Wires store, notifier and provider into a job queue, state machine and worker
pool. Construct once at process start and pass it to request handlers and
transports; nothing here is a module-level singleton.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from orderflow_core.config import PipelineConfig
from orderflow_core.errors import OrderflowError
from orderflow_core.execution.paper import PaperQuoteProvider
from orderflow_core.execution.provider import QuoteProvider
from orderflow_core.execution.state_machine import OrderStateMachine
from orderflow_core.execution.worker import JobObserver, OrderWorkerPool
from orderflow_core.notifier import InMemoryNotifier, Notifier, Subscription
from orderflow_core.order import Direction, Order, OrderStatus, TradingPair, isoformat, utc_now
from orderflow_core.jobs import JobPayload, JobStore, SqliteJobStore
from orderflow_core.queue import JobQueue
from orderflow_core.store import InMemoryOrderStore, OrderStore

logger = logging.getLogger(__name__)


class OrderPipeline:
    """
    Order intake, lookup, live updates and background processing in one handle.

    Flow: submit_order → store (PENDING) → queue → worker → state machine →
    store + notifier per transition.
    """

    def __init__(
        self,
        store: OrderStore,
        notifier: Notifier,
        provider: QuoteProvider,
        *,
        config: PipelineConfig | None = None,
        observers: Sequence[JobObserver] = (),
        job_store: JobStore | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or PipelineConfig()
        self.store = store
        self.notifier = notifier
        self.provider = provider
        if job_store is None and self.config.job_db_path:
            job_store = SqliteJobStore(self.config.job_db_path)
        self.queue = JobQueue(
            retry=self.config.retry,
            retention=self.config.retention,
            rate_limit=self.config.rate_limit,
            backend=job_store,
            clock=clock,
        )
        self.state_machine = OrderStateMachine(
            store,
            notifier,
            provider,
            build_delay=self.config.build_delay,
            provider_timeout=self.config.provider_timeout,
            sleep=sleep,
        )
        self.workers = OrderWorkerPool(
            self.queue,
            self.state_machine,
            concurrency=self.config.concurrency,
            observers=observers,
        )

    @classmethod
    def in_memory(
        cls,
        provider: QuoteProvider | None = None,
        *,
        config: PipelineConfig | None = None,
        **kwargs: Any,
    ) -> OrderPipeline:
        """Pipeline over the in-memory store and notifier; paper provider unless one is given."""
        config = config or PipelineConfig()
        return cls(
            InMemoryOrderStore(),
            InMemoryNotifier(subscriber_queue_size=config.subscriber_queue_size),
            provider or PaperQuoteProvider(),
            config=config,
            **kwargs,
        )

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the workers. After stop(), reopens the queue so the pipeline can run again."""
        if self.queue.closed:
            await self.queue.reopen()
        self.workers.start()

    async def stop(self, *, drain: bool = False, timeout: float | None = None) -> None:
        """Stop intake and workers; in-flight attempts finish first. Open subscriptions are closed."""
        await self.workers.stop(drain=drain, timeout=timeout)
        close = getattr(self.notifier, "close", None)
        if callable(close):
            close()

    async def __aenter__(self) -> OrderPipeline:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # --- Intake and lookup ---

    async def submit_order(
        self,
        pair: TradingPair | str,
        amount: float,
        direction: Direction | str,
    ) -> Order:
        """
        Validate and accept a new order: create it PENDING and queue it.
        Raises ValidationError on malformed input.
        """
        if self.queue.closed:
            raise OrderflowError("Pipeline is stopped; not accepting orders")
        order = Order.new(pair, amount, direction)
        await self.store.create(order)
        await self.queue.enqueue(order.id, JobPayload.from_order(order))
        logger.info("Order %s accepted: %s %s %s", order.id, order.direction.value, order.amount, order.pair)
        return order

    async def enqueue_order(self, order_id: str) -> str:
        """(Re)queue an existing order. A no-op while the queue still holds its job."""
        order = await self.store.get(order_id)
        return await self.queue.enqueue(order.id, JobPayload.from_order(order))

    async def get_order(self, order_id: str) -> Order:
        return await self.store.get(order_id)

    async def list_orders(self, status: OrderStatus | str | None = None, limit: int = 50) -> list[Order]:
        if isinstance(status, str):
            status = OrderStatus(status.upper())
        return await self.store.query(status=status, limit=limit)

    def subscribe(self, order_id: str) -> Subscription:
        """Live updates for one order from now on (no replay of earlier transitions)."""
        return self.notifier.subscribe(order_id)

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok" if self.workers.running else "stopped",
            "timestamp": isoformat(utc_now()),
            "queue": self.queue.counts(),
            "workers": self.workers.stats(),
        }
