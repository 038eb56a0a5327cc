"""
Notifier: publish/subscribe fanout keyed by order id.

Publishes are fire-and-forget and never wait on subscribers. A subscription
only sees messages published while it is open; there is no replay.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "order-updates"

_CLOSED = object()


def channel_for(order_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{order_id}"


class Subscription:
    """
    Stream of messages for one order channel. Async-iterable; iteration ends
    when the subscription is closed. close() is idempotent.

    maxsize bounds the per-subscriber buffer (0 = unbounded); when full, new
    messages for this subscriber are dropped.
    """

    def __init__(self, notifier: InMemoryNotifier, order_id: str, maxsize: int = 0) -> None:
        self.order_id = order_id
        self.channel = channel_for(order_id)
        self._notifier = notifier
        self._maxsize = maxsize
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, message: dict[str, Any]) -> bool:
        if self._closed:
            return False
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            self.dropped += 1
            return False
        self._queue.put_nowait(message)
        return True

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Next message, or None once closed. Raises asyncio.TimeoutError after timeout seconds."""
        if self._closed and self._queue.empty():
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            return None
        return item

    def get_nowait(self) -> dict[str, Any] | None:
        """Buffered message if any, else None."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notifier._remove(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class Notifier(ABC):
    """
    Abstract fanout. Implementations: InMemoryNotifier (this module); a Redis or
    websocket-gateway transport implements the same two methods.
    """

    @abstractmethod
    async def publish(self, order_id: str, message: dict[str, Any]) -> int:
        """
        Fan message out to current subscribers of the order; return how many
        received it. Transport failures raise NotificationError.
        """
        ...

    @abstractmethod
    def subscribe(self, order_id: str) -> Subscription:
        """Open a subscription to the order's channel."""
        ...


class InMemoryNotifier(Notifier):
    """In-process fanout over per-subscriber asyncio queues."""

    def __init__(self, *, subscriber_queue_size: int = 0) -> None:
        self._subscriber_queue_size = subscriber_queue_size
        self._channels: dict[str, set[Subscription]] = defaultdict(set)

    async def publish(self, order_id: str, message: dict[str, Any]) -> int:
        subscribers = list(self._channels.get(channel_for(order_id), ()))
        delivered = 0
        for sub in subscribers:
            if sub._deliver(dict(message)):
                delivered += 1
            else:
                logger.warning("Dropped update for order %s: subscriber buffer full", order_id)
        return delivered

    def subscribe(self, order_id: str) -> Subscription:
        sub = Subscription(self, order_id, maxsize=self._subscriber_queue_size)
        self._channels[sub.channel].add(sub)
        logger.debug("Subscribed to %s (%d active)", sub.channel, len(self._channels[sub.channel]))
        return sub

    def subscriber_count(self, order_id: str) -> int:
        return len(self._channels.get(channel_for(order_id), ()))

    def close(self) -> None:
        """Close every open subscription."""
        for subs in list(self._channels.values()):
            for sub in list(subs):
                sub.close()

    def _remove(self, sub: Subscription) -> None:
        subs = self._channels.get(sub.channel)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._channels[sub.channel]
