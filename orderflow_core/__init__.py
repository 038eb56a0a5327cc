"""
orderflow-core: asynchronous order execution pipeline.

Durable-semantics job queue with retry and rate limiting, an order state
machine run by a worker pool, and per-order live update fanout. Storage,
transport and venues sit behind small interfaces.
"""

__version__ = "0.1.0"

from orderflow_core.config import PipelineConfig, RateLimit, RetentionPolicy, RetryPolicy
from orderflow_core.order import Direction, LogEntry, Order, OrderStatus, TradingPair
from orderflow_core.quote import Quote, SettlementResult
from orderflow_core.store import InMemoryOrderStore, OrderStore
from orderflow_core.notifier import InMemoryNotifier, Notifier, Subscription
from orderflow_core.jobs import InMemoryJobStore, Job, JobPayload, JobState, JobStore, SqliteJobStore
from orderflow_core.queue import JobQueue
from orderflow_core.pipeline import OrderPipeline

__all__ = [
    "PipelineConfig",
    "RateLimit",
    "RetentionPolicy",
    "RetryPolicy",
    "Direction",
    "LogEntry",
    "Order",
    "OrderStatus",
    "TradingPair",
    "Quote",
    "SettlementResult",
    "InMemoryOrderStore",
    "OrderStore",
    "InMemoryNotifier",
    "Notifier",
    "Subscription",
    "InMemoryJobStore",
    "Job",
    "JobPayload",
    "JobQueue",
    "JobState",
    "JobStore",
    "SqliteJobStore",
    "OrderPipeline",
]
