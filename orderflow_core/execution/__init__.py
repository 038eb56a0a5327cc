"""
Execution layer: provider abstraction, quote routing, state machine and worker pool.

QuoteProvider interface; paper provider with simulated venues; OrderStateMachine
for one attempt; OrderWorkerPool to run attempts concurrently off the job queue.
"""

from orderflow_core.execution.provider import QuoteProvider
from orderflow_core.execution.paper import PaperQuoteProvider, PaperVenue
from orderflow_core.execution.routing import select_best_quote
from orderflow_core.execution.state_machine import ExecutionOutcome, OrderStateMachine
from orderflow_core.execution.worker import JobObserver, OrderWorkerPool

__all__ = [
    "QuoteProvider",
    "PaperQuoteProvider",
    "PaperVenue",
    "select_best_quote",
    "ExecutionOutcome",
    "OrderStateMachine",
    "JobObserver",
    "OrderWorkerPool",
]
