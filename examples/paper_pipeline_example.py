"""
Paper pipeline example: submit orders, watch live updates, print a report.

Shows: OrderPipeline over the in-memory store/notifier with the paper provider,
a subscription per order, a job observer, and the operator report. Delays are
shortened so the run takes a couple of seconds.
"""

from __future__ import annotations

import asyncio
import logging

from orderflow_core import OrderPipeline, PipelineConfig, RetryPolicy
from orderflow_core.execution import PaperQuoteProvider
from orderflow_core.jobs import Job
from orderflow_core.notifier import Subscription
from reporting import print_report


def print_job_observer(job: Job, error: BaseException | None) -> None:
    """Observer: one line per finished attempt."""
    if error is None:
        print(f"  [Observer] job {job.id[:8]} completed: {job.result}")
    else:
        print(f"  [Observer] job {job.id[:8]} attempt {job.attempts_made} failed: {error} -> {job.state.value}")


async def watch(sub: Subscription) -> None:
    async with sub:
        async for message in sub:
            extra = {k: v for k, v in message.items() if k not in ("orderId", "status", "timestamp", "logs")}
            print(f"  [Update] {message['orderId'][:8]} {message['status']} {extra or ''}")
            if message["status"] in ("CONFIRMED", "FAILED"):
                return


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = PipelineConfig(
        concurrency=4,
        retry=RetryPolicy(attempts=3, backoff_base=0.2),
        build_delay=0.1,
    )
    provider = PaperQuoteProvider(base_price=150.0, quote_latency=0.05, settlement_delay=(0.2, 0.4), seed=7)
    pipeline = OrderPipeline.in_memory(provider, config=config, observers=[print_job_observer])

    async with pipeline:
        requests = [("SOL-USDC", 10, "BUY"), ("SOL-USDC", 2.5, "SELL"), ("BONK-USDC", 1000, "BUY")]
        watchers = []
        for pair, amount, direction in requests:
            order = await pipeline.submit_order(pair, amount, direction)
            print(f"Accepted {order.id[:8]}: {direction} {amount} {pair}")
            watchers.append(asyncio.create_task(watch(pipeline.subscribe(order.id))))
        await asyncio.gather(*watchers)
        await pipeline.queue.wait_until_drained(timeout=10)

        print("\n--- Order log (first order) ---")
        first = (await pipeline.list_orders(limit=len(requests)))[-1]
        for entry in first.logs:
            print(f"  {entry.timestamp:%H:%M:%S.%f} {entry.message}")

        print()
        print_report(await pipeline.list_orders(limit=100), pipeline.queue.counts())
        print(f"Health: {pipeline.health()}")


if __name__ == "__main__":
    asyncio.run(main())
