"""
End-to-end tests for OrderPipeline over the in-memory store and notifier.
"""

import asyncio

import pytest

from orderflow_core import OrderPipeline, OrderStatus, PipelineConfig, RetryPolicy
from orderflow_core.errors import OrderflowError, OrderNotFoundError, ValidationError
from orderflow_core.examples.static_provider import StaticQuoteProvider
from orderflow_core.jobs import JobState

VENUE_QUOTES = [("Raydium", 150.2, 0.003), ("Meteora", 148.9, 0.002)]


def make_pipeline(provider=None, **kwargs):
    config = PipelineConfig(
        concurrency=2,
        retry=RetryPolicy(attempts=3, backoff_base=0.01),
        build_delay=0,
    )
    provider = provider or StaticQuoteProvider(VENUE_QUOTES)
    return OrderPipeline.in_memory(provider, config=config, **kwargs)


async def collect_until_confirmed(sub, timeout=2.0):
    statuses = []

    async def _collect():
        async for message in sub:
            statuses.append(message["status"])
            if message["status"] == "CONFIRMED":
                return

    await asyncio.wait_for(_collect(), timeout)
    return statuses


# --- Happy path ---


@pytest.mark.asyncio
async def test_submit_runs_to_confirmed():
    pipeline = make_pipeline()
    order = await pipeline.submit_order("SOL-USDC", 10, "BUY")
    assert order.status == OrderStatus.PENDING
    sub = pipeline.subscribe(order.id)

    async with pipeline:
        statuses = await collect_until_confirmed(sub)
        await pipeline.queue.wait_until_drained(timeout=2.0)

    assert statuses == ["ROUTING", "BUILDING", "SUBMITTED", "CONFIRMED"]
    stored = await pipeline.get_order(order.id)
    assert stored.status == OrderStatus.CONFIRMED
    assert stored.execution_price == pytest.approx(148.9)
    assert stored.tx_hash == "static-tx-1"
    assert pipeline.queue.get_job(order.id).state == JobState.COMPLETED
    # stop() closes open subscriptions
    assert sub.closed


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay():
    pipeline = make_pipeline()
    async with pipeline:
        order = await pipeline.submit_order("SOL-USDC", 1, "SELL")
        await pipeline.queue.wait_until_drained(timeout=2.0)
        sub = pipeline.subscribe(order.id)
        assert sub.get_nowait() is None
        assert (await pipeline.get_order(order.id)).status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_duplicate_enqueue_executes_once():
    provider = StaticQuoteProvider(VENUE_QUOTES)
    pipeline = make_pipeline(provider)
    order = await pipeline.submit_order("SOL-USDC", 10, "BUY")
    ids = await asyncio.gather(*(pipeline.enqueue_order(order.id) for _ in range(5)))
    assert set(ids) == {order.id}

    async with pipeline:
        await pipeline.queue.wait_until_drained(timeout=2.0)
        await pipeline.enqueue_order(order.id)
        await pipeline.queue.wait_until_drained(timeout=2.0)

    assert len(provider.execute_calls) == 1
    assert provider.quote_calls == 1


@pytest.mark.asyncio
async def test_enqueue_unknown_order_raises():
    pipeline = make_pipeline()
    with pytest.raises(OrderNotFoundError):
        await pipeline.enqueue_order("missing")


# --- Failure path ---


@pytest.mark.asyncio
async def test_quote_failure_every_attempt_ends_failed_and_dead():
    provider = StaticQuoteProvider(VENUE_QUOTES, quote_failures=100)
    pipeline = make_pipeline(provider)
    async with pipeline:
        order = await pipeline.submit_order("SOL-USDC", 10, "BUY")
        await pipeline.queue.wait_until_drained(timeout=2.0)

    stored = await pipeline.get_order(order.id)
    assert stored.status == OrderStatus.FAILED
    errors = [e.message for e in stored.logs if e.message.startswith("Error on attempt")]
    assert len(errors) == 3
    assert provider.quote_calls == 3
    assert provider.execute_calls == []
    assert [j.id for j in pipeline.queue.dead_jobs()] == [order.id]


@pytest.mark.asyncio
async def test_transient_failure_recovers_on_retry():
    provider = StaticQuoteProvider(VENUE_QUOTES, quote_failures=1)
    pipeline = make_pipeline(provider)
    async with pipeline:
        order = await pipeline.submit_order("SOL-USDC", 10, "BUY")
        await pipeline.queue.wait_until_drained(timeout=2.0)

    stored = await pipeline.get_order(order.id)
    assert stored.status == OrderStatus.CONFIRMED
    assert pipeline.queue.get_job(order.id).attempts_made == 2


# --- Intake validation ---


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "pair,amount,direction",
    [("SOLUSDC", 1, "BUY"), ("SOL-USDC", 0, "BUY"), ("SOL-USDC", 1, "HOLD"), ("SOL-USDC", 0.0001, "SELL")],
)
async def test_submit_rejects_invalid_input(pair, amount, direction):
    pipeline = make_pipeline()
    with pytest.raises(ValidationError):
        await pipeline.submit_order(pair, amount, direction)
    assert await pipeline.list_orders() == []
    assert len(pipeline.queue) == 0


@pytest.mark.asyncio
async def test_submit_after_stop_rejected():
    pipeline = make_pipeline()
    await pipeline.start()
    await pipeline.stop()
    with pytest.raises(OrderflowError):
        await pipeline.submit_order("SOL-USDC", 1, "BUY")


# --- Lookup and health ---


@pytest.mark.asyncio
async def test_list_orders_by_status():
    pipeline = make_pipeline()
    pending = await pipeline.submit_order("SOL-USDC", 1, "BUY")
    assert [o.id for o in await pipeline.list_orders("pending")] == [pending.id]
    async with pipeline:
        await pipeline.queue.wait_until_drained(timeout=2.0)
    assert [o.id for o in await pipeline.list_orders(OrderStatus.CONFIRMED)] == [pending.id]
    assert await pipeline.list_orders("PENDING") == []


@pytest.mark.asyncio
async def test_health_reports_queue_and_workers():
    pipeline = make_pipeline()
    assert pipeline.health()["status"] == "stopped"
    async with pipeline:
        await pipeline.submit_order("SOL-USDC", 1, "BUY")
        await pipeline.queue.wait_until_drained(timeout=2.0)
        health = pipeline.health()
        assert health["status"] == "ok"
        assert health["queue"]["completed"] == 1
        assert health["workers"]["workers"] == 2
        assert health["workers"]["completed"] == 1
        assert health["timestamp"].endswith("Z")


# --- Lifecycle ---


@pytest.mark.asyncio
async def test_pipeline_can_restart_after_stop():
    pipeline = make_pipeline()
    await pipeline.start()
    await pipeline.stop()
    assert pipeline.health()["status"] == "stopped"

    async with pipeline:
        order = await pipeline.submit_order("SOL-USDC", 1, "BUY")
        await pipeline.queue.wait_until_drained(timeout=2.0)
        assert pipeline.health()["status"] == "ok"
    assert (await pipeline.get_order(order.id)).status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_jobs_persist_across_pipelines_with_job_db(tmp_path):
    config = PipelineConfig(
        concurrency=1,
        retry=RetryPolicy(attempts=3, backoff_base=0.01),
        build_delay=0,
        job_db_path=str(tmp_path / "jobs.db"),
    )
    first = OrderPipeline.in_memory(StaticQuoteProvider(VENUE_QUOTES), config=config)
    order = await first.submit_order("SOL-USDC", 3, "SELL")

    # never started: the job is still waiting when the next process comes up
    second = OrderPipeline.in_memory(StaticQuoteProvider(VENUE_QUOTES), config=config)
    await second.store.create(order)
    assert second.queue.get_job(order.id).state == JobState.WAITING
    async with second:
        await second.queue.wait_until_drained(timeout=2.0)
    assert (await second.get_order(order.id)).status == OrderStatus.CONFIRMED
    assert second.queue.get_job(order.id).state == JobState.COMPLETED
