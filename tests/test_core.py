"""
Tests for orderflow_core: Order, transitions, OrderStore, Notifier, config.
"""

from dataclasses import FrozenInstanceError

import pytest

from orderflow_core import (
    Direction,
    InMemoryNotifier,
    InMemoryOrderStore,
    Order,
    OrderStatus,
    PipelineConfig,
    RetryPolicy,
    TradingPair,
)
from orderflow_core.config import ENV_ATTEMPTS, ENV_CONCURRENCY, ENV_JOB_DB_PATH, ENV_PROVIDER_TIMEOUT
from orderflow_core.errors import (
    InvalidTransitionError,
    OrderNotFoundError,
    PersistenceError,
    ValidationError,
)
from orderflow_core.notifier import channel_for
from orderflow_core.order import check_transition


# --- Order ---


def test_order_new_is_pending_with_empty_log():
    o = Order.new("SOL-USDC", 10, "BUY")
    assert o.status == OrderStatus.PENDING
    assert o.logs == ()
    assert o.pair == TradingPair(base="SOL", quote="USDC")
    assert o.direction == Direction.BUY
    assert o.amount == 10.0
    assert o.execution_price is None
    assert o.tx_hash is None
    assert len(o.id) == 32


def test_order_ids_are_unique():
    assert Order.new("SOL-USDC", 1, "BUY").id != Order.new("SOL-USDC", 1, "BUY").id


def test_order_immutable():
    o = Order.new("SOL-USDC", 1, "SELL")
    with pytest.raises(FrozenInstanceError):
        o.status = OrderStatus.CONFIRMED


@pytest.mark.parametrize("pair", ["sol-usdc", "SOLUSDC", "SOL-USDC-ETH", "SOL_USDC", ""])
def test_order_rejects_malformed_pair(pair):
    with pytest.raises(ValidationError):
        Order.new(pair, 1, "BUY")


@pytest.mark.parametrize("amount", [0, -1, 0.0001, "abc", None, True])
def test_order_rejects_bad_amount(amount):
    with pytest.raises(ValidationError):
        Order.new("SOL-USDC", amount, "BUY")


def test_order_rejects_bad_direction():
    with pytest.raises(ValidationError):
        Order.new("SOL-USDC", 1, "HOLD")


def test_direction_parse_is_case_insensitive():
    assert Direction.parse("sell") == Direction.SELL


def test_order_to_dict_uses_record_field_names():
    d = Order.new("SOL-USDC", 2.5, "SELL").to_dict()
    assert set(d) == {
        "id", "pair", "amount", "direction", "status", "executionPrice",
        "txHash", "logs", "createdAt", "updatedAt",
    }
    assert d["pair"] == "SOL-USDC"
    assert d["direction"] == "SELL"
    assert d["status"] == "PENDING"
    assert d["createdAt"].endswith("Z")


# --- Transitions ---


def test_forward_sequence_allowed():
    seq = [
        OrderStatus.PENDING,
        OrderStatus.ROUTING,
        OrderStatus.BUILDING,
        OrderStatus.SUBMITTED,
        OrderStatus.CONFIRMED,
    ]
    for current, target in zip(seq, seq[1:]):
        check_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (OrderStatus.PENDING, OrderStatus.BUILDING),
        (OrderStatus.ROUTING, OrderStatus.SUBMITTED),
        (OrderStatus.BUILDING, OrderStatus.PENDING),
        (OrderStatus.SUBMITTED, OrderStatus.BUILDING),
        (OrderStatus.CONFIRMED, OrderStatus.FAILED),
        (OrderStatus.CONFIRMED, OrderStatus.ROUTING),
        (OrderStatus.FAILED, OrderStatus.FAILED),
        (OrderStatus.FAILED, OrderStatus.BUILDING),
    ],
)
def test_illegal_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        check_transition(current, target)


@pytest.mark.parametrize(
    "current", [OrderStatus.PENDING, OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED]
)
def test_failed_reachable_from_non_terminal(current):
    check_transition(current, OrderStatus.FAILED)


def test_new_attempt_restarts_routing_after_failure():
    check_transition(OrderStatus.FAILED, OrderStatus.ROUTING)
    check_transition(OrderStatus.SUBMITTED, OrderStatus.ROUTING)


# --- OrderStore ---


@pytest.mark.asyncio
async def test_store_create_and_get():
    store = InMemoryOrderStore()
    o = await store.create(Order.new("SOL-USDC", 1, "BUY"))
    assert await store.get(o.id) == o
    assert len(store) == 1


@pytest.mark.asyncio
async def test_store_create_duplicate_rejected():
    store = InMemoryOrderStore()
    o = await store.create(Order.new("SOL-USDC", 1, "BUY"))
    with pytest.raises(PersistenceError):
        await store.create(o)


@pytest.mark.asyncio
async def test_store_get_missing_raises():
    store = InMemoryOrderStore()
    with pytest.raises(OrderNotFoundError):
        await store.get("nope")


@pytest.mark.asyncio
async def test_store_update_sets_fields_and_updated_at():
    store = InMemoryOrderStore()
    o = await store.create(Order.new("SOL-USDC", 1, "BUY"))
    updated = await store.update(o.id, status=OrderStatus.BUILDING, execution_price=149.2)
    assert updated.status == OrderStatus.BUILDING
    assert updated.execution_price == 149.2
    assert updated.updated_at >= o.updated_at
    assert updated.created_at == o.created_at
    # earlier snapshot unchanged
    assert o.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_store_update_rejects_immutable_fields():
    store = InMemoryOrderStore()
    o = await store.create(Order.new("SOL-USDC", 1, "BUY"))
    with pytest.raises(ValueError):
        await store.update(o.id, amount=5)


@pytest.mark.asyncio
async def test_store_append_log_keeps_order():
    store = InMemoryOrderStore()
    o = await store.create(Order.new("SOL-USDC", 1, "BUY"))
    await store.append_log(o.id, "first")
    updated = await store.append_log(o.id, "second")
    assert [e.message for e in updated.logs] == ["first", "second"]
    assert updated.logs[0].timestamp <= updated.logs[1].timestamp


@pytest.mark.asyncio
async def test_store_query_by_status_newest_first_with_limit():
    store = InMemoryOrderStore()
    ids = []
    for _ in range(4):
        o = await store.create(Order.new("SOL-USDC", 1, "BUY"))
        ids.append(o.id)
    await store.update(ids[0], status=OrderStatus.CONFIRMED)
    await store.update(ids[2], status=OrderStatus.CONFIRMED)
    confirmed = await store.query(status=OrderStatus.CONFIRMED)
    assert {o.id for o in confirmed} == {ids[0], ids[2]}
    newest = await store.query(limit=2)
    assert len(newest) == 2
    assert newest[0].created_at >= newest[1].created_at


# --- Notifier ---


def test_channel_name():
    assert channel_for("abc") == "order-updates:abc"


@pytest.mark.asyncio
async def test_publish_without_subscribers_returns_immediately():
    notifier = InMemoryNotifier()
    assert await notifier.publish("x", {"status": "ROUTING"}) == 0


@pytest.mark.asyncio
async def test_publish_fans_out_to_all_subscribers_of_order():
    notifier = InMemoryNotifier()
    a = notifier.subscribe("x")
    b = notifier.subscribe("x")
    other = notifier.subscribe("y")
    delivered = await notifier.publish("x", {"orderId": "x", "status": "ROUTING"})
    assert delivered == 2
    assert (await a.get(timeout=1))["status"] == "ROUTING"
    assert (await b.get(timeout=1))["status"] == "ROUTING"
    assert other.get_nowait() is None


@pytest.mark.asyncio
async def test_no_replay_for_late_subscriber():
    notifier = InMemoryNotifier()
    await notifier.publish("x", {"status": "CONFIRMED"})
    sub = notifier.subscribe("x")
    assert sub.get_nowait() is None
    await notifier.publish("x", {"status": "AFTER"})
    assert sub.get_nowait() == {"status": "AFTER"}


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent_and_releases_channel():
    notifier = InMemoryNotifier()
    sub = notifier.subscribe("x")
    assert notifier.subscriber_count("x") == 1
    sub.close()
    sub.close()
    assert sub.closed
    assert notifier.subscriber_count("x") == 0
    assert await notifier.publish("x", {"status": "ROUTING"}) == 0
    assert await sub.get() is None


@pytest.mark.asyncio
async def test_subscription_iteration_ends_on_close():
    notifier = InMemoryNotifier()
    received = []
    async with notifier.subscribe("x") as sub:
        await notifier.publish("x", {"n": 1})
        await notifier.publish("x", {"n": 2})
        sub.close()
        async for message in sub:
            received.append(message["n"])
    assert received == [1, 2]


@pytest.mark.asyncio
async def test_bounded_subscriber_drops_overflow():
    notifier = InMemoryNotifier(subscriber_queue_size=1)
    sub = notifier.subscribe("x")
    assert await notifier.publish("x", {"n": 1}) == 1
    assert await notifier.publish("x", {"n": 2}) == 0
    assert sub.dropped == 1
    assert sub.get_nowait() == {"n": 1}


@pytest.mark.asyncio
async def test_notifier_close_closes_subscriptions():
    notifier = InMemoryNotifier()
    sub = notifier.subscribe("x")
    notifier.close()
    assert sub.closed
    assert notifier.subscriber_count("x") == 0


# --- Config ---


def test_config_defaults():
    c = PipelineConfig()
    assert c.concurrency == 10
    assert c.retry.attempts == 3
    assert c.retry.backoff_base == 2.0
    assert c.rate_limit.max_deliveries == 100
    assert c.rate_limit.window == 60.0
    assert c.retention.completed_age == 3600.0
    assert c.retention.completed_count == 1000
    assert c.retention.dead_age == 86400.0
    assert c.provider_timeout is None


def test_retry_delays_are_exponential():
    policy = RetryPolicy()
    assert [policy.delay_for(i) for i in range(3)] == [2.0, 4.0, 8.0]


def test_config_from_env():
    env = {ENV_CONCURRENCY: "4", ENV_ATTEMPTS: "5", ENV_PROVIDER_TIMEOUT: "1.5", ENV_JOB_DB_PATH: "/var/lib/orderflow/jobs.db"}
    c = PipelineConfig.from_env(env)
    assert c.concurrency == 4
    assert c.retry.attempts == 5
    assert c.provider_timeout == 1.5
    assert c.rate_limit.max_deliveries == 100
    assert c.job_db_path == "/var/lib/orderflow/jobs.db"
    assert PipelineConfig.from_env({}).job_db_path is None


def test_config_from_env_rejects_garbage():
    with pytest.raises(ValueError):
        PipelineConfig.from_env({ENV_CONCURRENCY: "ten"})


def test_config_validation():
    with pytest.raises(ValueError):
        PipelineConfig(concurrency=0)
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)
