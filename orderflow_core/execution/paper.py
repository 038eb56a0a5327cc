"""
Paper quote provider: simulated liquidity venues with latency and randomness.

No venue connection. Each venue quotes around a shared base price with its own
variance band and fee; execution waits a settlement delay and applies a small
random slippage. Pass seed (or rng) and small latencies for deterministic tests.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from orderflow_core.execution.provider import QuoteProvider
from orderflow_core.order import TradingPair, utc_now
from orderflow_core.quote import Quote, SettlementResult

logger = logging.getLogger(__name__)

_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
TX_HASH_LENGTH = 88


@dataclass(frozen=True)
class PaperVenue:
    """Simulated source: quotes base_price * uniform(variance_low, variance_high)."""

    name: str
    fee: float
    variance_low: float
    variance_high: float


DEFAULT_VENUES: tuple[PaperVenue, ...] = (
    PaperVenue(name="Raydium", fee=0.003, variance_low=0.98, variance_high=1.02),
    PaperVenue(name="Meteora", fee=0.002, variance_low=0.97, variance_high=1.02),
)


class PaperQuoteProvider(QuoteProvider):
    """
    Paper provider. Venues are quoted concurrently; quotes come back in venue order.
    Settled trades are kept in an execution log for inspection.
    """

    def __init__(
        self,
        base_price: float = 150.0,
        *,
        venues: Sequence[PaperVenue] = DEFAULT_VENUES,
        quote_latency: float = 0.2,
        settlement_delay: tuple[float, float] = (2.0, 3.0),
        slippage: float = 0.001,
        seed: int | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not venues:
            raise ValueError("At least one venue is required")
        self._base_price = base_price
        self._venues = {v.name: v for v in venues}
        self.quote_latency = quote_latency
        self.settlement_delay = settlement_delay
        self.slippage = slippage
        self._rng = rng or random.Random(seed)
        self._sleep = sleep
        self._execution_log: list[SettlementResult] = []

    @property
    def base_price(self) -> float:
        return self._base_price

    def set_base_price(self, price: float) -> None:
        """Move the simulated market (e.g. to test different conditions)."""
        if price <= 0:
            raise ValueError("base price must be positive")
        self._base_price = price

    def venues(self) -> list[str]:
        return list(self._venues)

    async def _quote_venue(self, venue: PaperVenue, pair: TradingPair, amount: float) -> Quote:
        await self._sleep(self.quote_latency)
        variance = self._rng.uniform(venue.variance_low, venue.variance_high)
        return Quote(
            source=venue.name,
            price=round(self._base_price * variance, 4),
            fee=venue.fee,
            timestamp=utc_now(),
        )

    async def quote(self, pair: TradingPair, amount: float) -> list[Quote]:
        quotes = await asyncio.gather(*(self._quote_venue(v, pair, amount) for v in self._venues.values()))
        return list(quotes)

    async def execute(
        self,
        source: str,
        pair: TradingPair,
        amount: float,
        expected_price: float,
    ) -> SettlementResult:
        if source not in self._venues:
            raise ValueError(f"Unknown venue: {source}")
        low, high = self.settlement_delay
        await self._sleep(self._rng.uniform(low, high))
        factor = self._rng.uniform(1 - self.slippage, 1 + self.slippage)
        result = SettlementResult(
            tx_ref=self._tx_hash(),
            executed_price=round(expected_price * factor, 4),
            executed_at=utc_now(),
            source=source,
        )
        self._execution_log.append(result)
        logger.debug("Paper execution on %s: %s %s @ %s", source, amount, pair, result.executed_price)
        return result

    def get_execution_log(self) -> list[SettlementResult]:
        """All settlements so far, oldest first."""
        return list(self._execution_log)

    def _tx_hash(self) -> str:
        return "".join(self._rng.choice(_BASE58) for _ in range(TX_HASH_LENGTH))
