"""
Static quote provider example.

Returns the same quotes on every call and settles at the expected price (or a
fixed price). The first N quote or execute calls can be made to fail. Minimal
illustration of the QuoteProvider interface; handy in tests and demos.
"""

from __future__ import annotations

from collections.abc import Sequence

from orderflow_core.execution.provider import QuoteProvider
from orderflow_core.order import TradingPair, utc_now
from orderflow_core.quote import Quote, SettlementResult


class StaticQuoteProvider(QuoteProvider):
    """
    quotes: (source, price, fee) tuples, returned in this order.
    quote_failures / execute_failures: how many leading calls raise RuntimeError.
    """

    def __init__(
        self,
        quotes: Sequence[tuple[str, float, float]],
        *,
        executed_price: float | None = None,
        quote_failures: int = 0,
        execute_failures: int = 0,
    ) -> None:
        self.quotes = list(quotes)
        self.executed_price = executed_price
        self.quote_failures = quote_failures
        self.execute_failures = execute_failures
        self.quote_calls = 0
        self.execute_calls: list[tuple[str, float]] = []

    async def quote(self, pair: TradingPair, amount: float) -> list[Quote]:
        self.quote_calls += 1
        if self.quote_calls <= self.quote_failures:
            raise RuntimeError(f"quote source unavailable (call {self.quote_calls})")
        now = utc_now()
        return [Quote(source=s, price=p, fee=f, timestamp=now) for s, p, f in self.quotes]

    async def execute(
        self,
        source: str,
        pair: TradingPair,
        amount: float,
        expected_price: float,
    ) -> SettlementResult:
        self.execute_calls.append((source, expected_price))
        n = len(self.execute_calls)
        if n <= self.execute_failures:
            raise RuntimeError(f"execution rejected (call {n})")
        price = self.executed_price if self.executed_price is not None else expected_price
        return SettlementResult(
            tx_ref=f"static-tx-{n}",
            executed_price=price,
            executed_at=utc_now(),
            source=source,
        )
