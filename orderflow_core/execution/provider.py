"""
Quote/execution provider abstraction.

QuoteProvider ABC: quote, execute. The state machine depends only on this
interface; PaperQuoteProvider implements it with simulated venues, real venue
aggregators implement it over their own APIs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from orderflow_core.order import TradingPair
from orderflow_core.quote import Quote, SettlementResult


class QuoteProvider(ABC):
    """
    Abstract quote and execution capability. Both calls may be slow and may
    raise; the caller treats any exception as a provider failure.
    """

    @abstractmethod
    async def quote(self, pair: TradingPair, amount: float) -> Sequence[Quote]:
        """
        Return competing quotes for the pair, at least one, order not significant.
        Implementations backed by several sources query them concurrently.
        """
        ...

    @abstractmethod
    async def execute(
        self,
        source: str,
        pair: TradingPair,
        amount: float,
        expected_price: float,
    ) -> SettlementResult:
        """
        Execute against the chosen source. Blocks until settled. The executed
        price may differ from expected_price (slippage).
        """
        ...
