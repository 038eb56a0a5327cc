"""
Quote and SettlementResult: what a liquidity source returns.

Ephemeral. Quotes only survive in the order log; a settlement's reference and
price are copied into the order on confirmation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from orderflow_core.order import utc_now


@dataclass(frozen=True)
class Quote:
    """A priced, fee-bearing offer from one source. fee is a rate (0.003 = 0.3%)."""

    source: str
    price: float
    fee: float
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def effective_price(self) -> float:
        return self.price * (1 + self.fee)


@dataclass(frozen=True)
class SettlementResult:
    tx_ref: str
    executed_price: float
    executed_at: datetime
    source: str
