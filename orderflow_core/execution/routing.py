"""
Best-quote selection: lowest price for a BUY, highest for a SELL.

Ties keep the first quote seen.
"""

from __future__ import annotations

from collections.abc import Iterable

from orderflow_core.order import Direction
from orderflow_core.quote import Quote


def select_best_quote(quotes: Iterable[Quote], direction: Direction) -> Quote:
    """Pick the winning quote. Raises ValueError on an empty set."""
    best: Quote | None = None
    for q in quotes:
        if best is None:
            best = q
        elif direction is Direction.BUY and q.price < best.price:
            best = q
        elif direction is Direction.SELL and q.price > best.price:
            best = q
    if best is None:
        raise ValueError("No quotes to select from")
    return best


def format_fee(fee: float) -> str:
    """0.003 -> '0.3%'."""
    return f"{fee * 100:g}%"
