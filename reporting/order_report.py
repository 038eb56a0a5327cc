"""
Order report: tabulate orders and print an operator summary.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import pandas as pd

from orderflow_core.order import Order
from reporting.metrics import PipelineMetrics, compute_metrics

COLUMNS = [
    "id",
    "pair",
    "amount",
    "direction",
    "status",
    "execution_price",
    "tx_hash",
    "log_entries",
    "created_at",
    "updated_at",
]


def orders_to_frame(orders: Sequence[Order]) -> pd.DataFrame:
    """One row per order, indexed by created_at (oldest first)."""
    rows = [
        {
            "id": o.id,
            "pair": str(o.pair),
            "amount": o.amount,
            "direction": o.direction.value,
            "status": o.status.value,
            "execution_price": o.execution_price,
            "tx_hash": o.tx_hash,
            "log_entries": len(o.logs),
            "created_at": o.created_at,
            "updated_at": o.updated_at,
        }
        for o in orders
    ]
    df = pd.DataFrame(rows, columns=COLUMNS)
    if df.empty:
        return df
    return df.sort_values("created_at").reset_index(drop=True)


def confirmed_by_pair(orders: Sequence[Order]) -> pd.DataFrame:
    """Per pair and direction: confirmed count, total amount, mean execution price."""
    df = orders_to_frame(orders)
    df = df[df["status"] == "CONFIRMED"]
    if df.empty:
        return pd.DataFrame(columns=["pair", "direction", "orders", "amount", "mean_price"])
    grouped = df.groupby(["pair", "direction"], as_index=False).agg(
        orders=("id", "count"),
        amount=("amount", "sum"),
        mean_price=("execution_price", "mean"),
    )
    return grouped


def print_report(
    orders: Sequence[Order],
    queue_counts: Mapping[str, int] | None = None,
) -> PipelineMetrics:
    """
    Compute metrics for the given orders and print a summary.

    Parameters
    ----------
    orders : sequence of Order
        Snapshots from the store.
    queue_counts : mapping, optional
        JobQueue.counts() output, printed when given.

    Returns
    -------
    PipelineMetrics
        The computed metrics (e.g. for programmatic use).
    """
    metrics = compute_metrics(orders)
    print("--- Order Pipeline ---")
    print(f"Orders:          {metrics.total_orders}")
    print(f"Confirmed:       {metrics.confirmed}")
    print(f"Failed:          {metrics.failed}")
    print(f"In progress:     {metrics.in_progress}")
    print(f"Success rate:    {metrics.success_rate:.2f}%")
    print(f"Latency mean:    {metrics.mean_processing_s:.3f}s")
    print(f"Latency median:  {metrics.median_processing_s:.3f}s")
    print(f"Latency p95:     {metrics.p95_processing_s:.3f}s")
    if queue_counts is not None:
        print("Queue:           " + ", ".join(f"{k}={v}" for k, v in queue_counts.items()))
    by_pair = confirmed_by_pair(orders)
    if not by_pair.empty:
        print(by_pair.to_string(index=False))
    print("----------------------")
    return metrics
