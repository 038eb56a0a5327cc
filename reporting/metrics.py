"""
Pipeline metrics: outcome counts, success rate, processing latency.

Latency is measured per terminal order as updated_at - created_at, i.e. from
acceptance to the last write (CONFIRMED or final FAILED), retries included.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from orderflow_core.order import Order, OrderStatus


@dataclass
class PipelineMetrics:
    """Summary of a set of orders."""

    total_orders: int
    status_counts: dict[str, int] = field(default_factory=dict)
    confirmed: int = 0
    failed: int = 0
    in_progress: int = 0
    success_rate: float = 0.0
    mean_processing_s: float = 0.0
    median_processing_s: float = 0.0
    p95_processing_s: float = 0.0


def compute_metrics(orders: Sequence[Order]) -> PipelineMetrics:
    """
    Compute outcome and latency metrics.

    Parameters
    ----------
    orders : sequence of Order
        Snapshots from the store (any statuses).

    Returns
    -------
    PipelineMetrics
        success_rate is confirmed / (confirmed + failed) as a percentage;
        latency figures cover terminal orders only and are 0 when there are none.
    """
    counts = {status.value: 0 for status in OrderStatus}
    for o in orders:
        counts[o.status.value] += 1
    confirmed = counts[OrderStatus.CONFIRMED.value]
    failed = counts[OrderStatus.FAILED.value]
    terminal = confirmed + failed

    durations = np.array(
        [(o.updated_at - o.created_at).total_seconds() for o in orders if o.status.is_terminal],
        dtype=float,
    )
    if durations.size == 0:
        mean_s = median_s = p95_s = 0.0
    else:
        mean_s = float(np.mean(durations))
        median_s = float(np.median(durations))
        p95_s = float(np.percentile(durations, 95))

    return PipelineMetrics(
        total_orders=len(orders),
        status_counts=counts,
        confirmed=confirmed,
        failed=failed,
        in_progress=len(orders) - terminal,
        success_rate=(confirmed / terminal * 100.0) if terminal else 0.0,
        mean_processing_s=mean_s,
        median_processing_s=median_s,
        p95_processing_s=p95_s,
    )
