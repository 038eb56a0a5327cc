"""
Operator reporting on top of orderflow-core.

Tabulates orders from the store, computes outcome and latency metrics, and
prints a summary alongside queue counts.
"""

from reporting.metrics import PipelineMetrics, compute_metrics
from reporting.order_report import confirmed_by_pair, orders_to_frame, print_report

__all__ = [
    "PipelineMetrics",
    "compute_metrics",
    "confirmed_by_pair",
    "orders_to_frame",
    "print_report",
]
