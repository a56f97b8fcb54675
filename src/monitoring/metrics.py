"""Prometheus metrics definitions."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from src.models import SwapResult


class Metrics:
    """Expose order and batch execution metrics for monitoring."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or REGISTRY
        reg = self.registry

        # Order lifecycle
        self.orders_created_total = Counter(
            "orders_created_total", "Orders issued a deposit account", registry=reg
        )
        self.orders_started_total = Counter(
            "orders_started_total", "Orders moved to processing", registry=reg
        )
        self.orders_finished_total = Counter(
            "orders_finished_total",
            "Orders reaching a terminal status by stop reason",
            ["status", "reason"],
            registry=reg,
        )
        self.active_orders = Gauge("active_orders", "Batch loops currently running", registry=reg)
        self.begin_rejected_total = Counter(
            "begin_rejected_total",
            "Begin requests rejected by error kind",
            ["error"],
            registry=reg,
        )

        # Batches
        self.batches_completed_total = Counter(
            "batches_completed_total", "Wallet batches completed", registry=reg
        )
        self.batch_funding_failures_total = Counter(
            "batch_funding_failures_total", "Bulk funding calls that failed", registry=reg
        )
        self.batch_duration_sec = Histogram(
            "batch_duration_sec",
            "Wall time of one batch from generation to completion",
            buckets=[5, 10, 20, 30, 60, 120, 300, 600],
            registry=reg,
        )

        # Swaps
        self.swaps_total = Counter(
            "swaps_total",
            "Swap attempts by outcome and protocol",
            ["outcome", "protocol"],
            registry=reg,
        )

    def start(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    def record_swap(self, result: SwapResult) -> None:
        outcome = "success" if result.success else "failure"
        self.swaps_total.labels(outcome=outcome, protocol=result.protocol or "none").inc()
