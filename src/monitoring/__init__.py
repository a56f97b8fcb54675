"""Monitoring utilities."""

from src.monitoring.logging import configure_logging, order_context
from src.monitoring.metrics import Metrics
from src.monitoring.swap_log import SwapLogger

__all__ = [
    "configure_logging",
    "order_context",
    "Metrics",
    "SwapLogger",
]
