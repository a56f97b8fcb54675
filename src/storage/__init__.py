"""Order and batch persistence."""

from src.storage.order_store import OrderStore

__all__ = ["OrderStore"]
