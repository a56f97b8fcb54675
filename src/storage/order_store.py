"""Persist orders and wallet batches as orjson documents."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any

import orjson

from src.errors import OrderNotFound, PersistenceFailure
from src.models import Order, WalletBatch


class OrderStore:
    """Document store for orders and their wallet batches.

    Each collection is one JSON object keyed by id, rewritten atomically on save.
    """

    def __init__(self, state_path: str | Path) -> None:
        self.state_path = Path(state_path)
        self.state_path.mkdir(parents=True, exist_ok=True)
        self._orders_file = self.state_path / "orders.json"
        self._batches_file = self.state_path / "batches.json"
        self._lock = threading.Lock()

    def create_order(self, order: Order) -> Order:
        with self._lock:
            orders = self._load(self._orders_file)
            if order.order_id in orders:
                raise PersistenceFailure(f"Duplicate order id: {order.order_id}")
            orders[order.order_id] = order.to_dict()
            self._save(self._orders_file, orders)
        return order

    def get_order(self, order_id: str) -> Order:
        orders = self._load(self._orders_file)
        data = orders.get(order_id)
        if data is None:
            raise OrderNotFound(order_id)
        return Order.from_dict(data)

    def save_order(self, order: Order) -> Order:
        with self._lock:
            orders = self._load(self._orders_file)
            orders[order.order_id] = order.to_dict()
            self._save(self._orders_file, orders)
        return order

    def update_order(self, order_id: str, **fields: Any) -> Order:
        """Apply field changes to the stored order and return the updated copy."""
        with self._lock:
            orders = self._load(self._orders_file)
            data = orders.get(order_id)
            if data is None:
                raise OrderNotFound(order_id)
            order = Order.from_dict(data)
            for name, value in fields.items():
                if not hasattr(order, name):
                    raise AttributeError(f"Order has no field {name!r}")
                setattr(order, name, value)
            orders[order_id] = order.to_dict()
            self._save(self._orders_file, orders)
        return order

    def list_orders(self, limit: int = 50) -> list[Order]:
        """Return the newest orders first."""
        orders = [Order.from_dict(data) for data in self._load(self._orders_file).values()]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    def save_batch(self, batch: WalletBatch) -> WalletBatch:
        with self._lock:
            batches = self._load(self._batches_file)
            batches[batch.key] = batch.to_dict()
            self._save(self._batches_file, batches)
        return batch

    def get_batch(self, order_id: str, batch_number: int) -> WalletBatch | None:
        data = self._load(self._batches_file).get(f"{order_id}:{batch_number}")
        return WalletBatch.from_dict(data) if data is not None else None

    def list_batches(self, order_id: str) -> list[WalletBatch]:
        batches = [
            WalletBatch.from_dict(data)
            for data in self._load(self._batches_file).values()
            if data.get("order_id") == order_id
        ]
        batches.sort(key=lambda b: b.batch_number)
        return batches

    def _load(self, path: Path) -> dict[str, dict[str, Any]]:
        if not path.exists():
            return {}
        try:
            with open(path, "rb") as f:
                data = orjson.loads(f.read())
        except (OSError, orjson.JSONDecodeError) as exc:
            raise PersistenceFailure(f"Unreadable store file: {path}") from exc
        if not isinstance(data, dict):
            raise PersistenceFailure(f"Unexpected store layout: {path}")
        return data

    def _save(self, path: Path, documents: dict[str, dict[str, Any]]) -> None:
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "wb") as f:
                f.write(orjson.dumps(documents))
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceFailure(f"Store write failed: {path}") from exc
