"""Swap attempt CSV logger."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

from src.models import SwapResult, format_timestamp, utc_now


class SwapLogger:
    """Append one row per ephemeral-account swap attempt to a CSV file."""

    def __init__(self, log_path: str | Path) -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_header()

    def record(self, order_id: str, batch_number: int, result: SwapResult) -> None:
        self._append_row(
            {
                "timestamp": format_timestamp(utc_now()),
                "order_id": order_id,
                "batch_number": batch_number,
                "account": result.address,
                "success": result.success,
                "protocol": result.protocol or "",
                "tx_hash": result.tx_hash or "",
                "error": result.error or "",
            }
        )

    def _ensure_header(self) -> None:
        if self.log_path.exists():
            return
        with open(self.log_path, "w", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self._fieldnames())
            writer.writeheader()

    def _append_row(self, row: dict[str, Any]) -> None:
        with open(self.log_path, "a", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self._fieldnames())
            writer.writerow(row)

    @staticmethod
    def _fieldnames() -> list[str]:
        return [
            "timestamp",
            "order_id",
            "batch_number",
            "account",
            "success",
            "protocol",
            "tx_hash",
            "error",
        ]
