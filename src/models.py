"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.FAILED)


class BatchStatus(str, Enum):
    CREATED = "created"
    FUNDED = "funded"
    COMPLETED = "completed"


class StopReason(str, Enum):
    """Why a batch loop stopped."""

    PLAN_FINISHED = "plan_finished"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BATCH_ERROR = "batch_error"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    ERROR = "error"

    @property
    def terminal_status(self) -> OrderStatus:
        # Early stops keep the historical "completed" status; stop_reason tells them apart.
        if self in (StopReason.CANCELLED, StopReason.TIMEOUT, StopReason.ERROR):
            return OrderStatus.FAILED
        return OrderStatus.COMPLETED


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime | None) -> str | None:
    """Format timestamp as ISO-8601 with Z suffix."""
    if ts is None:
        return None
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class Order:
    order_id: str
    deposit_address: str
    token_address: str
    status: OrderStatus = OrderStatus.PENDING
    total_amount: str = "0"
    remaining_amount: str = "0"
    fee_amount: str = "0"
    fee_tx_hash: str | None = None
    current_batch: int = 0
    total_batches: int = 0
    estimated_bumps: int = 0
    stop_reason: StopReason | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "deposit_address": self.deposit_address,
            "token_address": self.token_address,
            "status": self.status.value,
            "total_amount": self.total_amount,
            "remaining_amount": self.remaining_amount,
            "fee_amount": self.fee_amount,
            "fee_tx_hash": self.fee_tx_hash,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "estimated_bumps": self.estimated_bumps,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "created_at": format_timestamp(self.created_at),
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        stop_reason = data.get("stop_reason")
        return cls(
            order_id=data["order_id"],
            deposit_address=data["deposit_address"],
            token_address=data["token_address"],
            status=OrderStatus(data.get("status", OrderStatus.PENDING.value)),
            total_amount=str(data.get("total_amount", "0")),
            remaining_amount=str(data.get("remaining_amount", "0")),
            fee_amount=str(data.get("fee_amount", "0")),
            fee_tx_hash=data.get("fee_tx_hash"),
            current_batch=int(data.get("current_batch", 0)),
            total_batches=int(data.get("total_batches", 0)),
            estimated_bumps=int(data.get("estimated_bumps", 0)),
            stop_reason=StopReason(stop_reason) if stop_reason else None,
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
        )


@dataclass
class EphemeralAccount:
    """Disposable account; its signing key lives in key custody, not here."""

    address: str
    used: bool = False


@dataclass(frozen=True)
class SwapResult:
    address: str
    success: bool
    tx_hash: str | None = None
    protocol: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "success": self.success,
            "tx_hash": self.tx_hash,
            "protocol": self.protocol,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SwapResult":
        return cls(
            address=data["address"],
            success=bool(data["success"]),
            tx_hash=data.get("tx_hash"),
            protocol=data.get("protocol"),
            error=data.get("error"),
        )


@dataclass
class WalletBatch:
    order_id: str
    batch_number: int
    accounts: list[EphemeralAccount]
    status: BatchStatus = BatchStatus.CREATED
    funding_tx_hash: str | None = None
    results: list[SwapResult] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.order_id}:{self.batch_number}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "batch_number": self.batch_number,
            "accounts": [{"address": a.address, "used": a.used} for a in self.accounts],
            "status": self.status.value,
            "funding_tx_hash": self.funding_tx_hash,
            "results": [r.to_dict() for r in self.results],
            "created_at": format_timestamp(self.created_at),
            "completed_at": format_timestamp(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WalletBatch":
        return cls(
            order_id=data["order_id"],
            batch_number=int(data["batch_number"]),
            accounts=[
                EphemeralAccount(address=a["address"], used=bool(a.get("used", False)))
                for a in data.get("accounts", [])
            ],
            status=BatchStatus(data.get("status", BatchStatus.CREATED.value)),
            funding_tx_hash=data.get("funding_tx_hash"),
            results=[SwapResult.from_dict(r) for r in data.get("results", [])],
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            completed_at=parse_timestamp(data.get("completed_at")),
        )


@dataclass(frozen=True)
class BatchResult:
    batch_number: int
    funding_tx_hash: str
    results: list[SwapResult]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


@dataclass(frozen=True)
class BeginResult:
    order_id: str
    total_batches: int
    estimated_bumps: int


@dataclass(frozen=True)
class OrderStatusReport:
    """Persisted order fields plus the live deposit balance."""

    order: Order
    current_balance: str

    def to_dict(self) -> dict[str, Any]:
        order = self.order
        return {
            "orderId": order.order_id,
            "status": order.status.value,
            "tokenAddress": order.token_address,
            "depositWallet": order.deposit_address,
            "currentBalance": self.current_balance,
            "totalAmount": order.total_amount,
            "remainingAmount": order.remaining_amount,
            "currentBatch": order.current_batch,
            "totalBatches": order.total_batches,
            "stopReason": order.stop_reason.value if order.stop_reason else None,
            "createdAt": format_timestamp(order.created_at),
            "completedAt": format_timestamp(order.completed_at),
        }
