"""Order lifecycle: deposit account issue, begin, batch loop, terminal status."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

import structlog
from web3 import Web3

from src.config.settings import Settings
from src.connectors.custody import KeyCustody
from src.errors import (
    InsufficientFunds,
    InvalidInput,
    OrderNotPending,
    OrderNotRunning,
    PersistenceFailure,
)
from src.models import (
    BatchResult,
    BeginResult,
    Order,
    OrderStatus,
    OrderStatusReport,
    StopReason,
    WalletBatch,
    utc_now,
)
from src.monitoring.logging import order_context
from src.storage.order_store import OrderStore
from src.utils.lease import OrderLease, OrderLeases
from src.utils.units import format_ether, to_wei

if TYPE_CHECKING:
    from src.monitoring.metrics import Metrics


class BalanceReader(Protocol):
    async def get_balance(self, address: str) -> int: ...

    async def send_value(self, sender: str, to: str, amount_wei: int, label: str = ...) -> str: ...


class LiquidityChecker(Protocol):
    async def has_liquidity(self, asset: str) -> bool: ...


class BatchRunner(Protocol):
    async def run_batch(self, order: Order, batch_number: int) -> BatchResult: ...


def plan_batches(remaining_wei: int, bump_wei: int, batch_size: int) -> tuple[int, int]:
    """Return (total_bumps, total_batches) for a fee-adjusted balance."""
    if bump_wei <= 0 or batch_size <= 0:
        raise ValueError("bump amount and batch size must be positive")
    if remaining_wei <= 0:
        return 0, 0
    total_bumps = remaining_wei // bump_wei
    total_batches = -(-total_bumps // batch_size)
    return total_bumps, total_batches


@dataclass
class _RunningOrder:
    lease: OrderLease
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None


class OrderManager:
    """Own order state and drive each processing order's batch loop."""

    def __init__(
        self,
        settings: Settings,
        store: OrderStore,
        chain: BalanceReader,
        custody: KeyCustody,
        executor: BatchRunner,
        leases: OrderLeases,
        liquidity: LiquidityChecker | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.chain = chain
        self.custody = custody
        self.executor = executor
        self.leases = leases
        self.liquidity = liquidity
        self.treasury_address = settings.treasury_address
        self.fee_wei = to_wei(settings.bump.treasury_fee_eth)
        self.min_start_wei = to_wei(settings.bump.min_start_eth)
        self.bump_wei = to_wei(settings.bump.bump_amount_eth)
        self.batch_size = settings.bump.batch_size
        self.required_per_batch_wei = to_wei(settings.required_per_batch_eth)
        self.inter_batch_delay_sec = settings.bump.inter_batch_delay_sec
        self.order_timeout_sec = settings.bump.order_timeout_sec
        self._metrics = metrics
        self._running: dict[str, _RunningOrder] = {}
        self.log = structlog.get_logger(__name__)

    async def create_order(self, token_address: str) -> Order:
        """Issue a deposit account for a tradeable asset and persist a pending order."""
        if not token_address or not Web3.is_address(token_address):
            raise InvalidInput("Valid token address is required")
        token_address = Web3.to_checksum_address(token_address)
        if self.liquidity is not None:
            try:
                tradeable = await self.liquidity.has_liquidity(token_address)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.log.warning("liquidity_check_failed", token=token_address, error=str(exc))
                tradeable = False
            if not tradeable:
                raise InvalidInput("Token not found or not tradeable")

        deposit_address = self.custody.generate()
        order = self.store.create_order(
            Order(
                order_id=str(uuid4()),
                deposit_address=deposit_address,
                token_address=token_address,
            )
        )
        if self._metrics:
            self._metrics.orders_created_total.inc()
        self.log.info(
            "order_created",
            order_id=order.order_id,
            deposit_address=deposit_address,
            token=token_address,
        )
        return order

    async def begin(self, order_id: str) -> BeginResult:
        """Validate the deposit, pay the fee, plan batches and start the loop in the background."""
        order = self.store.get_order(order_id)
        if order.status != OrderStatus.PENDING:
            raise OrderNotPending(order_id, order.status.value)
        lease = self.leases.acquire(order_id)
        try:
            order, total_bumps = await self._start_processing(order)
        except BaseException as exc:
            lease.release()
            if self._metrics:
                self._metrics.begin_rejected_total.labels(error=type(exc).__name__).inc()
            raise

        running = _RunningOrder(lease=lease)
        self._running[order_id] = running
        running.task = asyncio.create_task(self._run_order(order_id, running))
        return BeginResult(
            order_id=order_id,
            total_batches=order.total_batches,
            estimated_bumps=total_bumps,
        )

    async def _start_processing(self, order: Order) -> tuple[Order, int]:
        balance = await self.chain.get_balance(order.deposit_address)
        if balance < self.min_start_wei:
            raise InsufficientFunds(
                f"Insufficient balance. Minimum {format_ether(self.min_start_wei)} ETH required",
                balance_eth=format_ether(balance),
            )
        remaining = balance - self.fee_wei
        if remaining <= 0:
            raise InsufficientFunds(
                "Insufficient balance after treasury fee",
                balance_eth=format_ether(balance),
            )
        total_bumps, total_batches = plan_batches(remaining, self.bump_wei, self.batch_size)

        # Not retried: a failed fee transfer leaves the order pending.
        fee_tx = await self.chain.send_value(
            order.deposit_address,
            self.treasury_address,
            self.fee_wei,
            label="treasury_fee",
        )

        order = self.store.update_order(
            order.order_id,
            total_amount=format_ether(balance),
            remaining_amount=format_ether(remaining),
            fee_amount=format_ether(self.fee_wei),
            fee_tx_hash=fee_tx,
            status=OrderStatus.PROCESSING,
            total_batches=total_batches,
            estimated_bumps=total_bumps,
            started_at=utc_now(),
        )
        if self._metrics:
            self._metrics.orders_started_total.inc()
        self.log.info(
            "order_processing_started",
            order_id=order.order_id,
            balance=order.total_amount,
            remaining=order.remaining_amount,
            total_batches=total_batches,
            estimated_bumps=total_bumps,
            fee_tx_hash=fee_tx,
        )
        return order, total_bumps

    async def _run_order(self, order_id: str, running: _RunningOrder) -> None:
        if self._metrics:
            self._metrics.active_orders.inc()
        try:
            try:
                with order_context(order_id):
                    reason = await self._process_batches(order_id, running.cancel)
            except asyncio.CancelledError:
                self._finish(order_id, StopReason.CANCELLED)
                raise
            except Exception:
                self.log.exception("order_loop_failed", order_id=order_id)
                self._finish(order_id, StopReason.ERROR)
            else:
                self._finish(order_id, reason)
        finally:
            running.lease.release()
            self._running.pop(order_id, None)
            if self._metrics:
                self._metrics.active_orders.dec()

    async def _process_batches(self, order_id: str, cancel: asyncio.Event) -> StopReason:
        order = self.store.get_order(order_id)
        deadline = (
            time.monotonic() + self.order_timeout_sec if self.order_timeout_sec else None
        )
        current = order.current_batch
        while current < order.total_batches:
            if cancel.is_set():
                return StopReason.CANCELLED
            if deadline is not None and time.monotonic() >= deadline:
                return StopReason.TIMEOUT

            try:
                balance = await self.chain.get_balance(order.deposit_address)
                if balance < self.required_per_batch_wei:
                    self.log.info(
                        "batch_skipped_insufficient_balance",
                        order_id=order_id,
                        batch_number=current + 1,
                        balance=format_ether(balance),
                        required=format_ether(self.required_per_batch_wei),
                    )
                    return StopReason.INSUFFICIENT_BALANCE
                await self.executor.run_batch(order, current + 1)
            except PersistenceFailure:
                raise
            except Exception as exc:
                self.log.error(
                    "batch_processing_failed",
                    order_id=order_id,
                    batch_number=current + 1,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return StopReason.BATCH_ERROR

            current += 1
            order = self.store.update_order(order_id, current_batch=current)
            self.log.info(
                "order_batch_completed",
                order_id=order_id,
                current_batch=current,
                total_batches=order.total_batches,
            )
            if current < order.total_batches and await self._wait_or_cancel(cancel):
                return StopReason.CANCELLED
        return StopReason.PLAN_FINISHED

    async def _wait_or_cancel(self, cancel: asyncio.Event) -> bool:
        """Sleep the inter-batch delay; return True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.inter_batch_delay_sec)
        except asyncio.TimeoutError:
            return False
        return True

    def _finish(self, order_id: str, reason: StopReason) -> None:
        status = reason.terminal_status
        try:
            self.store.update_order(
                order_id,
                status=status,
                stop_reason=reason,
                completed_at=utc_now(),
            )
        except Exception:
            self.log.exception(
                "order_finalize_failed",
                order_id=order_id,
                status=status.value,
                reason=reason.value,
            )
            return
        if self._metrics:
            self._metrics.orders_finished_total.labels(
                status=status.value, reason=reason.value
            ).inc()
        self.log.info("order_finished", order_id=order_id, status=status.value, reason=reason.value)

    async def status(self, order_id: str) -> OrderStatusReport:
        """Persisted order fields plus the live deposit balance; never writes."""
        order = self.store.get_order(order_id)
        balance = await self.chain.get_balance(order.deposit_address)
        return OrderStatusReport(order=order, current_balance=format_ether(balance))

    def list_orders(self, limit: int | None = None) -> list[Order]:
        return self.store.list_orders(limit or self.settings.api.list_limit)

    def list_batches(self, order_id: str) -> list[WalletBatch]:
        self.store.get_order(order_id)
        return self.store.list_batches(order_id)

    def is_running(self, order_id: str) -> bool:
        return order_id in self._running

    def cancel(self, order_id: str) -> None:
        """Ask a running loop to stop after its current batch; the order ends failed."""
        running = self._running.get(order_id)
        if running is None:
            self.store.get_order(order_id)
            raise OrderNotRunning(order_id)
        running.cancel.set()
        self.log.info("order_cancel_requested", order_id=order_id)

    async def join(self, order_id: str) -> None:
        running = self._running.get(order_id)
        if running is None or running.task is None:
            return
        await asyncio.shield(running.task)

    async def shutdown(self, timeout: float | None = None) -> None:
        """Signal every loop to stop after its batch and wait for them."""
        tasks = []
        for running in list(self._running.values()):
            running.cancel.set()
            if running.task is not None:
                tasks.append(running.task)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

