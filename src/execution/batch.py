"""Per-batch execution: generate, fund, swap concurrently, record."""

from __future__ import annotations

import asyncio
import random
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from src.config.settings import Settings
from src.connectors.disperse import BulkFunder
from src.connectors.exchange import ExchangeAdapter
from src.errors import FundingFailure
from src.execution.accounts import AccountGenerator
from src.models import (
    BatchResult,
    BatchStatus,
    EphemeralAccount,
    Order,
    SwapResult,
    WalletBatch,
    utc_now,
)
from src.storage.order_store import OrderStore
from src.utils.units import to_wei

if TYPE_CHECKING:
    from src.monitoring.metrics import Metrics
    from src.monitoring.swap_log import SwapLogger

Sleep = Callable[[float], Awaitable[Any]]


class BatchExecutor:
    """Run one batch of ephemeral-account swaps for an order."""

    def __init__(
        self,
        settings: Settings,
        store: OrderStore,
        generator: AccountGenerator,
        funder: BulkFunder,
        exchange: ExchangeAdapter,
        metrics: Metrics | None = None,
        swap_log: SwapLogger | None = None,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.generator = generator
        self.funder = funder
        self.exchange = exchange
        self.batch_size = settings.bump.batch_size
        self.bump_wei = to_wei(settings.bump.bump_amount_eth)
        self.gas_buffer_wei = to_wei(settings.bump.gas_buffer_eth)
        self.jitter_max_sec = settings.bump.jitter_max_sec
        self._metrics = metrics
        self._swap_log = swap_log
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.log = structlog.get_logger(__name__)

    async def run_batch(self, order: Order, batch_number: int) -> BatchResult:
        started = time.monotonic()
        accounts = self.generator.generate(self.batch_size)
        batch = self.store.save_batch(
            WalletBatch(order_id=order.order_id, batch_number=batch_number, accounts=accounts)
        )
        self.log.info(
            "batch_created",
            order_id=order.order_id,
            batch_number=batch_number,
            accounts=[a.address for a in accounts],
        )

        try:
            funding_tx = await self.funder.disperse(
                order.deposit_address,
                [a.address for a in accounts],
                self.bump_wei + self.gas_buffer_wei,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._metrics:
                self._metrics.batch_funding_failures_total.inc()
            self.log.error(
                "batch_funding_failed",
                order_id=order.order_id,
                batch_number=batch_number,
                error=str(exc),
            )
            raise FundingFailure(
                f"Funding batch {batch_number} of order {order.order_id} failed: {exc}"
            ) from exc

        batch.status = BatchStatus.FUNDED
        batch.funding_tx_hash = funding_tx
        self.store.save_batch(batch)
        self.log.info(
            "batch_funded",
            order_id=order.order_id,
            batch_number=batch_number,
            tx_hash=funding_tx,
        )

        # Every account is attempted exactly once; the gather is the barrier before completion.
        results = await asyncio.gather(
            *(
                self._attempt_swap(order, batch_number, index, account)
                for index, account in enumerate(accounts)
            )
        )

        for account in accounts:
            account.used = True
        batch.results = list(results)
        batch.status = BatchStatus.COMPLETED
        batch.completed_at = utc_now()
        self.store.save_batch(batch)

        result = BatchResult(
            batch_number=batch_number,
            funding_tx_hash=funding_tx,
            results=list(results),
        )
        self._record_outcome(order, result, time.monotonic() - started)
        self.log.info(
            "batch_completed",
            order_id=order.order_id,
            batch_number=batch_number,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    def _record_outcome(self, order: Order, result: BatchResult, duration_sec: float) -> None:
        """Audit rows and metrics for a completed batch; failures here never fail the batch."""
        if self._swap_log:
            try:
                for swap in result.results:
                    self._swap_log.record(order.order_id, result.batch_number, swap)
            except Exception as exc:
                self.log.warning(
                    "swap_log_failed",
                    order_id=order.order_id,
                    batch_number=result.batch_number,
                    error=str(exc),
                )
        if self._metrics:
            try:
                for swap in result.results:
                    self._metrics.record_swap(swap)
                self._metrics.batches_completed_total.inc()
                self._metrics.batch_duration_sec.observe(duration_sec)
            except Exception as exc:
                self.log.warning(
                    "batch_metrics_failed",
                    order_id=order.order_id,
                    batch_number=result.batch_number,
                    error=str(exc),
                )

    async def _attempt_swap(
        self,
        order: Order,
        batch_number: int,
        index: int,
        account: EphemeralAccount,
    ) -> SwapResult:
        delay = self._rng.random() * self.jitter_max_sec
        await self._sleep(delay)
        try:
            execution = await self.exchange.swap(
                account.address,
                order.token_address,
                self.bump_wei,
                account.address,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.warning(
                "swap_failed",
                order_id=order.order_id,
                batch_number=batch_number,
                swap_index=index + 1,
                account=account.address,
                error=str(exc),
            )
            return SwapResult(address=account.address, success=False, error=str(exc))

        self.log.info(
            "swap_completed",
            order_id=order.order_id,
            batch_number=batch_number,
            swap_index=index + 1,
            account=account.address,
            protocol=execution.protocol,
            tx_hash=execution.tx_hash,
        )
        return SwapResult(
            address=account.address,
            success=True,
            tx_hash=execution.tx_hash,
            protocol=execution.protocol,
        )
