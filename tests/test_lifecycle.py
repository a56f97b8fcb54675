from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from src.config.settings import Settings
from src.errors import (
    FundingFailure,
    InsufficientFunds,
    InvalidInput,
    OrderAlreadyRunning,
    OrderNotFound,
    OrderNotPending,
    OrderNotRunning,
    PersistenceFailure,
    TransactionReverted,
)
from src.execution.lifecycle import OrderManager
from src.models import BatchResult, Order, OrderStatus, StopReason
from src.storage import OrderStore
from src.utils.lease import OrderLeases
from src.utils.units import to_wei

TOKEN = "0x" + "11" * 20
TREASURY = "0x" + "7e" * 20


class FakeCustody:
    def __init__(self) -> None:
        self.issued: list[str] = []

    def generate(self) -> str:
        address = "0x" + f"{len(self.issued) + 1:040x}"
        self.issued.append(address)
        return address

    def sign_transaction(self, address: str, tx: dict) -> bytes:
        return b""

    def has(self, address: str) -> bool:
        return address in self.issued


@dataclass
class FakeChain:
    balances: dict[str, int] = field(default_factory=dict)
    transfers: list[tuple[str, str, int, str]] = field(default_factory=list)
    fail_transfer: bool = False
    balance_gate: asyncio.Event | None = None
    balance_waiters: int = 0

    async def get_balance(self, address: str) -> int:
        if self.balance_gate is not None:
            self.balance_waiters += 1
            await self.balance_gate.wait()
        return self.balances.get(address, 0)

    async def send_value(self, sender: str, to: str, amount_wei: int, label: str = "transfer") -> str:
        if self.fail_transfer:
            raise TransactionReverted("0xfee", label)
        self.transfers.append((sender, to, amount_wei, label))
        return "0xfee"


@dataclass
class FakeLiquidity:
    tradeable: bool = True
    error: Exception | None = None

    async def has_liquidity(self, asset: str) -> bool:
        if self.error is not None:
            raise self.error
        return self.tradeable


@dataclass
class FakeExecutor:
    chain: FakeChain
    spend_wei: int = 0
    fail_at: int | None = None
    error: Exception | None = None
    gate: asyncio.Event | None = None
    started: asyncio.Event = field(default_factory=asyncio.Event)
    batches: list[int] = field(default_factory=list)

    async def run_batch(self, order: Order, batch_number: int) -> BatchResult:
        self.batches.append(batch_number)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if batch_number == self.fail_at and self.error is not None:
            raise self.error
        self.chain.balances[order.deposit_address] -= self.spend_wei
        return BatchResult(batch_number=batch_number, funding_tx_hash="0xfund", results=[])


def _settings(**bump: object) -> Settings:
    return Settings(
        treasury_address=TREASURY,
        disperser_address="0x" + "d1" * 20,
        bump={"inter_batch_delay_sec": 0, "jitter_max_sec": 0, **bump},
        _env_file=None,
    )


def _manager(
    workspace_tmp_path: Path,
    chain: FakeChain,
    executor: FakeExecutor | None = None,
    liquidity: FakeLiquidity | None = None,
    settings: Settings | None = None,
) -> OrderManager:
    return OrderManager(
        settings or _settings(),
        OrderStore(workspace_tmp_path / "state"),
        chain,
        FakeCustody(),
        executor or FakeExecutor(chain),
        OrderLeases(workspace_tmp_path / "leases"),
        liquidity=liquidity,
    )


@pytest.mark.asyncio
async def test_create_order_issues_deposit_account(workspace_tmp_path: Path) -> None:
    manager = _manager(workspace_tmp_path, FakeChain(), liquidity=FakeLiquidity())

    order = await manager.create_order(TOKEN)

    assert order.status == OrderStatus.PENDING
    assert order.deposit_address == "0x" + f"{1:040x}"
    assert order.token_address.lower() == TOKEN
    assert manager.store.get_order(order.order_id).status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_create_order_rejects_bad_or_untradeable_tokens(workspace_tmp_path: Path) -> None:
    manager = _manager(workspace_tmp_path, FakeChain(), liquidity=FakeLiquidity(tradeable=False))
    with pytest.raises(InvalidInput):
        await manager.create_order("not-an-address")
    with pytest.raises(InvalidInput):
        await manager.create_order("")
    with pytest.raises(InvalidInput):
        await manager.create_order(TOKEN)

    broken = _manager(
        workspace_tmp_path, FakeChain(), liquidity=FakeLiquidity(error=RuntimeError("rpc down"))
    )
    with pytest.raises(InvalidInput):
        await broken.create_order(TOKEN)
    assert broken.list_orders() == []


@pytest.mark.asyncio
async def test_begin_below_minimum_leaves_order_pending(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    manager = _manager(workspace_tmp_path, chain)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.0099")

    with pytest.raises(InsufficientFunds) as excinfo:
        await manager.begin(order.order_id)

    assert "0.01" in str(excinfo.value)
    assert chain.transfers == []
    assert manager.store.get_order(order.order_id).status == OrderStatus.PENDING
    assert not manager.leases.is_held(order.order_id)


@pytest.mark.asyncio
async def test_begin_failed_fee_transfer_leaves_order_pending(workspace_tmp_path: Path) -> None:
    chain = FakeChain(fail_transfer=True)
    manager = _manager(workspace_tmp_path, chain)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.02")

    with pytest.raises(TransactionReverted):
        await manager.begin(order.order_id)

    assert manager.store.get_order(order.order_id).status == OrderStatus.PENDING
    assert not manager.leases.is_held(order.order_id)


@pytest.mark.asyncio
async def test_begin_pays_fee_and_runs_plan(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    executor = FakeExecutor(chain)
    manager = _manager(workspace_tmp_path, chain, executor=executor)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.02")

    result = await manager.begin(order.order_id)

    assert result.total_batches == 1
    assert result.estimated_bumps == 5
    assert chain.transfers == [
        (order.deposit_address, TREASURY, to_wei("0.009"), "treasury_fee")
    ]
    started = manager.store.get_order(order.order_id)
    assert started.total_amount == "0.02"
    assert started.remaining_amount == "0.011"
    assert started.fee_tx_hash == "0xfee"

    await manager.join(order.order_id)

    finished = manager.store.get_order(order.order_id)
    assert finished.status == OrderStatus.COMPLETED
    assert finished.stop_reason == StopReason.PLAN_FINISHED
    assert finished.current_batch == 1
    assert finished.completed_at is not None
    assert executor.batches == [1]
    assert not manager.is_running(order.order_id)
    assert not manager.leases.is_held(order.order_id)

    with pytest.raises(OrderNotPending):
        await manager.begin(order.order_id)


@pytest.mark.asyncio
async def test_concurrent_begin_is_rejected(workspace_tmp_path: Path) -> None:
    chain = FakeChain(balance_gate=asyncio.Event())
    manager = _manager(workspace_tmp_path, chain)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.02")

    first = asyncio.create_task(manager.begin(order.order_id))
    while chain.balance_waiters == 0:
        await asyncio.sleep(0)

    with pytest.raises(OrderAlreadyRunning):
        await manager.begin(order.order_id)

    chain.balance_gate.set()
    await first
    await manager.join(order.order_id)
    assert len(chain.transfers) == 1


@pytest.mark.asyncio
async def test_funding_failure_stops_order_with_batch_error(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    executor = FakeExecutor(chain, fail_at=2, error=FundingFailure("disperse reverted"))
    manager = _manager(workspace_tmp_path, chain, executor=executor)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.41")

    result = await manager.begin(order.order_id)
    assert result.total_batches == 40
    await manager.join(order.order_id)

    finished = manager.store.get_order(order.order_id)
    assert finished.status == OrderStatus.COMPLETED
    assert finished.stop_reason == StopReason.BATCH_ERROR
    assert finished.current_batch == 1
    assert executor.batches == [1, 2]


@pytest.mark.asyncio
async def test_balance_exhaustion_stops_early(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    executor = FakeExecutor(chain, spend_wei=to_wei("0.02"))
    manager = _manager(workspace_tmp_path, chain, executor=executor)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.05")

    result = await manager.begin(order.order_id)
    assert result.total_batches == 4
    await manager.join(order.order_id)

    finished = manager.store.get_order(order.order_id)
    assert finished.status == OrderStatus.COMPLETED
    assert finished.stop_reason == StopReason.INSUFFICIENT_BALANCE
    assert finished.current_batch == 2
    assert finished.current_batch <= finished.total_batches


@pytest.mark.asyncio
async def test_persistence_failure_fails_order(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    executor = FakeExecutor(chain, fail_at=1, error=PersistenceFailure("disk full"))
    manager = _manager(workspace_tmp_path, chain, executor=executor)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.02")

    await manager.begin(order.order_id)
    await manager.join(order.order_id)

    finished = manager.store.get_order(order.order_id)
    assert finished.status == OrderStatus.FAILED
    assert finished.stop_reason == StopReason.ERROR
    assert not manager.leases.is_held(order.order_id)


@pytest.mark.asyncio
async def test_cancel_stops_after_current_batch(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    executor = FakeExecutor(chain, gate=asyncio.Event())
    manager = _manager(workspace_tmp_path, chain, executor=executor)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.41")

    await manager.begin(order.order_id)
    await executor.started.wait()
    manager.cancel(order.order_id)
    executor.gate.set()
    await manager.join(order.order_id)

    finished = manager.store.get_order(order.order_id)
    assert finished.status == OrderStatus.FAILED
    assert finished.stop_reason == StopReason.CANCELLED
    assert finished.current_batch == 1
    assert executor.batches == [1]

    with pytest.raises(OrderNotRunning):
        manager.cancel(order.order_id)
    with pytest.raises(OrderNotFound):
        manager.cancel("missing")


@pytest.mark.asyncio
async def test_status_reads_live_balance_without_writing(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    manager = _manager(workspace_tmp_path, chain)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.015")
    orders_file = workspace_tmp_path / "state" / "orders.json"
    before = orders_file.read_bytes()

    first = (await manager.status(order.order_id)).to_dict()
    second = (await manager.status(order.order_id)).to_dict()

    assert first == second
    assert first["currentBalance"] == "0.015"
    assert first["status"] == "pending"
    assert first["depositWallet"] == order.deposit_address
    assert orders_file.read_bytes() == before

    with pytest.raises(OrderNotFound):
        await manager.status("missing")


@pytest.mark.asyncio
async def test_shutdown_stops_running_loops(workspace_tmp_path: Path) -> None:
    chain = FakeChain()
    executor = FakeExecutor(chain, gate=asyncio.Event())
    manager = _manager(workspace_tmp_path, chain, executor=executor)
    order = await manager.create_order(TOKEN)
    chain.balances[order.deposit_address] = to_wei("0.41")

    await manager.begin(order.order_id)
    await executor.started.wait()
    executor.gate.set()
    await manager.shutdown(timeout=5)

    finished = manager.store.get_order(order.order_id)
    assert finished.status == OrderStatus.FAILED
    assert finished.stop_reason == StopReason.CANCELLED
    assert not manager.is_running(order.order_id)
