from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from src.config.settings import Settings
from src.connectors.abis import ZERO_ADDRESS
from src.connectors.disperse import BulkFunder
from src.connectors.exchange import ExchangeAdapter
from src.errors import SwapFailure, TransactionReverted

ASSET = "0x" + "22" * 20
SENDER = "0x" + "33" * 20
PAIR = "0x" + "44" * 20


@dataclass
class FakeCall:
    address: str
    name: str
    args: tuple[Any, ...]


class FakeFunctions:
    def __init__(self, address: str) -> None:
        self._address = address

    def __getattr__(self, name: str) -> Any:
        def build(*args: Any) -> FakeCall:
            return FakeCall(self._address, name, args)

        return build


class FakeContract:
    def __init__(self, address: str) -> None:
        self.address = address
        self.functions = FakeFunctions(address)


@dataclass
class FakeChain:
    failing_labels: set[str] = field(default_factory=set)
    call_results: dict[str, Any] = field(default_factory=dict)
    sent: list[dict[str, Any]] = field(default_factory=list)

    def contract(self, address: str, abi: list[dict[str, Any]]) -> FakeContract:
        return FakeContract(address)

    async def call(self, contract_call: FakeCall) -> Any:
        return self.call_results[contract_call.name]

    async def transact(
        self,
        sender: str,
        contract_call: FakeCall,
        value: int = 0,
        gas: int | None = None,
        label: str = "contract_call",
    ) -> str:
        self.sent.append(
            {"sender": sender, "call": contract_call, "value": value, "gas": gas, "label": label}
        )
        if label in self.failing_labels:
            raise TransactionReverted(f"0x{label}", label)
        return f"0x{label}"


def _settings() -> Settings:
    return Settings(_env_file=None)


@pytest.mark.asyncio
async def test_swap_uses_primary_protocol_when_it_succeeds() -> None:
    chain = FakeChain()
    exchange = ExchangeAdapter(_settings(), chain)  # type: ignore[arg-type]

    execution = await exchange.swap(SENDER, ASSET, 2_000_000_000_000_000, SENDER)

    assert execution.protocol == "v3"
    assert execution.tx_hash == "0xswap_v3"
    assert len(chain.sent) == 1
    sent = chain.sent[0]
    assert sent["value"] == 2_000_000_000_000_000
    assert sent["gas"] == 300000
    params = sent["call"].args[0]
    assert params[2] == 3000
    assert params[5] == 2_000_000_000_000_000
    # Zero minimum output and no price limit.
    assert params[6] == 0 and params[7] == 0


@pytest.mark.asyncio
async def test_swap_falls_back_to_v2_on_primary_failure() -> None:
    chain = FakeChain(failing_labels={"swap_v3"})
    exchange = ExchangeAdapter(_settings(), chain)  # type: ignore[arg-type]

    execution = await exchange.swap(SENDER, ASSET, 1000, SENDER)

    assert execution.protocol == "v2"
    assert [s["label"] for s in chain.sent] == ["swap_v3", "swap_v2"]
    amount_out_min, path, recipient, deadline = chain.sent[1]["call"].args
    assert amount_out_min == 0
    assert path[0] == exchange.weth
    assert path[1].lower() == ASSET
    assert deadline > 0


@pytest.mark.asyncio
async def test_swap_raises_when_both_protocols_fail() -> None:
    chain = FakeChain(failing_labels={"swap_v3", "swap_v2"})
    exchange = ExchangeAdapter(_settings(), chain)  # type: ignore[arg-type]

    with pytest.raises(SwapFailure):
        await exchange.swap(SENDER, ASSET, 1000, SENDER)


@pytest.mark.asyncio
async def test_has_liquidity_requires_pair_and_reserves() -> None:
    chain = FakeChain(call_results={"getPair": ZERO_ADDRESS})
    exchange = ExchangeAdapter(_settings(), chain)  # type: ignore[arg-type]
    assert await exchange.has_liquidity(ASSET) is False

    chain.call_results = {"getPair": PAIR, "getReserves": (0, 5, 0), "token0": ASSET}
    assert await exchange.has_liquidity(ASSET) is False

    chain.call_results = {"getPair": PAIR, "getReserves": (10, 5, 0), "token0": ASSET}
    assert await exchange.has_liquidity(ASSET) is True


@pytest.mark.asyncio
async def test_disperse_sends_one_call_with_total_value() -> None:
    chain = FakeChain()
    funder = BulkFunder(chain, "0x" + "55" * 20)  # type: ignore[arg-type]
    recipients = ["0x" + f"{i:02x}" * 20 for i in range(1, 4)]

    tx_hash = await funder.disperse(SENDER, recipients, 100)

    assert tx_hash == "0xdisperse"
    sent = chain.sent[0]
    assert sent["call"].name == "disperseEth"
    payees, values = sent["call"].args
    assert len(payees) == 3
    assert values == [100, 100, 100]
    assert sent["value"] == 300

    with pytest.raises(ValueError):
        await funder.disperse(SENDER, [], 100)
