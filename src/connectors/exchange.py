"""Native-currency to token swaps: Uniswap V3 first, V2 as the fallback."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from web3 import Web3

from src.config.settings import Settings
from src.connectors.abis import (
    UNISWAP_V2_FACTORY_ABI,
    UNISWAP_V2_PAIR_ABI,
    UNISWAP_V2_ROUTER_ABI,
    UNISWAP_V3_ROUTER_ABI,
    ZERO_ADDRESS,
)
from src.errors import SwapFailure

if TYPE_CHECKING:
    from src.connectors.chain import ChainClient

PRIMARY_PROTOCOL = "v3"
FALLBACK_PROTOCOL = "v2"


@dataclass(frozen=True)
class SwapExecution:
    tx_hash: str
    protocol: str


class ExchangeAdapter:
    """Execute swaps with zero minimum output and a wall-clock deadline."""

    def __init__(self, settings: Settings, chain: ChainClient) -> None:
        self.settings = settings
        self.chain = chain
        self.weth = Web3.to_checksum_address(settings.chain.weth_address)
        self.fee_tier = settings.bump.v3_fee_tier
        self.deadline_sec = settings.bump.swap_deadline_sec
        self.gas_limit = settings.chain.swap_gas_limit
        self._v3_router = chain.contract(settings.chain.uniswap_v3_router, UNISWAP_V3_ROUTER_ABI)
        self._v2_router = chain.contract(settings.chain.uniswap_v2_router, UNISWAP_V2_ROUTER_ABI)
        self._v2_factory = chain.contract(settings.chain.uniswap_v2_factory, UNISWAP_V2_FACTORY_ABI)
        self.log = structlog.get_logger(__name__)

    async def swap(
        self,
        sender: str,
        asset: str,
        amount_in: int,
        recipient: str,
    ) -> SwapExecution:
        try:
            tx_hash = await self._swap_v3(sender, asset, amount_in, recipient)
            return SwapExecution(tx_hash=tx_hash, protocol=PRIMARY_PROTOCOL)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.warning(
                "swap_primary_failed",
                sender=sender,
                asset=asset,
                error=str(exc),
                fallback=FALLBACK_PROTOCOL,
            )

        try:
            tx_hash = await self._swap_v2(sender, asset, amount_in, recipient)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise SwapFailure(f"Swap failed on both protocols for {sender}: {exc}") from exc
        return SwapExecution(tx_hash=tx_hash, protocol=FALLBACK_PROTOCOL)

    async def has_liquidity(self, asset: str) -> bool:
        """Whether a V2 pair against WETH exists with non-zero reserves on both sides."""
        asset = Web3.to_checksum_address(asset)
        pair_address = await self.chain.call(self._v2_factory.functions.getPair(asset, self.weth))
        if not pair_address or pair_address == ZERO_ADDRESS:
            return False
        pair = self.chain.contract(pair_address, UNISWAP_V2_PAIR_ABI)
        reserve0, reserve1, _ = await self.chain.call(pair.functions.getReserves())
        token0 = await self.chain.call(pair.functions.token0())
        if str(token0).lower() == asset.lower():
            reserve_token, reserve_weth = reserve0, reserve1
        else:
            reserve_token, reserve_weth = reserve1, reserve0
        return reserve_token > 0 and reserve_weth > 0

    def _deadline(self) -> int:
        return int(time.time()) + self.deadline_sec

    async def _swap_v3(self, sender: str, asset: str, amount_in: int, recipient: str) -> str:
        params: tuple[Any, ...] = (
            self.weth,
            Web3.to_checksum_address(asset),
            self.fee_tier,
            Web3.to_checksum_address(recipient),
            self._deadline(),
            amount_in,
            0,  # amountOutMinimum
            0,  # sqrtPriceLimitX96
        )
        return await self.chain.transact(
            sender,
            self._v3_router.functions.exactInputSingle(params),
            value=amount_in,
            gas=self.gas_limit,
            label="swap_v3",
        )

    async def _swap_v2(self, sender: str, asset: str, amount_in: int, recipient: str) -> str:
        path = [self.weth, Web3.to_checksum_address(asset)]
        return await self.chain.transact(
            sender,
            self._v2_router.functions.swapExactETHForTokens(
                0,
                path,
                Web3.to_checksum_address(recipient),
                self._deadline(),
            ),
            value=amount_in,
            gas=self.gas_limit,
            label="swap_v2",
        )
