"""Bulk funding of many recipients through one disperser contract call."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from web3 import Web3

from src.connectors.abis import DISPERSER_ABI

if TYPE_CHECKING:
    from src.connectors.chain import ChainClient


class BulkFunder:
    """Fund every recipient in one call; the contract reverts all transfers or none."""

    def __init__(self, chain: ChainClient, disperser_address: str) -> None:
        self.chain = chain
        self._contract = chain.contract(disperser_address, DISPERSER_ABI)
        self.log = structlog.get_logger(__name__)

    async def disperse(self, sender: str, recipients: list[str], amount_wei: int) -> str:
        if not recipients:
            raise ValueError("disperse requires at least one recipient")
        payees = [Web3.to_checksum_address(r) for r in recipients]
        values = [amount_wei] * len(payees)
        total = sum(values)
        self.log.info(
            "disperse_submitting",
            sender=sender,
            recipients=len(payees),
            per_recipient_wei=amount_wei,
            total_wei=total,
        )
        return await self.chain.transact(
            sender,
            self._contract.functions.disperseEth(payees, values),
            value=total,
            label="disperse",
        )
