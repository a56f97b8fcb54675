"""Async Ethereum JSON-RPC client with per-sender submission ordering."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from web3 import AsyncWeb3, Web3

from src.config.settings import Settings
from src.connectors.custody import KeyCustody
from src.errors import TransactionReverted

TxBuilder = Callable[[int, int], Awaitable[dict[str, Any]]]


class ChainClient:
    """Balance reads, value transfers and contract calls signed through key custody."""

    def __init__(
        self,
        settings: Settings,
        custody: KeyCustody,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self.settings = settings
        self.custody = custody
        self.chain_id = settings.chain.chain_id
        self.w3 = w3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                settings.rpc_url,
                request_kwargs={"timeout": settings.chain.request_timeout_sec},
            )
        )
        # One submitter per sending address keeps nonces gap-free; entries live only while in use.
        self._send_locks: dict[str, asyncio.Lock] = {}
        self._send_lock_users: dict[str, int] = {}
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def get_balance(self, address: str) -> int:
        return int(await self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    async def call(self, contract_call: Any) -> Any:
        """Run a read-only contract call."""
        return await contract_call.call()

    async def send_value(
        self,
        sender: str,
        to: str,
        amount_wei: int,
        label: str = "transfer",
    ) -> str:
        """Send native currency from a custodied account and wait for the receipt."""

        async def build(nonce: int, gas_price: int) -> dict[str, Any]:
            return {
                "to": Web3.to_checksum_address(to),
                "value": amount_wei,
                "gas": self.settings.chain.transfer_gas_limit,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self.chain_id,
            }

        return await self._submit(sender, build, label)

    async def transact(
        self,
        sender: str,
        contract_call: Any,
        value: int = 0,
        gas: int | None = None,
        label: str = "contract_call",
    ) -> str:
        """Sign and submit a state-changing contract call, then wait for the receipt.

        When ``gas`` is omitted the node estimates it while the transaction is built.
        """

        async def build(nonce: int, gas_price: int) -> dict[str, Any]:
            params: dict[str, Any] = {
                "from": sender,
                "value": value,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self.chain_id,
            }
            if gas is not None:
                params["gas"] = gas
            return await contract_call.build_transaction(params)

        return await self._submit(sender, build, label)

    async def _submit(self, sender: str, build: TxBuilder, label: str) -> str:
        lock = self._acquire_sender_lock(sender)
        try:
            async with lock:
                nonce = await self.w3.eth.get_transaction_count(sender, "pending")
                gas_price = await self.w3.eth.gas_price
                tx = await build(nonce, gas_price)
                raw = self.custody.sign_transaction(sender, tx)
                tx_hash = await self.w3.eth.send_raw_transaction(raw)
        finally:
            self._release_sender_lock(sender)
        hex_hash = Web3.to_hex(tx_hash)
        self.log.info("tx_submitted", label=label, sender=sender, tx_hash=hex_hash, nonce=nonce)

        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.settings.chain.receipt_timeout_sec
        )
        if receipt["status"] != 1:
            self.log.warning("tx_reverted", label=label, sender=sender, tx_hash=hex_hash)
            raise TransactionReverted(hex_hash, label)
        self.log.info(
            "tx_confirmed",
            label=label,
            tx_hash=hex_hash,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        return hex_hash

    def _acquire_sender_lock(self, sender: str) -> asyncio.Lock:
        lock = self._send_locks.get(sender)
        if lock is None:
            lock = self._send_locks[sender] = asyncio.Lock()
        self._send_lock_users[sender] = self._send_lock_users.get(sender, 0) + 1
        return lock

    def _release_sender_lock(self, sender: str) -> None:
        # Ephemeral accounts send a handful of transactions; drop their lock once idle.
        users = self._send_lock_users[sender] - 1
        if users:
            self._send_lock_users[sender] = users
            return
        del self._send_lock_users[sender]
        del self._send_locks[sender]
