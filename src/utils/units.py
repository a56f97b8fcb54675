"""ETH/wei conversion helpers."""

from __future__ import annotations

from decimal import Decimal

from web3 import Web3


def to_wei(amount_eth: Decimal | str | float) -> int:
    # str() first so floats from YAML don't drag binary noise into wei amounts.
    return int(Web3.to_wei(Decimal(str(amount_eth)), "ether"))


def format_ether(amount_wei: int) -> str:
    value = Web3.from_wei(amount_wei, "ether")
    return format(Decimal(value).normalize(), "f")
