"""Ethereum connectors module."""

from src.connectors.chain import ChainClient
from src.connectors.custody import FileKeyCustody, KeyCustody
from src.connectors.disperse import BulkFunder
from src.connectors.exchange import ExchangeAdapter, SwapExecution

__all__ = [
    "ChainClient",
    "KeyCustody",
    "FileKeyCustody",
    "BulkFunder",
    "ExchangeAdapter",
    "SwapExecution",
]
