"""Error taxonomy shared by the order lifecycle, adapters and API layer."""

from __future__ import annotations


class BumperError(Exception):
    """Base class for expected, domain-level failures."""


class InvalidInput(BumperError):
    """Bad address, or an asset that cannot be traded."""


class InsufficientFunds(BumperError):
    def __init__(self, message: str, balance_eth: str | None = None) -> None:
        self.balance_eth = balance_eth
        super().__init__(message)


class OrderNotFound(BumperError):
    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderNotPending(BumperError):
    def __init__(self, order_id: str, status: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is not in pending status (status={status})")


class OrderAlreadyRunning(BumperError):
    def __init__(self, order_id: str, holder: str | None = None) -> None:
        self.order_id = order_id
        self.holder = holder
        holder_hint = f" (held by {holder})" if holder else ""
        super().__init__(f"Order {order_id} is already being processed{holder_hint}")


class OrderNotRunning(BumperError):
    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order {order_id} has no active batch loop")


class TransactionReverted(BumperError):
    def __init__(self, tx_hash: str, label: str) -> None:
        self.tx_hash = tx_hash
        self.label = label
        super().__init__(f"{label} transaction reverted: {tx_hash}")


class FundingFailure(BumperError):
    """Bulk funding of a batch failed; fatal to the order loop."""


class SwapFailure(BumperError):
    """Both exchange protocols failed for one account; contained by the batch."""


class PersistenceFailure(BumperError):
    """The order or batch store could not be read or written."""
