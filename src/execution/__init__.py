"""Order lifecycle and batch execution."""

from src.execution.accounts import AccountGenerator
from src.execution.batch import BatchExecutor
from src.execution.lifecycle import OrderManager, plan_batches

__all__ = ["AccountGenerator", "BatchExecutor", "OrderManager", "plan_batches"]
