"""HTTP API for creating, starting and inspecting orders."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.errors import (
    BumperError,
    InsufficientFunds,
    InvalidInput,
    OrderAlreadyRunning,
    OrderNotFound,
    OrderNotPending,
    OrderNotRunning,
)
from src.execution.lifecycle import OrderManager
from src.models import Order, WalletBatch, format_timestamp

log = structlog.get_logger(__name__)

_STATUS_BY_ERROR: dict[type[BumperError], int] = {
    InvalidInput: 400,
    InsufficientFunds: 400,
    OrderNotPending: 400,
    OrderNotFound: 404,
    OrderAlreadyRunning: 409,
    OrderNotRunning: 409,
}


class CreateOrderRequest(BaseModel):
    token_address: str = Field(default="", alias="tokenAddress")


def _serialize_order(order: Order) -> dict[str, Any]:
    """Order summary for listings; the deposit key never leaves custody."""
    return {
        "orderId": order.order_id,
        "status": order.status.value,
        "tokenAddress": order.token_address,
        "depositWallet": order.deposit_address,
        "totalAmount": order.total_amount,
        "remainingAmount": order.remaining_amount,
        "currentBatch": order.current_batch,
        "totalBatches": order.total_batches,
        "stopReason": order.stop_reason.value if order.stop_reason else None,
        "createdAt": format_timestamp(order.created_at),
        "completedAt": format_timestamp(order.completed_at),
    }


def _serialize_batch(batch: WalletBatch) -> dict[str, Any]:
    return {
        "batchNumber": batch.batch_number,
        "status": batch.status.value,
        "fundingTxHash": batch.funding_tx_hash,
        "wallets": [{"address": a.address, "used": a.used} for a in batch.accounts],
        "results": [
            {
                "address": r.address,
                "success": r.success,
                "txHash": r.tx_hash,
                "protocol": r.protocol,
                "error": r.error,
            }
            for r in batch.results
        ],
        "createdAt": format_timestamp(batch.created_at),
        "completedAt": format_timestamp(batch.completed_at),
    }


def create_app(manager: OrderManager) -> FastAPI:
    """Create and configure the FastAPI application around an order manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        yield
        await manager.shutdown(timeout=30.0)

    app = FastAPI(
        title="ETH Bumper API",
        description="Create bump orders, start processing and poll their status",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.manager = manager

    @app.exception_handler(BumperError)
    async def handle_domain_error(request: Request, exc: BumperError) -> JSONResponse:
        status_code = 500
        for error_type, code in _STATUS_BY_ERROR.items():
            if isinstance(exc, error_type):
                status_code = code
                break
        if status_code == 500:
            log.error("request_failed", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.error("request_crashed", path=request.url.path, error=str(exc), exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.post("/api/bump/create")
    async def create_order(body: CreateOrderRequest) -> dict[str, Any]:
        """Create a new bump order with a fresh deposit wallet."""
        order = await manager.create_order(body.token_address)
        return {
            "orderId": order.order_id,
            "depositWallet": order.deposit_address,
            "message": "Deposit ETH to this wallet to start bumping",
        }

    @app.get("/api/bump/status/{order_id}")
    async def get_status(order_id: str) -> dict[str, Any]:
        """Persisted order state plus the live deposit balance."""
        report = await manager.status(order_id)
        return report.to_dict()

    @app.post("/api/bump/process/{order_id}")
    async def process_order(order_id: str) -> dict[str, Any]:
        """Validate the deposit and start batch processing in the background."""
        result = await manager.begin(order_id)
        return {
            "message": "Bump order processing started",
            "orderId": result.order_id,
            "totalBatches": result.total_batches,
            "estimatedBumps": result.estimated_bumps,
        }

    @app.post("/api/bump/cancel/{order_id}")
    async def cancel_order(order_id: str) -> dict[str, Any]:
        """Stop a running order after its current batch."""
        manager.cancel(order_id)
        return {
            "message": "Cancellation requested; the current batch will finish first",
            "orderId": order_id,
        }

    @app.get("/api/bump/orders")
    async def list_orders(
        limit: int = Query(default=50, ge=1, le=500, description="Number of recent orders"),
    ) -> list[dict[str, Any]]:
        return [_serialize_order(order) for order in manager.list_orders(limit)]

    @app.get("/api/bump/orders/{order_id}/batches")
    async def list_batches(order_id: str) -> dict[str, Any]:
        batches = manager.list_batches(order_id)
        return {
            "orderId": order_id,
            "count": len(batches),
            "batches": [_serialize_batch(batch) for batch in batches],
        }

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "timestamp": format_timestamp(datetime.now(timezone.utc))}

    return app
