"""Async HTTP client for the bump order API."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import httpx
import structlog

TERMINAL_STATUSES = frozenset({"completed", "failed"})


class BumperClientError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class BumperClient:
    """Thin wrapper over the HTTP API; server error messages surface as BumperClientError."""

    def __init__(
        self,
        server_url: str = "http://localhost:3000/api",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.http = httpx.AsyncClient(
            base_url=server_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "BumperClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def create_order(self, token_address: str) -> dict[str, Any]:
        return await self._request("POST", "/bump/create", json={"tokenAddress": token_address})

    async def get_status(self, order_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/bump/status/{order_id}")

    async def start_order(self, order_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/bump/process/{order_id}")

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/bump/cancel/{order_id}")

    async def list_orders(self, limit: int = 50) -> list[dict[str, Any]]:
        return await self._request("GET", "/bump/orders", params={"limit": limit})

    async def list_batches(self, order_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/bump/orders/{order_id}/batches")

    async def check_health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def monitor(
        self,
        order_id: str,
        interval: float = 5.0,
    ) -> AsyncIterator[dict[str, Any]]:
        """Poll order status, yielding each snapshot until the order is terminal.

        Errors while polling are raised to the caller, which may resume by iterating again.
        """
        while True:
            status = await self.get_status(order_id)
            yield status
            if status.get("status") in TERMINAL_STATUSES:
                return
            await asyncio.sleep(interval)

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self.http.request(method, path, json=json, params=params)
        except httpx.RequestError as exc:
            self.log.warning("api_request_failed", method=method, path=path, error=str(exc))
            raise BumperClientError(str(exc)) from exc
        if response.is_error:
            raise BumperClientError(_error_message(response), status_code=response.status_code)
        return response.json()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error") or body.get("detail")
        if error:
            return str(error)
    return f"HTTP {response.status_code}"
