"""CLI for the bump order API.

Usage:
    python -m src.tools.bump_cli create 0xTokenAddress
    python -m src.tools.bump_cli start <order_id>
    python -m src.tools.bump_cli monitor <order_id> --interval 5

The server defaults to SERVER_URL or http://localhost:3000/api.
"""

from __future__ import annotations

import argparse
import asyncio
import os
from typing import Any

from src.client import BumperClient, BumperClientError

DEFAULT_SERVER_URL = "http://localhost:3000/api"


def format_status(status: dict[str, Any]) -> str:
    """One line per field, in the order an operator reads them."""
    lines = [
        f"Order:     {status.get('orderId')}",
        f"Status:    {status.get('status')}",
        f"Token:     {status.get('tokenAddress')}",
        f"Deposit:   {status.get('depositWallet')}",
        f"Balance:   {status.get('currentBalance')} ETH",
        f"Total:     {status.get('totalAmount')} ETH",
        f"Remaining: {status.get('remainingAmount')} ETH",
        f"Batches:   {status.get('currentBatch')}/{status.get('totalBatches')}",
    ]
    if status.get("stopReason"):
        lines.append(f"Stopped:   {status['stopReason']}")
    if status.get("completedAt"):
        lines.append(f"Finished:  {status['completedAt']}")
    return "\n".join(lines)


def format_order_row(order: dict[str, Any]) -> str:
    return (
        f"{order.get('orderId')}  {str(order.get('status')):<10}  "
        f"{order.get('tokenAddress')}  "
        f"batches={order.get('currentBatch')}/{order.get('totalBatches')}  "
        f"created={order.get('createdAt')}"
    )


def format_batch(batch: dict[str, Any]) -> str:
    results = batch.get("results") or []
    succeeded = sum(1 for r in results if r.get("success"))
    line = (
        f"Batch {batch.get('batchNumber')}: {batch.get('status')}  "
        f"swaps={succeeded}/{len(results)}  funding={batch.get('fundingTxHash')}"
    )
    failures = [f"  {r.get('address')}: {r.get('error')}" for r in results if not r.get("success")]
    return "\n".join([line, *failures])


async def _run(args: argparse.Namespace) -> int:
    client = BumperClient(server_url=args.server)
    try:
        if args.command == "create":
            created = await client.create_order(args.token)
            print(f"Order created: {created['orderId']}")
            print(f"Deposit wallet: {created['depositWallet']}")
            print(created.get("message", ""))
        elif args.command == "start":
            started = await client.start_order(args.order_id)
            print(started.get("message", "Started"))
            print(f"Total batches: {started.get('totalBatches')}")
            print(f"Estimated bumps: {started.get('estimatedBumps')}")
        elif args.command == "status":
            print(format_status(await client.get_status(args.order_id)))
        elif args.command == "monitor":
            async for status in client.monitor(args.order_id, interval=args.interval):
                print(format_status(status))
                print("-" * 40)
            print("Order finished.")
        elif args.command == "list":
            orders = await client.list_orders(limit=args.limit)
            if not orders:
                print("No orders.")
            for order in orders:
                print(format_order_row(order))
        elif args.command == "batches":
            listing = await client.list_batches(args.order_id)
            print(f"{listing['count']} batch(es) for order {listing['orderId']}")
            for batch in listing["batches"]:
                print(format_batch(batch))
        elif args.command == "cancel":
            cancelled = await client.cancel_order(args.order_id)
            print(cancelled.get("message", "Cancellation requested"))
        elif args.command == "health":
            health = await client.check_health()
            print(f"Server status: {health.get('status')} at {health.get('timestamp')}")
    except BumperClientError as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        await client.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create and track ETH bump orders.")
    parser.add_argument(
        "--server",
        default=os.environ.get("SERVER_URL", DEFAULT_SERVER_URL),
        help="Base URL of the bump API",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create an order for a token")
    create.add_argument("token", help="Token contract address")

    for name, help_text in (
        ("start", "Start processing a funded order"),
        ("status", "Show order status"),
        ("batches", "List an order's batches"),
        ("cancel", "Cancel a running order"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("order_id", help="Order id")

    monitor = sub.add_parser("monitor", help="Poll order status until it finishes")
    monitor.add_argument("order_id", help="Order id")
    monitor.add_argument("--interval", type=float, default=5.0, help="Seconds between polls")

    listing = sub.add_parser("list", help="List recent orders")
    listing.add_argument("--limit", type=int, default=50, help="Number of orders")

    sub.add_parser("health", help="Check that the server is up")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
