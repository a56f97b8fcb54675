"""Service entrypoint: wire chain adapters, order manager and HTTP API."""

from __future__ import annotations

import asyncio
import atexit
from pathlib import Path

import structlog
import uvicorn

from src.api import create_app
from src.config.settings import load_settings
from src.connectors import BulkFunder, ChainClient, ExchangeAdapter, FileKeyCustody
from src.execution import AccountGenerator, BatchExecutor, OrderManager
from src.monitoring import Metrics, SwapLogger, configure_logging
from src.storage import OrderStore
from src.utils.lease import FileLease, LeaseHeld, OrderLeases

log = structlog.get_logger(__name__)


async def main_async() -> None:
    settings = load_settings()
    configure_logging(settings.monitoring.log_level, settings.storage.logs_path, settings.monitoring)
    errors = settings.validate_for_bumping()
    if errors:
        log.error("settings_validation_failed", errors=errors, environment=settings.environment)
        return

    lock_path = Path(settings.storage.logs_path) / "bumper.lock"
    instance_lock = FileLease(lock_path, owner=f"service={settings.environment}")
    try:
        instance_lock.acquire()
    except LeaseHeld as exc:
        log.error(
            "another_instance_running",
            lock_path=exc.lock_path,
            holder=exc.holder.describe() if exc.holder else None,
        )
        return
    atexit.register(instance_lock.release)

    custody = FileKeyCustody(settings.storage.keys_path)
    chain = ChainClient(settings, custody)
    exchange = ExchangeAdapter(settings, chain)
    funder = BulkFunder(chain, settings.disperser_address)
    store = OrderStore(settings.storage.state_path)
    leases = OrderLeases(Path(settings.storage.state_path) / "leases")

    metrics = Metrics()
    if settings.monitoring.metrics_enabled:
        metrics.start(settings.monitoring.metrics_port)
    swap_log = None
    if settings.monitoring.swap_log_enabled:
        swap_log = SwapLogger(Path(settings.storage.logs_path) / "swaps.csv")

    executor = BatchExecutor(
        settings,
        store,
        AccountGenerator(custody),
        funder,
        exchange,
        metrics=metrics,
        swap_log=swap_log,
    )
    manager = OrderManager(
        settings,
        store,
        chain,
        custody,
        executor,
        leases,
        liquidity=exchange,
        metrics=metrics,
    )

    log.info(
        "bumper_starting",
        environment=settings.environment,
        chain_id=settings.chain.chain_id,
        bump_amount_eth=str(settings.bump.bump_amount_eth),
        batch_size=settings.bump.batch_size,
        api_port=settings.api.port,
    )
    config = uvicorn.Config(
        create_app(manager),
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.monitoring.log_level.lower(),
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        await chain.close()
        instance_lock.release()
        log.info("bumper_stopped")


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
