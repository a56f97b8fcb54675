"""Structured logging setup and per-order log context."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Iterator

import structlog

from src.config.settings import MonitoringConfig

# RPC and HTTP client debug output can include raw signed transactions.
QUIET_LOGGERS = ("httpx", "httpcore", "web3", "urllib3", "uvicorn.access")


def _error_file_handler(log_dir: Path, monitoring: MonitoringConfig | None) -> logging.Handler:
    monitoring = monitoring or MonitoringConfig()
    handler = RotatingFileHandler(
        log_dir / "errors.log",
        maxBytes=monitoring.error_log_max_bytes,
        backupCount=monitoring.error_log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.ERROR)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure_logging(
    log_level: str = "INFO",
    logs_path: str | None = None,
    monitoring: MonitoringConfig | None = None,
) -> None:
    """Route structlog JSON events through stdlib logging to stdout and errors.log."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    if logs_path:
        log_dir = Path(logs_path)
        log_dir.mkdir(parents=True, exist_ok=True)
        logging.getLogger().addHandler(_error_file_handler(log_dir, monitoring))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


@contextmanager
def order_context(order_id: str, **extra: object) -> Iterator[None]:
    """Tag every event logged inside the block (and tasks it spawns) with the order id."""
    with structlog.contextvars.bound_contextvars(order_id=order_id, **extra):
        yield
