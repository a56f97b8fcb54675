"""Exclusive file-backed leases: one service process, one batch loop per order.

A lease file records who holds it (pid, owner tag, acquisition time) so a
rejected caller can report the holder. The OS lock is what enforces
exclusivity; the record is informational and is rewritten on every acquire.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, BinaryIO

import orjson

from src.errors import OrderAlreadyRunning
from src.models import format_timestamp, utc_now


@dataclass(frozen=True)
class LeaseHolder:
    pid: int | None
    owner: str | None = None
    acquired_at: str | None = None

    def describe(self) -> str:
        parts = [f"pid={self.pid}" if self.pid else "pid=unknown"]
        if self.owner:
            parts.append(self.owner)
        if self.acquired_at:
            parts.append(f"since {self.acquired_at}")
        return " ".join(parts)


class LeaseHeld(RuntimeError):
    def __init__(self, lock_path: str, holder: LeaseHolder | None) -> None:
        self.lock_path = lock_path
        self.holder = holder
        hint = f" ({holder.describe()})" if holder else ""
        super().__init__(f"Lease already held{hint}: {lock_path}")


class FileLease:
    """Lock a lease file for ``owner``; the OS drops the lock if the process dies."""

    def __init__(self, path: str | Path, owner: str) -> None:
        self.path = Path(path)
        self.owner = owner
        self._fh: BinaryIO | None = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+b")
        try:
            _set_lock(fh, locked=True)
        except OSError as exc:
            holder = _read_holder(fh)
            fh.close()
            raise LeaseHeld(str(self.path), holder) from exc

        record = {
            "pid": os.getpid(),
            "owner": self.owner,
            "acquired_at": format_timestamp(utc_now()),
        }
        fh.seek(0)
        fh.truncate()
        fh.write(orjson.dumps(record) + b"\n")
        fh.flush()
        self._fh = fh

    def release(self) -> None:
        fh = self._fh
        if fh is None:
            return
        self._fh = None
        try:
            _set_lock(fh, locked=False)
        except OSError:
            # Closing the handle drops the lock regardless.
            pass
        fh.close()


class OrderLease:
    """Execution lease for one order, held from ``begin`` until its loop exits."""

    def __init__(self, registry: OrderLeases, order_id: str, file_lease: FileLease) -> None:
        self.order_id = order_id
        self._registry = registry
        self._file_lease = file_lease

    @property
    def held(self) -> bool:
        return self._file_lease.held

    def release(self) -> None:
        if not self._file_lease.held:
            return
        self._file_lease.release()
        self._registry._forget(self.order_id, self)


class OrderLeases:
    """Hand out at most one lease per order, across tasks and across processes."""

    def __init__(self, lease_dir: str | Path) -> None:
        self.lease_dir = Path(lease_dir)
        self._active: dict[str, OrderLease] = {}

    def acquire(self, order_id: str) -> OrderLease:
        if order_id in self._active:
            raise OrderAlreadyRunning(order_id, holder=f"pid={os.getpid()} order={order_id}")
        file_lease = FileLease(self.lease_dir / f"{order_id}.lock", owner=f"order={order_id}")
        try:
            file_lease.acquire()
        except LeaseHeld as exc:
            holder = exc.holder.describe() if exc.holder else None
            raise OrderAlreadyRunning(order_id, holder=holder) from exc
        lease = OrderLease(self, order_id, file_lease)
        self._active[order_id] = lease
        return lease

    def is_held(self, order_id: str) -> bool:
        return order_id in self._active

    def _forget(self, order_id: str, lease: OrderLease) -> None:
        if self._active.get(order_id) is lease:
            del self._active[order_id]


def _read_holder(fh: BinaryIO) -> LeaseHolder | None:
    try:
        fh.seek(0)
        data: Any = orjson.loads(fh.read() or b"null")
    except (OSError, orjson.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    pid = data.get("pid")
    return LeaseHolder(
        pid=pid if isinstance(pid, int) and pid > 0 else None,
        owner=data.get("owner"),
        acquired_at=data.get("acquired_at"),
    )


def _set_lock(fh: BinaryIO, locked: bool) -> None:
    if os.name == "nt":
        import msvcrt

        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK if locked else msvcrt.LK_UNLCK, 1)
        return

    import fcntl

    fcntl.flock(fh.fileno(), (fcntl.LOCK_EX | fcntl.LOCK_NB) if locked else fcntl.LOCK_UN)
