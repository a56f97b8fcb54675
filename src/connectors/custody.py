"""Signing-key custody, kept apart from order and batch records."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Protocol

import orjson
import structlog
from eth_account import Account

from src.errors import PersistenceFailure


class KeyCustody(Protocol):
    """Capability to create accounts and sign for them without exposing keys."""

    def generate(self) -> str: ...

    def sign_transaction(self, address: str, tx: dict[str, Any]) -> bytes: ...

    def has(self, address: str) -> bool: ...


class FileKeyCustody:
    """Keep private keys in a dedicated keystore file, never on order documents."""

    def __init__(self, keys_path: str | Path) -> None:
        self.keys_path = Path(keys_path)
        self.keys_path.mkdir(parents=True, exist_ok=True)
        self._file = self.keys_path / "keys.json"
        self.log = structlog.get_logger(__name__)
        self._keys: dict[str, str] = self._load_all()

    def generate(self) -> str:
        account = Account.create()
        self._keys[account.address] = "0x" + bytes(account.key).hex()
        self._save_all()
        return account.address

    def sign_transaction(self, address: str, tx: dict[str, Any]) -> bytes:
        key = self._keys.get(address)
        if key is None:
            raise KeyError(f"No signing key held for {address}")
        signed = Account.sign_transaction(tx, key)
        return bytes(signed.raw_transaction)

    def has(self, address: str) -> bool:
        return address in self._keys

    def import_key(self, private_key: str) -> str:
        """Take custody of an existing key (e.g. a deposit account issued elsewhere)."""
        account = Account.from_key(private_key)
        self._keys[account.address] = "0x" + bytes(account.key).hex()
        self._save_all()
        return account.address

    def _load_all(self) -> dict[str, str]:
        if not self._file.exists():
            return {}
        try:
            with open(self._file, "rb") as f:
                data = orjson.loads(f.read())
        except (OSError, orjson.JSONDecodeError) as exc:
            raise PersistenceFailure(f"Keystore unreadable: {self._file}") from exc
        return data if isinstance(data, dict) else {}

    def _save_all(self) -> None:
        tmp = self._file.with_suffix(".tmp")
        try:
            with open(tmp, "wb") as f:
                f.write(orjson.dumps(self._keys))
            os.replace(tmp, self._file)
        except OSError as exc:
            raise PersistenceFailure(f"Keystore write failed: {self._file}") from exc
        try:
            os.chmod(self._file, 0o600)
        except OSError:
            self.log.warning("keystore_chmod_failed", path=str(self._file))
