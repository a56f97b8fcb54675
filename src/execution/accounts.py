"""Ephemeral account generation."""

from __future__ import annotations

from src.connectors.custody import KeyCustody
from src.models import EphemeralAccount


class AccountGenerator:
    """Create fresh single-use accounts whose keys stay in custody."""

    def __init__(self, custody: KeyCustody) -> None:
        self.custody = custody

    def generate(self, count: int) -> list[EphemeralAccount]:
        if count < 1:
            raise ValueError("count must be positive")
        return [EphemeralAccount(address=self.custody.generate()) for _ in range(count)]
