"""Client library for the bump order API."""

from src.client.sdk import BumperClient, BumperClientError

__all__ = ["BumperClient", "BumperClientError"]
