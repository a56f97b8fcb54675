"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class ChainConfig(BaseModel):
    """Ethereum network and contract configuration."""

    chain_id: int = Field(default=1, ge=1)
    weth_address: str = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
    uniswap_v2_router: str = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
    uniswap_v2_factory: str = "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"
    uniswap_v3_router: str = "0xE592427A0AEce92De3Edee1F18E0157C05861564"
    request_timeout_sec: int = Field(default=30, ge=5, le=300)
    receipt_timeout_sec: int = Field(default=180, ge=10, le=1800)
    transfer_gas_limit: int = Field(default=21000, ge=21000)
    swap_gas_limit: int = Field(default=300000, ge=50000, le=2_000_000)


class BumpConfig(BaseModel):
    """Order planning and batch pacing parameters."""

    bump_amount_eth: Decimal = Field(default=Decimal("0.002"), gt=0)
    treasury_fee_eth: Decimal = Field(default=Decimal("0.009"), ge=0)
    min_start_eth: Decimal = Field(default=Decimal("0.01"), gt=0)
    gas_buffer_eth: Decimal = Field(default=Decimal("0.0001"), ge=0)
    batch_size: int = Field(default=5, ge=1, le=50)
    inter_batch_delay_sec: float = Field(default=10.0, ge=0.0, le=600.0)
    jitter_max_sec: float = Field(default=5.0, ge=0.0, le=120.0)
    v3_fee_tier: int = Field(default=3000)
    swap_deadline_sec: int = Field(default=20 * 60, ge=60, le=24 * 60 * 60)
    # Unset means an order loop runs until its plan or balance is exhausted.
    order_timeout_sec: float | None = Field(default=None, gt=0)

    @field_validator("v3_fee_tier")
    @classmethod
    def validate_fee_tier(cls, v: int) -> int:
        if v not in (100, 500, 3000, 10000):
            raise ValueError(f"v3_fee_tier ({v}) is not a Uniswap V3 fee tier")
        return v


class ApiConfig(BaseModel):
    """HTTP API configuration."""

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1024, le=65535)
    list_limit: int = Field(default=50, ge=1, le=500)


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    state_path: str = "./data/state"
    keys_path: str = "./data/keys"
    logs_path: str = "./logs"


class MonitoringConfig(BaseModel):
    """Monitoring and logging configuration."""

    metrics_enabled: bool = True
    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    swap_log_enabled: bool = True
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)


class Settings(BaseSettings):
    """Main application settings."""

    environment: Literal["mainnet", "testnet", "local"] = "mainnet"

    # Endpoints and addresses from environment
    rpc_url: str = Field(default="", alias="RPC_URL")
    treasury_address: str = Field(default="", alias="TREASURY_ADDRESS")
    disperser_address: str = Field(default="", alias="DISPERSER_CONTRACT_ADDRESS")

    # Sub-configurations
    chain: ChainConfig = Field(default_factory=ChainConfig)
    bump: BumpConfig = Field(default_factory=BumpConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    @property
    def required_per_batch_eth(self) -> Decimal:
        """Balance one batch consumes: every account gets the bump plus its gas buffer."""
        return (self.bump.bump_amount_eth + self.bump.gas_buffer_eth) * self.bump.batch_size

    def validate_for_bumping(self) -> list[str]:
        """Validate settings are suitable for processing orders. Returns list of errors."""
        errors = []

        if not self.rpc_url:
            errors.append("RPC_URL not set")
        if not self.treasury_address:
            errors.append("TREASURY_ADDRESS not set")
        if not self.disperser_address:
            errors.append("DISPERSER_CONTRACT_ADDRESS not set")

        if self.bump.min_start_eth <= self.bump.treasury_fee_eth:
            errors.append("min_start_eth must exceed treasury_fee_eth")

        if self.bump.bump_amount_eth > self.bump.min_start_eth:
            errors.append("bump_amount_eth exceeds min_start_eth; no order could fund a bump")

        return errors


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file values
    3. Default values
    """
    config_data = {}

    # Try to load from config file
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    env_bump_amount = os.environ.get("BUMP_AMOUNT_ETH")
    if env_bump_amount:
        config_data.setdefault("bump", {})["bump_amount_eth"] = env_bump_amount

    # Build settings with config data as defaults
    env_path = config_file.parent / ".env"
    settings = Settings(**config_data, _env_file=env_path)

    return settings


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    default_config = {
        "environment": "mainnet",
        "chain": {
            "chain_id": 1,
            "weth_address": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            "uniswap_v2_router": "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
            "uniswap_v2_factory": "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",
            "uniswap_v3_router": "0xE592427A0AEce92De3Edee1F18E0157C05861564",
            "swap_gas_limit": 300000,
        },
        "bump": {
            "bump_amount_eth": "0.002",
            "treasury_fee_eth": "0.009",
            "min_start_eth": "0.01",
            "gas_buffer_eth": "0.0001",
            "batch_size": 5,
            "inter_batch_delay_sec": 10,
            "jitter_max_sec": 5,
            "v3_fee_tier": 3000,
            "swap_deadline_sec": 1200,
        },
        "api": {
            "host": "0.0.0.0",
            "port": 3000,
        },
        "storage": {
            "state_path": "./data/state",
            "keys_path": "./data/keys",
            "logs_path": "./logs",
        },
        "monitoring": {
            "metrics_enabled": True,
            "metrics_port": 9090,
            "log_level": "INFO",
            "swap_log_enabled": True,
            "error_log_max_bytes": 5000000,
            "error_log_backup_count": 3,
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
