from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from . import constants
from .amounts import Amount


class FeeConfig(BaseModel):
    """Fee quotation settings."""

    fallback_fee: str = constants.DEFAULT_FALLBACK_FEE
    native_decimals: int = constants.NATIVE_DECIMALS
    quote_timeout: float = constants.DEFAULT_QUOTE_TIMEOUT

    def fallback_amount(self) -> Amount:
        """Fallback fee as an exact native-currency amount."""
        return Amount.parse(self.fallback_fee, self.native_decimals)


class PollerConfig(BaseModel):
    """Cross-chain status polling settings."""

    interval: float = constants.DEFAULT_POLL_INTERVAL
    max_attempts: int = Field(default=constants.DEFAULT_MAX_POLL_ATTEMPTS, ge=1)
    mint_grace_period: float = constants.DEFAULT_MINT_GRACE_PERIOD


class StacksApiConfig(BaseModel):
    """Configuration for the Stacks node API status source."""

    base_url: str = constants.DEFAULT_STACKS_API_URL
    timeout: float = 10.0


class StatusConfig(BaseModel):
    backend: Literal["inmemory", "stacks"] = "inmemory"
    stacks: StacksApiConfig = StacksApiConfig()


class InvokerConfig(BaseModel):
    backend: Literal["inmemory"] = "inmemory"


class EngineConfig(BaseModel):
    settle_delay: float = constants.DEFAULT_SETTLE_DELAY
    query_timeout: float = constants.DEFAULT_QUERY_TIMEOUT


class BridgeConfig(BaseModel):
    source_eid: int = constants.DEFAULT_SOURCE_EID
    destination_eid: int = constants.DEFAULT_DESTINATION_EID


class ChainflowConfig(BaseModel):
    """Top-level configuration model."""

    fees: FeeConfig = FeeConfig()
    poller: PollerConfig = PollerConfig()
    status: StatusConfig = StatusConfig()
    invoker: InvokerConfig = InvokerConfig()
    engine: EngineConfig = EngineConfig()
    bridge: BridgeConfig = BridgeConfig()
    assets: Dict[str, int] = Field(
        default_factory=lambda: dict(constants.DEFAULT_ASSET_DECIMALS)
    )
    contracts: Dict[str, str] = Field(default_factory=dict)

    def decimals_for(self, asset: str) -> int:
        try:
            return self.assets[asset]
        except KeyError:
            raise ValueError(f"No precision configured for asset: {asset}") from None

    def address_for(self, name: str) -> str:
        """Resolve a logical contract name, falling back to the name itself."""
        return self.contracts.get(name, name)


def load_config(path: Optional[str] = None) -> ChainflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CHAINFLOW_CONFIG env
            variable or 'chainflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("CHAINFLOW_CONFIG", "chainflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ChainflowConfig(**data)
    else:
        config = ChainflowConfig()

    env_stacks_url = os.getenv("CHAINFLOW_STACKS_API_URL")
    if env_stacks_url:
        config.status.stacks.base_url = env_stacks_url
    env_status_backend = os.getenv("CHAINFLOW_STATUS_BACKEND")
    if env_status_backend:
        config.status = StatusConfig(
            backend=env_status_backend.lower(), stacks=config.status.stacks
        )
    return config
