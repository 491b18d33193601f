"""Status source factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import ChainflowConfig, load_config
from .base import StatusSource
from .inmemory import InMemoryStatusSource
from .stacks import StacksApiStatusSource


def get_status_source(
    backend: Optional[str] = None, config: Optional[ChainflowConfig] = None
) -> StatusSource:
    """Factory function to get the configured status source."""

    config = config or load_config()
    backend = (backend or config.status.backend).lower()

    if backend == "inmemory":
        return InMemoryStatusSource()
    elif backend == "stacks":
        stacks_conf = config.status.stacks
        return StacksApiStatusSource(
            base_url=stacks_conf.base_url, timeout=stacks_conf.timeout
        )
    else:
        raise ValueError(f"Unsupported status backend: {backend}")


__all__ = [
    "InMemoryStatusSource",
    "StacksApiStatusSource",
    "StatusSource",
    "get_status_source",
]
