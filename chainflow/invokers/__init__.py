"""Invoker factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ChainflowConfig, load_config
from .base import BaseInvoker
from .inmemory import InMemoryInvoker


def get_invoker(
    backend: Optional[str] = None, config: Optional[ChainflowConfig] = None
) -> BaseInvoker:
    """Factory function to get the configured invoker."""

    config = config or load_config()
    backend = (
        backend or os.getenv("CHAINFLOW_INVOKER") or config.invoker.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryInvoker()
    else:
        raise ValueError(f"Unsupported invoker backend: {backend}")


__all__ = ["BaseInvoker", "InMemoryInvoker", "get_invoker"]
