"""Session-lifetime workflow registry."""

from __future__ import annotations

from .inmemory import InMemoryDepositRegistry
from .repository import DepositRegistry

_registry_instance: DepositRegistry | None = None


def get_registry() -> DepositRegistry:
    """Return the process-wide deposit registry.

    Deposit history is kept in memory only; it survives for the lifetime of
    the running session and is shared by every engine in the process.
    """

    global _registry_instance
    if _registry_instance is None:
        _registry_instance = InMemoryDepositRegistry()
    return _registry_instance


__all__ = ["DepositRegistry", "InMemoryDepositRegistry", "get_registry"]
