"""Base interface for remote transaction status endpoints."""

from __future__ import annotations

import abc


class StatusSource(metaclass=abc.ABCMeta):
    """Reports the raw status string of an external transaction."""

    @abc.abstractmethod
    async def get_status(self, ref: str) -> str:
        """Return the remote status vocabulary value for ``ref``."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any connection resources (no-op by default)."""
        pass
