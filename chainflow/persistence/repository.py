"""Registry abstraction for deposit history."""

from __future__ import annotations

from typing import Optional, Protocol

from ..amounts import Amount
from ..contracts import DepositRecord, DepositStatus


class DepositRegistry(Protocol):
    """Protocol for deposit history backends."""

    async def create_deposit(
        self,
        requested_amount: Amount,
        external_tx_ref: str,
        workflow_id: Optional[str] = None,
    ) -> DepositRecord:
        """Append a new pending deposit."""

    async def update_status(
        self,
        deposit_id: str,
        status: DepositStatus,
        attempts: Optional[int] = None,
    ) -> DepositRecord:
        """Move a deposit to ``status``, enforcing the allowed transitions."""

    async def get_deposit(self, deposit_id: str) -> DepositRecord | None:
        """Retrieve a deposit by id."""

    async def find_by_tx(self, external_tx_ref: str) -> DepositRecord | None:
        """Retrieve a deposit by its external transaction reference."""

    async def list_deposits(self, newest_first: bool = False) -> list[DepositRecord]:
        """Return every deposit in append order (or reversed)."""

    async def pending_deposits(self) -> list[DepositRecord]:
        """Return deposits whose polling has not reached a terminal status."""
