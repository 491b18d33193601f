"""In-memory implementation of the deposit registry."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..amounts import Amount
from ..contracts import DepositRecord, DepositStatus
from ..errors import InvalidTransition, UnknownWorkflow
from .repository import DepositRegistry

logger = logging.getLogger(__name__)


class InMemoryDepositRegistry(DepositRegistry):
    """Store deposit history in local memory.

    Records live for the lifetime of the process and are never deleted.
    Statuses only move forward: ``pending -> confirmed -> minted`` or
    ``pending -> failed``.
    """

    def __init__(self) -> None:
        self._deposits: Dict[str, DepositRecord] = {}
        self._order: List[str] = []

    # ------------------------------------------------------------------
    async def create_deposit(
        self,
        requested_amount: Amount,
        external_tx_ref: str,
        workflow_id: Optional[str] = None,
    ) -> DepositRecord:
        record = DepositRecord(
            requested_amount=requested_amount,
            external_tx_ref=external_tx_ref,
            workflow_id=workflow_id,
        )
        self._deposits[record.id] = record
        self._order.append(record.id)
        logger.info(f"Recorded deposit {record.id} for tx {external_tx_ref}")
        return record

    async def update_status(
        self,
        deposit_id: str,
        status: DepositStatus,
        attempts: Optional[int] = None,
    ) -> DepositRecord:
        record = self._deposits.get(deposit_id)
        if record is None:
            raise UnknownWorkflow(f"Deposit not found: {deposit_id}")
        if not record.can_move_to(status):
            raise InvalidTransition(
                f"Deposit {deposit_id} cannot move from {record.status.value} to {status.value}"
            )
        record.status = status
        if attempts is not None:
            record.attempts = attempts
        record.updated_at = datetime.now(timezone.utc)
        return record

    async def get_deposit(self, deposit_id: str) -> DepositRecord | None:
        return self._deposits.get(deposit_id)

    async def find_by_tx(self, external_tx_ref: str) -> DepositRecord | None:
        for deposit_id in self._order:
            record = self._deposits[deposit_id]
            if record.external_tx_ref == external_tx_ref:
                return record
        return None

    async def list_deposits(self, newest_first: bool = False) -> list[DepositRecord]:
        records = [self._deposits[deposit_id] for deposit_id in self._order]
        return list(reversed(records)) if newest_first else records

    async def pending_deposits(self) -> list[DepositRecord]:
        return [
            record
            for record in await self.list_deposits()
            if record.status is DepositStatus.PENDING
        ]
