"""Core data contracts for chainflow workflows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .amounts import Amount


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WorkflowKind(str, Enum):
    """The pipelines the engine knows how to drive."""

    BRIDGE_SEND = "bridge_send"
    BRIDGE_REDEEM = "bridge_redeem"
    VAULT_DEPOSIT = "vault_deposit"
    RENT_HARVEST = "rent_harvest"
    LIQUIDATION_DEPOSIT = "liquidation_deposit"
    NAV_UPDATE = "nav_update"
    STACKS_DEPOSIT = "stacks_deposit"


class WorkflowStatus(str, Enum):
    IDLE = "idle"
    AWAITING_PERMISSION = "awaiting_permission"
    PERMISSION_GRANTED = "permission_granted"
    AWAITING_ACTION = "awaiting_action"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class StepKind(str, Enum):
    PERMISSION = "permission"
    ACTION = "action"


class ConfirmationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"


class FeeSource(str, Enum):
    QUOTED = "quoted"
    FALLBACK = "fallback"


class DepositStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    MINTED = "minted"
    FAILED = "failed"


_DEPOSIT_TRANSITIONS = {
    DepositStatus.PENDING: {DepositStatus.CONFIRMED, DepositStatus.FAILED},
    DepositStatus.CONFIRMED: {DepositStatus.MINTED},
    DepositStatus.MINTED: set(),
    DepositStatus.FAILED: set(),
}


class FeeQuote(BaseModel):
    """Native-currency cost attached to a bridging submission."""

    model_config = ConfigDict(frozen=True)

    amount: Amount
    source: FeeSource
    error: Optional[str] = Field(
        default=None, description="Why the fallback value was used"
    )

    @property
    def is_fallback(self) -> bool:
        return self.source is FeeSource.FALLBACK


class ReadQuery(BaseModel):
    """A read-only call against an external contract or endpoint."""

    target: str
    method: str
    args: Dict[str, Any] = Field(default_factory=dict)


class OperationRequest(BaseModel):
    """One state-changing operation handed to the invoker."""

    kind: WorkflowKind
    step: StepKind
    target: str
    method: str
    args: Dict[str, Any] = Field(default_factory=dict)
    value: int = Field(default=0, ge=0, description="Native value attached")
    gas_limit: Optional[int] = None


class OperationHandle(BaseModel):
    """Reference to a submitted, possibly unresolved, operation."""

    id: str = Field(default_factory=_new_id)
    step: StepKind
    tx_ref: Optional[str] = Field(default=None, description="External tx id")
    submitted_at: datetime = Field(default_factory=_now)


class ConfirmationEvent(BaseModel):
    """Terminal outcome observed for an operation handle."""

    handle: OperationHandle
    outcome: ConfirmationOutcome
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.outcome is ConfirmationOutcome.CONFIRMED


class BridgePayload(BaseModel):
    """Cross-chain send parameters with an exact-amount guarantee."""

    destination: int
    recipient: str
    amount: int = Field(ge=0)
    min_amount: int = Field(ge=0)

    @classmethod
    def exact(cls, destination: int, recipient: str, amount: int) -> "BridgePayload":
        return cls(
            destination=destination,
            recipient=recipient,
            amount=amount,
            min_amount=amount,
        )


class WorkflowParams(BaseModel):
    """Caller-supplied parameters for a workflow instance."""

    account: str
    recipient: Optional[str] = None
    destination: Optional[int] = None
    target: Optional[str] = Field(
        default=None, description="Overrides the definition's action target"
    )
    spender: Optional[str] = Field(
        default=None, description="Overrides the definition's permission spender"
    )
    extra: Dict[str, Any] = Field(default_factory=dict)


class WorkflowError(BaseModel):
    """Structured failure recorded on an instance."""

    code: str
    message: str
    step: Optional[StepKind] = None

    @classmethod
    def from_exception(
        cls, exc: BaseException, step: Optional[StepKind] = None
    ) -> "WorkflowError":
        return cls(
            code=getattr(exc, "code", "unexpected_error"),
            message=str(exc),
            step=step,
        )


class WorkflowInstance(BaseModel):
    """One run of a workflow, owned and mutated by the engine."""

    id: str = Field(default_factory=_new_id)
    kind: WorkflowKind
    slot: str
    status: WorkflowStatus = WorkflowStatus.IDLE
    amount: Amount
    params: WorkflowParams
    permission_handle: Optional[OperationHandle] = None
    action_handle: Optional[OperationHandle] = None
    failed_handle: Optional[OperationHandle] = None
    fee_quote: Optional[FeeQuote] = None
    deposit_id: Optional[str] = None
    last_error: Optional[WorkflowError] = None
    history: List[WorkflowStatus] = Field(default_factory=list)
    cancelled: bool = False
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def is_busy(self) -> bool:
        """``True`` while the instance blocks its slot."""
        if self.cancelled:
            return False
        return self.status not in (WorkflowStatus.IDLE, WorkflowStatus.FAILED)

    @property
    def in_flight(self) -> Optional[OperationHandle]:
        return self.permission_handle or self.action_handle


class DepositRecord(BaseModel):
    """History entry for an externally polled deposit."""

    id: str = Field(default_factory=_new_id)
    workflow_id: Optional[str] = None
    requested_amount: Amount
    external_tx_ref: str
    submitted_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    status: DepositStatus = DepositStatus.PENDING
    attempts: int = 0

    def can_move_to(self, status: DepositStatus) -> bool:
        return status == self.status or status in _DEPOSIT_TRANSITIONS[self.status]


class PollOutcome(BaseModel):
    """Result of one bounded polling run."""

    ref: str
    status: DepositStatus
    attempts: int

    @property
    def timed_out(self) -> bool:
        return self.status is DepositStatus.PENDING


__all__ = [
    "BridgePayload",
    "ConfirmationEvent",
    "ConfirmationOutcome",
    "DepositRecord",
    "DepositStatus",
    "FeeQuote",
    "FeeSource",
    "OperationHandle",
    "OperationRequest",
    "PollOutcome",
    "ReadQuery",
    "StepKind",
    "WorkflowError",
    "WorkflowInstance",
    "WorkflowKind",
    "WorkflowParams",
    "WorkflowStatus",
]
