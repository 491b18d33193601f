"""Error taxonomy for chainflow workflows."""

from __future__ import annotations

from typing import Optional


class ChainflowError(Exception):
    """Base class for all chainflow errors.

    Every subclass carries a stable ``code`` that is recorded on a workflow
    instance's ``last_error`` when the failure is surfaced.
    """

    code = "chainflow_error"

    def __init__(self, message: str = "", *, detail: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.detail = detail


class OperatorRejected(ChainflowError):
    """The operator declined to authorize the operation."""

    code = "operator_rejected"


class SubmissionError(ChainflowError):
    """Network or RPC failure before any operation existed on-chain."""

    code = "submission_error"


class ExecutionFailed(ChainflowError):
    """An operation was submitted but finalized as failed."""

    code = "execution_failed"


class QuoteUnavailable(ChainflowError):
    """The remote fee quote could not be obtained or understood."""

    code = "quote_unavailable"


class InvalidAmount(ChainflowError, ValueError):
    """A decimal amount could not be parsed at the asset's precision."""

    code = "invalid_amount"


class WorkflowBusy(ChainflowError):
    """A slot already holds a workflow that has not finished."""

    code = "workflow_busy"


class InvalidTransition(ChainflowError):
    """A status change is not allowed from the current status."""

    code = "invalid_transition"


class UnknownWorkflow(ChainflowError, KeyError):
    """No workflow instance or record exists for the given id."""

    code = "unknown_workflow"

    def __str__(self) -> str:
        return Exception.__str__(self)


__all__ = [
    "ChainflowError",
    "OperatorRejected",
    "SubmissionError",
    "ExecutionFailed",
    "QuoteUnavailable",
    "InvalidAmount",
    "WorkflowBusy",
    "InvalidTransition",
    "UnknownWorkflow",
]
