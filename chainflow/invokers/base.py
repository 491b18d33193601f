"""Base invoker interface for external operations."""

from __future__ import annotations

import abc
from typing import Any, Optional

from ..contracts import ConfirmationOutcome, OperationHandle, OperationRequest, ReadQuery


class BaseInvoker(metaclass=abc.ABCMeta):
    """Abstract binding to the wallet and chain the engine drives."""

    async def connect(self) -> None:
        """Open connection to the chain backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the chain backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def submit(self, request: OperationRequest) -> OperationHandle:
        """Submit a state-changing operation.

        Raises:
            OperatorRejected: The operator declined to sign.
            SubmissionError: The operation never reached the chain.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def await_confirmation(self, handle: OperationHandle) -> ConfirmationOutcome:
        """Wait until ``handle`` is final and report its outcome."""
        raise NotImplementedError

    @abc.abstractmethod
    async def query(self, query: ReadQuery, timeout: Optional[float] = None) -> Any:
        """Run a read-only call bounded by ``timeout`` seconds."""
        raise NotImplementedError

    def failure_reason(self, handle: OperationHandle) -> Optional[str]:
        """Reason reported for a failed ``handle``, when the backend knows one."""
        return None
