"""In-memory invoker for tests and local simulation."""

from __future__ import annotations

import asyncio
import inspect
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..contracts import (
    ConfirmationOutcome,
    OperationHandle,
    OperationRequest,
    ReadQuery,
    StepKind,
)
from ..errors import OperatorRejected, SubmissionError
from .base import BaseInvoker

Responder = Callable[[ReadQuery], Any]


class InMemoryInvoker(BaseInvoker):
    """Scriptable in-process chain.

    Operations stay pending until :meth:`confirm` or :meth:`fail` is called,
    unless ``auto_confirm`` is set. Steps listed in ``reject_steps`` raise
    :class:`OperatorRejected`, steps in ``error_steps`` raise
    :class:`SubmissionError` and steps in ``fail_steps`` are auto-finalized as
    failed. Confirmed approvals update the tracked allowance.
    """

    def __init__(
        self,
        auto_confirm: bool = False,
        fail_steps: Optional[Set[StepKind]] = None,
        reject_steps: Optional[Set[StepKind]] = None,
        error_steps: Optional[Set[StepKind]] = None,
    ) -> None:
        self.auto_confirm = auto_confirm
        self.fail_steps = set(fail_steps or ())
        self.reject_steps = set(reject_steps or ())
        self.error_steps = set(error_steps or ())
        self.submissions: List[OperationRequest] = []
        self.queries: List[ReadQuery] = []
        self.errors: Dict[str, str] = {}
        self._requests: Dict[str, OperationRequest] = {}
        self._outcomes: Dict[str, asyncio.Future] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._responders: Dict[str, Responder] = {}

    # ------------------------------------------------------------------
    # Scripting helpers
    def set_allowance(self, token: str, owner: str, spender: str, value: int) -> None:
        self._allowances[(token, owner, spender)] = value

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self._allowances.get((token, owner, spender), 0)

    def respond(self, method: str, responder: Any) -> None:
        """Register a value, exception or callable answering ``method`` queries."""
        if callable(responder) and not isinstance(responder, BaseException):
            self._responders[method] = responder
        else:
            self._responders[method] = lambda _query, _value=responder: _value

    def submitted(self, step: Optional[StepKind] = None) -> List[OperationRequest]:
        if step is None:
            return list(self.submissions)
        return [req for req in self.submissions if req.step is step]

    def pending_handles(self) -> List[str]:
        return [hid for hid, fut in self._outcomes.items() if not fut.done()]

    def confirm(self, handle: OperationHandle | str) -> None:
        self._resolve(handle, ConfirmationOutcome.CONFIRMED)

    def fail(self, handle: OperationHandle | str, error: str = "execution reverted") -> None:
        self._resolve(handle, ConfirmationOutcome.FAILED, error)

    def _resolve(
        self,
        handle: OperationHandle | str,
        outcome: ConfirmationOutcome,
        error: Optional[str] = None,
    ) -> None:
        handle_id = handle if isinstance(handle, str) else handle.id
        future = self._outcomes[handle_id]
        if future.done():
            return
        request = self._requests[handle_id]
        if outcome is ConfirmationOutcome.CONFIRMED:
            if request.step is StepKind.PERMISSION and request.method == "approve":
                key = (request.target, request.args["owner"], request.args["spender"])
                self._allowances[key] = request.args["amount"]
        else:
            self.errors[handle_id] = error or "execution reverted"
        future.set_result(outcome)

    # ------------------------------------------------------------------
    # Invoker API
    async def submit(self, request: OperationRequest) -> OperationHandle:
        if request.step in self.reject_steps:
            raise OperatorRejected(f"Operator declined {request.method}")
        if request.step in self.error_steps:
            raise SubmissionError(f"RPC unavailable while submitting {request.method}")

        handle = OperationHandle(step=request.step, tx_ref=f"0x{uuid.uuid4().hex}")
        self.submissions.append(request)
        self._requests[handle.id] = request
        self._outcomes[handle.id] = asyncio.get_running_loop().create_future()

        if request.step in self.fail_steps:
            asyncio.get_running_loop().call_soon(self.fail, handle.id)
        elif self.auto_confirm:
            asyncio.get_running_loop().call_soon(self.confirm, handle.id)
        return handle

    async def await_confirmation(self, handle: OperationHandle) -> ConfirmationOutcome:
        future = self._outcomes.get(handle.id)
        if future is None:
            raise SubmissionError(f"Unknown operation handle: {handle.id}")
        return await asyncio.shield(future)

    async def query(self, query: ReadQuery, timeout: Optional[float] = None) -> Any:
        self.queries.append(query)
        if query.method == "allowance" and query.method not in self._responders:
            return self.allowance(query.target, query.args["owner"], query.args["spender"])

        responder = self._responders.get(query.method)
        if responder is None:
            raise SubmissionError(f"No responder for query {query.method}")

        async def _answer() -> Any:
            result = responder(query)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, BaseException):
                raise result
            return result

        return await asyncio.wait_for(_answer(), timeout=timeout)

    def failure_reason(self, handle: OperationHandle) -> Optional[str]:
        return self.errors.get(handle.id)
