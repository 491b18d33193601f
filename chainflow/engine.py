"""Workflow state machine driving multi-step on-chain operations."""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union

from .amounts import Amount
from .config import ChainflowConfig, load_config
from .contracts import (
    BridgePayload,
    ConfirmationEvent,
    ConfirmationOutcome,
    DepositStatus,
    FeeQuote,
    OperationHandle,
    OperationRequest,
    PollOutcome,
    ReadQuery,
    StepKind,
    WorkflowError,
    WorkflowInstance,
    WorkflowKind,
    WorkflowParams,
    WorkflowStatus,
)
from .definitions import WorkflowDefinition, get_definition
from .errors import (
    ExecutionFailed,
    InvalidAmount,
    InvalidTransition,
    OperatorRejected,
    SubmissionError,
    UnknownWorkflow,
    WorkflowBusy,
)
from .fees import FeeQuotationResolver
from .guard import should_request_permission
from .invokers import BaseInvoker
from .persistence import DepositRegistry, get_registry
from .poller import CrossChainStatusPoller
from .status import get_status_source
from .watcher import ConfirmationWatcher

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Runs workflow instances through permission and action steps.

    Every workflow kind follows the same path: enter ``awaiting_permission``,
    read the current allowance, submit an approval only when the guard asks
    for one, then submit the action once the approval is confirmed. Watcher
    and poller events are fed into :meth:`_advance`, the single transition
    function. Each slot (by default the workflow kind) holds at most one
    live instance. A finished instance stays available through :meth:`get`
    until the next instance starts in its slot, then it is discarded.
    """

    def __init__(
        self,
        invoker: BaseInvoker,
        registry: Optional[DepositRegistry] = None,
        poller: Optional[CrossChainStatusPoller] = None,
        resolver: Optional[FeeQuotationResolver] = None,
        watcher: Optional[ConfirmationWatcher] = None,
        config: Optional[ChainflowConfig] = None,
    ) -> None:
        self._config = config or load_config()
        self._invoker = invoker
        self._registry = registry or get_registry()
        self._poller = poller
        self._resolver = resolver or FeeQuotationResolver(
            self._config.fees.fallback_amount(),
            timeout=self._config.fees.quote_timeout,
        )
        self._watcher = watcher or ConfirmationWatcher(invoker)
        self._instances: Dict[str, WorkflowInstance] = {}
        self._slots: Dict[str, str] = {}
        self._done: Dict[str, asyncio.Event] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    @property
    def registry(self) -> DepositRegistry:
        return self._registry

    @property
    def poller(self) -> CrossChainStatusPoller:
        if self._poller is None:
            poller_conf = self._config.poller
            self._poller = CrossChainStatusPoller(
                get_status_source(config=self._config),
                interval=poller_conf.interval,
                max_attempts=poller_conf.max_attempts,
                mint_grace_period=poller_conf.mint_grace_period,
            )
        return self._poller

    def get(self, instance_id: str) -> WorkflowInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise UnknownWorkflow(f"Workflow not found: {instance_id}")
        return instance

    def live(self, slot: str) -> Optional[WorkflowInstance]:
        """Return the instance currently occupying ``slot``, if any."""
        instance_id = self._slots.get(slot)
        return self._instances.get(instance_id) if instance_id else None

    def instances(self) -> List[WorkflowInstance]:
        return list(self._instances.values())

    async def start(
        self,
        kind: Union[WorkflowKind, str],
        amount: Union[str, Amount],
        params: Union[WorkflowParams, Dict[str, Any]],
        slot: Optional[str] = None,
    ) -> WorkflowInstance:
        """Create an instance and submit its first operation.

        Returns as soon as the permission or action operation has been
        submitted; use :meth:`wait` to await the terminal state.

        Raises:
            InvalidAmount: ``amount`` is malformed, zero or too precise.
            WorkflowBusy: ``slot`` already holds an unfinished instance.
        """
        definition = get_definition(kind)
        parsed = self._parse_amount(amount, definition)
        if not isinstance(params, WorkflowParams):
            params = WorkflowParams.model_validate(params)
        slot = slot or definition.kind.value

        current = self.live(slot)
        if current is not None and current.is_busy():
            raise WorkflowBusy(
                f"Slot {slot} is busy with workflow {current.id} ({current.status.value})"
            )
        self._discard_finished(slot)

        instance = WorkflowInstance(
            kind=definition.kind, slot=slot, amount=parsed, params=params
        )
        self._instances[instance.id] = instance
        self._done[instance.id] = asyncio.Event()
        self._slots[slot] = instance.id
        self._set_status(instance, WorkflowStatus.AWAITING_PERMISSION)
        logger.info(
            f"Started workflow {instance.id} ({definition.kind.value}) for {parsed} {definition.asset}"
        )

        try:
            await self._begin(instance, definition)
        except Exception as e:
            self._fail(instance, e, step=None)
            raise
        return instance

    async def wait(
        self, instance_id: str, timeout: Optional[float] = None
    ) -> WorkflowInstance:
        """Wait until the instance has finished (``idle`` or ``failed``)."""
        instance = self.get(instance_id)
        await asyncio.wait_for(self._done[instance_id].wait(), timeout=timeout)
        return instance

    def cancel(self, instance_id: str) -> WorkflowInstance:
        """Discard an instance and free its slot.

        An operation that was already submitted cannot be revoked; its
        eventual confirmation or failure is absorbed without effect.
        """
        instance = self.get(instance_id)
        if not instance.is_busy():
            return instance

        if instance.in_flight is not None:
            logger.warning(
                f"Cancelling workflow {instance.id} with operation {instance.in_flight.id} "
                "in flight; the operation cannot be revoked and its outcome will be ignored"
            )
        instance.cancelled = True
        self._set_status(instance, WorkflowStatus.IDLE)
        self._finish(instance)
        return instance

    async def retry(self, instance_id: str) -> WorkflowInstance:
        """Start a fresh instance with the parameters of a failed one."""
        failed = self.get(instance_id)
        if failed.status is not WorkflowStatus.FAILED:
            raise InvalidTransition(
                f"Only failed workflows can be retried; {failed.id} is {failed.status.value}"
            )
        return await self.start(
            failed.kind, failed.amount, failed.params.model_copy(deep=True), slot=failed.slot
        )

    async def resume(self, instance_id: str) -> asyncio.Task:
        """Resume status polling for a polled action that timed out."""
        instance = self.get(instance_id)
        handle = instance.action_handle
        if (
            instance.status is not WorkflowStatus.AWAITING_ACTION
            or handle is None
            or instance.deposit_id is None
        ):
            raise InvalidTransition(f"Workflow {instance.id} has no polled action to resume")
        record = await self._registry.get_deposit(instance.deposit_id)
        if record is None:
            raise UnknownWorkflow(f"Deposit not found: {instance.deposit_id}")
        logger.info(f"Resuming status polling for workflow {instance.id}")
        return self._follow_poll(instance, handle, self.poller.track(record, self._registry))

    async def aclose(self) -> None:
        """Stop background work owned by the engine."""
        await self._watcher.aclose()
        if self._poller is not None:
            await self._poller.aclose()
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Steps
    def _parse_amount(
        self, amount: Union[str, Amount], definition: WorkflowDefinition
    ) -> Amount:
        decimals = self._config.decimals_for(definition.asset)
        if isinstance(amount, Amount):
            if amount.decimals != decimals:
                raise InvalidAmount(
                    f"{definition.asset} uses {decimals} decimals, got {amount.decimals}"
                )
            parsed = amount
        else:
            parsed = Amount.parse(amount, decimals)
        if parsed.value == 0:
            raise InvalidAmount("Amount must be greater than zero")
        return parsed

    async def _begin(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> None:
        permission = definition.permission
        if permission is None:
            await self._submit_action(instance, definition)
            return

        current_level = await self._read_allowance(instance, definition)
        if instance.cancelled:
            logger.info(f"Workflow {instance.id} cancelled while reading its allowance")
            return
        if not should_request_permission(current_level, instance.amount.value):
            logger.info(
                f"Allowance {current_level} covers {instance.amount.value}, "
                f"skipping permission for workflow {instance.id}"
            )
            await self._submit_action(instance, definition)
            return

        request = OperationRequest(
            kind=instance.kind,
            step=StepKind.PERMISSION,
            target=self._config.address_for(permission.token),
            method=permission.method,
            args={
                "owner": instance.params.account,
                "spender": self._spender(instance, definition),
                "amount": instance.amount.value,
            },
            gas_limit=permission.gas_limit,
        )
        handle = await self._submit(instance, request)
        if handle is None:
            return
        instance.permission_handle = handle
        self._watcher.subscribe(handle, functools.partial(self._advance, instance))

    async def _read_allowance(
        self, instance: WorkflowInstance, definition: WorkflowDefinition
    ) -> int:
        permission = definition.permission
        query = ReadQuery(
            target=self._config.address_for(permission.token),
            method=permission.allowance_method,
            args={
                "owner": instance.params.account,
                "spender": self._spender(instance, definition),
            },
        )
        try:
            level = await self._invoker.query(query, timeout=self._config.engine.query_timeout)
        except Exception as e:
            logger.warning(
                f"Allowance read failed for workflow {instance.id}, requesting permission: {e}"
            )
            return 0
        if isinstance(level, bool) or not isinstance(level, int):
            logger.warning(
                f"Unexpected allowance value {level!r} for workflow {instance.id}, requesting permission"
            )
            return 0
        return level

    def _spender(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> str:
        return self._config.address_for(instance.params.spender or definition.permission.spender)

    def _bridge_payload(
        self, instance: WorkflowInstance, definition: WorkflowDefinition
    ) -> BridgePayload:
        bridge = self._config.bridge
        destination = instance.params.destination
        if destination is None:
            destination = (
                bridge.destination_eid
                if definition.bridge_route == "outbound"
                else bridge.source_eid
            )
        return BridgePayload.exact(
            destination=destination,
            recipient=instance.params.recipient or instance.params.account,
            amount=instance.amount.value,
        )

    async def _submit_action(
        self, instance: WorkflowInstance, definition: WorkflowDefinition
    ) -> None:
        if instance.cancelled:
            logger.info(f"Workflow {instance.id} cancelled, not starting its action step")
            return
        self._set_status(instance, WorkflowStatus.AWAITING_ACTION)
        target = self._config.address_for(instance.params.target or definition.action.target)
        args: Dict[str, Any] = {
            "account": instance.params.account,
            "amount": instance.amount.value,
        }

        fee_quote: Optional[FeeQuote] = None
        if definition.is_bridging:
            payload = self._bridge_payload(instance, definition)
            args.update(payload.model_dump())
        if definition.needs_fee_quote:
            quote_query = ReadQuery(
                target=target, method=definition.fee_quote_method, args=dict(args)
            )
            try:
                fee_quote = await self._resolver.resolve_fee(
                    functools.partial(
                        self._invoker.query, quote_query, self._config.fees.quote_timeout
                    )
                )
            except Exception as e:
                self._fail(instance, e, step=StepKind.ACTION)
                return
            instance.fee_quote = fee_quote
            args["fee"] = {"native_fee": fee_quote.amount.value, "lz_token_fee": 0}
            if fee_quote.is_fallback:
                logger.warning(
                    f"Workflow {instance.id} attaching fallback fee {fee_quote.amount}"
                )
        args.update(instance.params.extra)

        request = OperationRequest(
            kind=instance.kind,
            step=StepKind.ACTION,
            target=target,
            method=definition.action.method,
            args=args,
            value=fee_quote.amount.value if fee_quote else 0,
            gas_limit=definition.action.gas_limit,
        )
        handle = await self._submit(instance, request)
        if handle is None:
            return
        instance.action_handle = handle

        if definition.confirmation == "poller":
            record = await self._registry.create_deposit(
                instance.amount, handle.tx_ref or handle.id, workflow_id=instance.id
            )
            instance.deposit_id = record.id
            self._follow_poll(instance, handle, self.poller.track(record, self._registry))
        else:
            self._watcher.subscribe(
                handle, functools.partial(self._advance, instance)
            )

    async def _submit(
        self, instance: WorkflowInstance, request: OperationRequest
    ) -> Optional[OperationHandle]:
        if instance.cancelled:
            logger.info(f"Workflow {instance.id} cancelled, not submitting {request.method}")
            return None
        instance.last_error = None
        try:
            handle = await self._invoker.submit(request)
        except OperatorRejected as e:
            logger.info(f"Operator rejected {request.step.value} for workflow {instance.id}: {e}")
            self._reset(instance, None)
            return None
        except SubmissionError as e:
            logger.error(f"Submission of {request.step.value} failed for workflow {instance.id}: {e}")
            self._reset(instance, WorkflowError.from_exception(e, request.step))
            return None
        logger.info(
            f"Submitted {request.method} ({request.step.value}) for workflow {instance.id}: {handle.tx_ref}"
        )
        return handle

    # ------------------------------------------------------------------
    # Events
    def _follow_poll(
        self, instance: WorkflowInstance, handle: OperationHandle, task: asyncio.Task
    ) -> asyncio.Task:
        def _on_poll_done(done: asyncio.Task) -> None:
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.error(f"Status polling for workflow {instance.id} crashed: {exc!r}")
                current = instance.action_handle
                if not instance.cancelled and current is not None and current.id == handle.id:
                    self._fail(instance, exc, step=StepKind.ACTION)
                return
            outcome: PollOutcome = done.result()
            if outcome.timed_out:
                logger.warning(
                    f"Workflow {instance.id} still pending after {outcome.attempts} attempts; "
                    "resume polling to keep tracking it"
                )
                return
            result = (
                ConfirmationOutcome.CONFIRMED
                if outcome.status is DepositStatus.CONFIRMED
                else ConfirmationOutcome.FAILED
            )
            error = None
            if result is ConfirmationOutcome.FAILED:
                error = f"transaction {outcome.ref} failed on the remote chain"
            event = ConfirmationEvent(handle=handle, outcome=result, error=error)
            self._spawn(self._advance(instance, event))

        task.add_done_callback(_on_poll_done)
        return task

    async def _advance(self, instance: WorkflowInstance, event: ConfirmationEvent) -> None:
        """Apply one confirmation event to ``instance``."""
        self._watcher.forget(event.handle)
        step = event.handle.step
        expected = (
            instance.permission_handle
            if step is StepKind.PERMISSION
            else instance.action_handle
        )
        if instance.cancelled or expected is None or expected.id != event.handle.id:
            logger.warning(
                f"Ignoring stale {step.value} {event.outcome.value} event for workflow {instance.id}"
            )
            if instance.cancelled and expected is not None and expected.id == event.handle.id:
                instance.permission_handle = None
                instance.action_handle = None
            return

        if event.outcome is ConfirmationOutcome.FAILED:
            instance.failed_handle = event.handle
            self._fail(
                instance,
                ExecutionFailed(event.error or "operation finalized as failed"),
                step=step,
            )
            return

        if step is StepKind.PERMISSION:
            instance.permission_handle = None
            self._set_status(instance, WorkflowStatus.PERMISSION_GRANTED)
            settle_delay = self._config.engine.settle_delay
            if settle_delay > 0:
                await asyncio.sleep(settle_delay)
            if instance.cancelled:
                logger.info(f"Workflow {instance.id} cancelled before its action step")
                return
            try:
                await self._submit_action(instance, get_definition(instance.kind))
            except Exception as e:
                self._fail(instance, e, step=StepKind.ACTION)
            return

        instance.action_handle = None
        self._set_status(instance, WorkflowStatus.CONFIRMED)
        self._set_status(instance, WorkflowStatus.IDLE)
        logger.info(f"Workflow {instance.id} ({instance.kind.value}) completed")
        self._finish(instance)

    # ------------------------------------------------------------------
    # Bookkeeping
    def _set_status(self, instance: WorkflowInstance, status: WorkflowStatus) -> None:
        instance.status = status
        instance.history.append(status)
        instance.updated_at = datetime.now(timezone.utc)
        logger.debug(f"Workflow {instance.id} -> {status.value}")

    def _fail(
        self,
        instance: WorkflowInstance,
        exc: BaseException,
        step: Optional[StepKind],
    ) -> None:
        instance.permission_handle = None
        instance.action_handle = None
        instance.last_error = WorkflowError.from_exception(exc, step)
        logger.error(f"Workflow {instance.id} ({instance.kind.value}) failed: {exc}")
        self._set_status(instance, WorkflowStatus.FAILED)
        self._finish(instance)

    def _reset(self, instance: WorkflowInstance, error: Optional[WorkflowError]) -> None:
        instance.permission_handle = None
        instance.action_handle = None
        instance.last_error = error
        self._set_status(instance, WorkflowStatus.IDLE)
        self._finish(instance)

    def _discard_finished(self, slot: str) -> None:
        for instance_id in [
            i.id for i in self._instances.values() if i.slot == slot and not i.is_busy()
        ]:
            del self._instances[instance_id]
            del self._done[instance_id]

    def _finish(self, instance: WorkflowInstance) -> None:
        if self._slots.get(instance.slot) == instance.id:
            del self._slots[instance.slot]
        done = self._done.get(instance.id)
        if done is not None:
            done.set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Workflow event handler raised: {task.exception()!r}")
