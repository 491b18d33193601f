"""Confirmation watcher turning operation finality into single events."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from .contracts import ConfirmationEvent, ConfirmationOutcome, OperationHandle
from .invokers import BaseInvoker

logger = logging.getLogger(__name__)

Callback = Callable[[ConfirmationEvent], Union[None, Awaitable[None]]]


class ConfirmationWatcher:
    """Observe operation handles and emit exactly one terminal event each.

    Each handle id has at most one underlying wait on the invoker. Once the
    outcome is known it is cached, so watching or subscribing again replays
    the same event instead of waiting or firing a second side effect.
    Callers drop a handle with :meth:`forget` once its event is consumed.
    """

    def __init__(self, invoker: BaseInvoker) -> None:
        self._invoker = invoker
        self._tasks: Dict[str, asyncio.Task] = {}
        self._events: Dict[str, ConfirmationEvent] = {}
        self._callback_tasks: List[asyncio.Task] = []

    def resolved(self, handle: OperationHandle) -> Optional[ConfirmationEvent]:
        """Return the cached terminal event for ``handle``, if any."""
        return self._events.get(handle.id)

    async def _observe(self, handle: OperationHandle) -> ConfirmationEvent:
        try:
            outcome = await self._invoker.await_confirmation(handle)
            error = None
            if outcome is ConfirmationOutcome.FAILED:
                error = (
                    self._invoker.failure_reason(handle)
                    or "operation finalized as failed"
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Confirmation of {handle.id} failed: {e}")
            outcome, error = ConfirmationOutcome.FAILED, str(e) or e.__class__.__name__

        event = ConfirmationEvent(handle=handle, outcome=outcome, error=error)
        self._events[handle.id] = event
        logger.info(f"Operation {handle.id} ({handle.step.value}) {outcome.value}")
        return event

    def _task_for(self, handle: OperationHandle) -> asyncio.Task:
        task = self._tasks.get(handle.id)
        if task is None:
            task = asyncio.ensure_future(self._observe(handle))
            self._tasks[handle.id] = task
        return task

    async def watch(self, handle: OperationHandle) -> ConfirmationEvent:
        """Wait for the terminal event of ``handle``."""
        cached = self._events.get(handle.id)
        if cached is not None:
            return cached
        return await asyncio.shield(self._task_for(handle))

    def subscribe(self, handle: OperationHandle, callback: Callback) -> None:
        """Invoke ``callback`` once with the terminal event of ``handle``.

        Coroutine callbacks are scheduled as tasks. If the handle has already
        resolved, the cached event is replayed on the next loop iteration.
        """

        def _deliver(event: ConfirmationEvent) -> None:
            result = callback(event)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.append(task)
                task.add_done_callback(self._callback_done)

        cached = self._events.get(handle.id)
        if cached is not None:
            asyncio.get_running_loop().call_soon(_deliver, cached)
            return

        def _on_done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            _deliver(task.result())

        self._task_for(handle).add_done_callback(_on_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Confirmation callback raised: {task.exception()!r}")

    def forget(self, handle: OperationHandle) -> None:
        """Drop cached state for ``handle``."""
        self._events.pop(handle.id, None)
        task = self._tasks.pop(handle.id, None)
        if task is not None and not task.done():
            task.cancel()

    async def aclose(self) -> None:
        """Cancel every pending wait and callback."""
        pending = [t for t in self._tasks.values() if not t.done()]
        pending += [t for t in self._callback_tasks if not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
