"""Bounded polling of external transaction status."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .contracts import DepositRecord, DepositStatus, PollOutcome
from .persistence import DepositRegistry
from .status import StatusSource

logger = logging.getLogger(__name__)

StatusCallback = Callable[[DepositStatus, int], Union[None, Awaitable[None]]]

RAW_STATUS_MAP = {
    "success": DepositStatus.CONFIRMED,
    "pending": DepositStatus.PENDING,
    "abort_by_response": DepositStatus.FAILED,
    "abort_by_post_condition": DepositStatus.FAILED,
}


def map_status(raw: Any) -> DepositStatus:
    """Map a raw remote status onto ``pending``, ``confirmed`` or ``failed``.

    Dropped transactions count as failed; anything unrecognised is still
    pending.
    """
    if not isinstance(raw, str):
        return DepositStatus.PENDING
    normalized = raw.strip().lower()
    if normalized in RAW_STATUS_MAP:
        return RAW_STATUS_MAP[normalized]
    if normalized.startswith("dropped_"):
        return DepositStatus.FAILED
    return DepositStatus.PENDING


async def _notify(
    callback: Optional[StatusCallback], status: DepositStatus, attempts: int
) -> None:
    if callback is None:
        return
    result = callback(status, attempts)
    if inspect.isawaitable(result):
        await result


class CrossChainStatusPoller:
    """Polls a :class:`StatusSource` until a transaction is final.

    When a transaction confirms, a ``minted`` notification follows after
    ``mint_grace_period`` seconds. The remote mint itself has no confirmation
    signal, so this is an approximation rather than an observed event.
    Finished polling and mint tasks are dropped; minted refs are remembered
    for the session so :meth:`wait_minted` still answers after the fact.
    """

    def __init__(
        self,
        source: StatusSource,
        interval: float = 3.0,
        max_attempts: int = 30,
        mint_grace_period: float = 3.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.source = source
        self.interval = interval
        self.max_attempts = max_attempts
        self.mint_grace_period = mint_grace_period
        self._mint_tasks: Dict[str, asyncio.Task] = {}
        self._minted: Set[str] = set()
        self._tracking: Dict[str, asyncio.Task] = {}

    async def fetch_status(self, ref: str) -> DepositStatus:
        """Query ``ref`` once; query errors count as pending."""
        try:
            raw = await self.source.get_status(ref)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to fetch status for {ref}: {e}")
            return DepositStatus.PENDING
        return map_status(raw)

    async def poll_until_terminal(
        self,
        ref: str,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> PollOutcome:
        """Poll ``ref`` until confirmed or failed, at most ``max_attempts`` times.

        ``on_status`` receives the canonical status and attempt number after
        every query, and ``minted`` once the grace period after confirmation
        has elapsed. Running out of attempts returns ``pending``; the caller
        may poll again later.
        """
        interval = self.interval if interval is None else interval
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        for attempt in range(1, max_attempts + 1):
            status = await self.fetch_status(ref)
            logger.info(f"Attempt {attempt}/{max_attempts} - {ref} status: {status.value}")
            await _notify(on_status, status, attempt)

            if status is DepositStatus.CONFIRMED:
                self._schedule_mint(ref, attempt, on_status)
                return PollOutcome(ref=ref, status=status, attempts=attempt)
            if status is DepositStatus.FAILED:
                return PollOutcome(ref=ref, status=status, attempts=attempt)

            if attempt < max_attempts:
                await asyncio.sleep(interval)

        logger.warning(f"Polling {ref} timed out after {max_attempts} attempts")
        return PollOutcome(ref=ref, status=DepositStatus.PENDING, attempts=max_attempts)

    def _schedule_mint(
        self, ref: str, attempts: int, on_status: Optional[StatusCallback]
    ) -> None:
        async def _mint() -> DepositStatus:
            await asyncio.sleep(self.mint_grace_period)
            logger.info(f"Assuming {ref} minted after {self.mint_grace_period}s grace period")
            await _notify(on_status, DepositStatus.MINTED, attempts)
            return DepositStatus.MINTED

        task = asyncio.ensure_future(_mint())
        self._mint_tasks[ref] = task
        task.add_done_callback(functools.partial(self._mint_done, ref))

    def _mint_done(self, ref: str, task: asyncio.Task) -> None:
        if self._mint_tasks.get(ref) is task:
            del self._mint_tasks[ref]
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error(f"Mint notification for {ref} raised: {task.exception()!r}")
            return
        self._minted.add(ref)

    async def wait_minted(self, ref: str) -> DepositStatus:
        """Wait for the scheduled mint transition of a confirmed ``ref``."""
        task = self._mint_tasks.get(ref)
        if task is None:
            if ref in self._minted:
                return DepositStatus.MINTED
            raise KeyError(f"No mint scheduled for {ref}")
        return await asyncio.shield(task)

    def track(self, record: DepositRecord, registry: DepositRegistry) -> asyncio.Task:
        """Poll ``record`` in the background, writing each status to ``registry``.

        Tracking an already tracked record returns the running task.
        """
        existing = self._tracking.get(record.id)
        if existing is not None and not existing.done():
            return existing

        async def _record_status(status: DepositStatus, attempts: int) -> None:
            await registry.update_status(record.id, status, attempts=attempts)

        task = asyncio.ensure_future(
            self.poll_until_terminal(record.external_tx_ref, on_status=_record_status)
        )
        self._tracking[record.id] = task
        task.add_done_callback(functools.partial(self._tracking_done, record.id))
        return task

    def _tracking_done(self, deposit_id: str, task: asyncio.Task) -> None:
        if self._tracking.get(deposit_id) is task:
            del self._tracking[deposit_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Tracking deposit {deposit_id} raised: {task.exception()!r}")

    async def resume_pending(self, registry: DepositRegistry) -> List[asyncio.Task]:
        """Restart tracking for every deposit still pending in ``registry``."""
        pending = await registry.pending_deposits()
        if pending:
            logger.info(f"Resuming status polling for {len(pending)} pending deposits")
        return [self.track(record, registry) for record in pending]

    async def aclose(self) -> None:
        """Cancel tracking and scheduled mint tasks."""
        tasks = [
            t
            for t in list(self._tracking.values()) + list(self._mint_tasks.values())
            if not t.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tracking.clear()
        self._mint_tasks.clear()
