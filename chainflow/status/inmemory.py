"""Scripted status source for tests and simulation."""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, List, Optional, Union

from .base import StatusSource

Scripted = Union[str, BaseException]


class InMemoryStatusSource(StatusSource):
    """Replays a scripted sequence of raw statuses per transaction.

    Each call to :meth:`get_status` consumes the next scripted entry; once a
    sequence is exhausted its last entry repeats. Exceptions in a sequence are
    raised instead of returned. Refs without a script replay ``default``
    when given, otherwise they report ``"pending"``.
    """

    def __init__(self, default: Optional[Iterable[Scripted]] = None) -> None:
        self._default: List[Scripted] = list(default or ())
        self._scripts: Dict[str, Deque[Scripted]] = defaultdict(deque)
        self._last: Dict[str, Scripted] = {}
        self.calls: List[str] = []

    def script(self, ref: str, statuses: Iterable[Scripted]) -> None:
        self._scripts[ref].extend(statuses)

    async def get_status(self, ref: str) -> str:
        self.calls.append(ref)
        if self._default and ref not in self._scripts and ref not in self._last:
            self._scripts[ref].extend(self._default)
        queue = self._scripts.get(ref)
        if queue:
            self._last[ref] = queue.popleft()
        status = self._last.get(ref, "pending")
        if isinstance(status, BaseException):
            raise status
        return status
