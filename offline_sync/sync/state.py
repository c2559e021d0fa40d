"""Observable sync state exposed to the UI layer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from offline_sync.domain.errors import ErrorKind
    from offline_sync.domain.models import SyncResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Syncing:
    full: bool = False


@dataclass(frozen=True)
class Success:
    result: SyncResult


@dataclass(frozen=True)
class Error:
    message: str
    error_kind: ErrorKind | None = None


SyncState = Idle | Syncing | Success | Error


class SyncStateFlow:
    """Single-writer observable holding the latest ``SyncState``.

    Readers either poll ``value``, register a callback with ``subscribe`` or iterate
    ``updates()``. Late subscribers receive the current value first.
    """

    def __init__(self, initial: SyncState | None = None) -> None:
        self._value: SyncState = initial or Idle()
        self._callbacks: list[Callable[[SyncState], Any]] = []
        self._queues: set[asyncio.Queue[SyncState]] = set()

    @property
    def value(self) -> SyncState:
        return self._value

    def emit(self, state: SyncState) -> None:
        self._value = state
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception:
                logger.exception("sync_state_callback_failed")
        for queue in list(self._queues):
            queue.put_nowait(state)

    def subscribe(self, callback: Callable[[SyncState], Any]) -> Callable[[], None]:
        self._callbacks.append(callback)
        callback(self._value)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    async def updates(self) -> AsyncIterator[SyncState]:
        queue: asyncio.Queue[SyncState] = asyncio.Queue()
        queue.put_nowait(self._value)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
