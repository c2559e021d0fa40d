"""Top-level sync coordinator and the single source of the observable sync state."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from offline_sync.core.async_utils import BackgroundTaskSet
from offline_sync.core.logging_utils import generate_correlation_id
from offline_sync.domain.errors import ErrorKind
from offline_sync.domain.models import SyncResult
from offline_sync.sync.connectivity import ConnectivityStatus
from offline_sync.sync.state import Error, Idle, Success, Syncing, SyncStateFlow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from offline_sync.storage.protocols import ConnectivityProbe
    from offline_sync.sync.delta_engine import DeltaSyncEngine
    from offline_sync.sync.review_engine import ReviewSyncEngine

logger = logging.getLogger(__name__)

ATTRACTIONS = "attractions"
DEFAULT_RESET_DELAY_SEC = 3.0

ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.OFFLINE: "You're offline. Showing saved data.",
    ErrorKind.TIMEOUT: "The server took too long to respond. Try again later.",
    ErrorKind.DNS_FAILURE: "Can't reach the server. Check your connection.",
    ErrorKind.TRANSIENT_IO: "The connection was interrupted. Try again.",
    ErrorKind.SERVER_UNAVAILABLE: "The server is temporarily unavailable.",
    ErrorKind.RATE_LIMITED: "Too many requests. Try again in a moment.",
    ErrorKind.CLIENT_ERROR: "The request was rejected by the server.",
    ErrorKind.UNAUTHORIZED: "Your session has expired. Please sign in again.",
    ErrorKind.SERIALIZATION_MISMATCH: "Received unexpected data from the server.",
    ErrorKind.ALREADY_IN_PROGRESS: "Sync is already in progress.",
    ErrorKind.UNEXPECTED: "Sync failed unexpectedly.",
}


def user_message(kind: ErrorKind | None) -> str:
    return ERROR_MESSAGES.get(kind or ErrorKind.UNEXPECTED, ERROR_MESSAGES[ErrorKind.UNEXPECTED])


class SyncOrchestrator:
    """Runs connectivity check, attraction sync and review bulk sync, in that order.

    At most one run is active at a time; a second request while one is running is
    answered with ``ALREADY_IN_PROGRESS`` without touching the state. Terminal
    states (``Success``/``Error``) fall back to ``Idle`` after ``reset_delay_sec``.
    """

    def __init__(
        self,
        delta_engine: DeltaSyncEngine,
        review_engine: ReviewSyncEngine,
        connectivity: ConnectivityProbe,
        *,
        reset_delay_sec: float = DEFAULT_RESET_DELAY_SEC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._delta = delta_engine
        self._reviews = review_engine
        self._connectivity = connectivity
        self.reset_delay_sec = reset_delay_sec
        self._sleep = sleep

        self.state = SyncStateFlow()
        self._running = False
        self._reset_task: asyncio.Task[None] | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._background = BackgroundTaskSet("sync")

    @property
    def is_syncing(self) -> bool:
        return self._running

    async def sync(self) -> SyncResult:
        """Run one incremental pass and publish its outcome."""
        return await self._run(full=False)

    async def force_full_sync(self) -> SyncResult:
        """Refetch and replace both collections. Favorites survive for ids that remain."""
        return await self._run(full=True)

    def trigger_sync(self) -> SyncStateFlow:
        """Start a pass in the background and return the observable state."""
        self._background.spawn(self.sync(), label="trigger")
        return self.state

    async def _run(self, *, full: bool) -> SyncResult:
        if self._running:
            logger.info("sync_already_in_progress")
            return SyncResult.failure(ErrorKind.ALREADY_IN_PROGRESS, user_message(ErrorKind.ALREADY_IN_PROGRESS))

        self._running = True
        self._cancel_reset()
        self.state.emit(Syncing(full=full))
        cid = generate_correlation_id()
        started = time.perf_counter()
        logger.info("sync_started", extra={"correlation_id": cid, "full": full})

        try:
            result = await self._run_steps(full=full, correlation_id=cid)
        except asyncio.CancelledError:
            self.state.emit(Idle())
            raise
        except Exception as exc:
            logger.exception("sync_unexpected_error", extra={"correlation_id": cid})
            result = SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))
        finally:
            self._running = False

        if result.success:
            self.state.emit(Success(result))
        else:
            self.state.emit(Error(user_message(result.error_kind), result.error_kind))
        logger.info(
            "sync_finished",
            extra={
                "correlation_id": cid,
                "success": result.success,
                "error_kind": result.error_kind,
                "added": result.added_count,
                "updated": result.updated_count,
                "deleted": result.deleted_count,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        self._schedule_reset()
        return result

    async def _run_steps(self, *, full: bool, correlation_id: str) -> SyncResult:
        if not self._connectivity.is_online():
            return SyncResult.failure(ErrorKind.OFFLINE, user_message(ErrorKind.OFFLINE))

        if full:
            attractions = await self._delta.full_sync(ATTRACTIONS, correlation_id=correlation_id)
        else:
            attractions = await self._delta.sync(ATTRACTIONS, correlation_id=correlation_id)
        if not attractions.success:
            return attractions

        # Reviews reference attraction ids, so they only run after attractions landed
        reviews = await self._reviews.bulk_sync(replace=full, correlation_id=correlation_id)
        return attractions.combine(reviews)

    def _schedule_reset(self) -> None:
        self._cancel_reset()
        self._reset_task = asyncio.create_task(self._reset_later(), name="sync-state-reset")

    async def _reset_later(self) -> None:
        await self._sleep(self.reset_delay_sec)
        if not self._running:
            self.state.emit(Idle())

    def _cancel_reset(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            self._reset_task.cancel()
        self._reset_task = None

    # -- connectivity-driven sync --------------------------------------------------

    def start(self) -> None:
        """Sync whenever connectivity becomes available (including the first report)."""
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(
                self._watch_connectivity(), name="sync-connectivity-watch"
            )

    async def _watch_connectivity(self) -> None:
        previous: ConnectivityStatus | None = None
        async for status in self._connectivity.changes():
            if status is ConnectivityStatus.AVAILABLE and previous is not ConnectivityStatus.AVAILABLE:
                logger.info("sync_triggered_by_connectivity")
                self.trigger_sync()
            previous = status

    async def stop(self) -> None:
        tasks = [task for task in (self._watch_task, self._reset_task) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._watch_task = None
        self._reset_task = None
        await self._background.cancel_all()
