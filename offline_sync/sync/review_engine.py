"""Synchronization of reviews, a collection that depends on attractions.

Two modes:

* bulk: after a successful attraction pass. An empty cache is filled wholesale;
  otherwise a global delta runs from ``MAX(updated_at)`` of the cached reviews, so
  no separately persisted record cursor can get lost or drift. Deletions are read
  from ``tombstones:reviews``, which moves only after a successful tombstone fetch.
* per-parent: when the UI opens one attraction. A parent refreshed within the
  staleness window is served from cache; otherwise only that parent's reviews
  changed since its own ``MAX(updated_at)`` are fetched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from offline_sync.core.logging_utils import generate_correlation_id
from offline_sync.core.time_utils import epoch_seconds, to_cursor, utc_now
from offline_sync.domain.errors import ErrorKind
from offline_sync.domain.models import SyncResult
from offline_sync.sync.delta_engine import (
    SyncedCollection,
    apply_records,
    fetch_tombstones,
    tombstone_key,
)
from offline_sync.sync.merge import REVIEWS, plan_merge

if TYPE_CHECKING:
    from collections.abc import Callable

    from offline_sync.network.resilience import CallResult, NetworkResilienceLayer
    from offline_sync.storage.protocols import (
        ConnectivityProbe,
        KeyValueStore,
        RemoteApi,
        ReviewStore,
    )

logger = logging.getLogger(__name__)

COLLECTION = "reviews"
PARENT_FRESHNESS_PREFIX = "reviews:"
DEFAULT_STALE_THRESHOLD_SEC = 300


def parent_freshness_key(parent_id: str) -> str:
    return f"{PARENT_FRESHNESS_PREFIX}{parent_id}"


class ReviewSyncEngine:
    def __init__(
        self,
        remote: RemoteApi,
        store: ReviewStore,
        kv_store: KeyValueStore,
        connectivity: ConnectivityProbe,
        resilience: NetworkResilienceLayer,
        *,
        stale_threshold_sec: float = DEFAULT_STALE_THRESHOLD_SEC,
        batch_size: int = 50,
        tombstones_enabled: bool = True,
        user_id_provider: Callable[[], str | None] | None = None,
        clock: Callable[[], float] = epoch_seconds,
    ) -> None:
        self._remote = remote
        self._store = store
        self._kv = kv_store
        self._connectivity = connectivity
        self._resilience = resilience
        self.stale_threshold_sec = stale_threshold_sec
        self.batch_size = batch_size
        self.tombstones_enabled = tombstones_enabled
        self._user_id_provider = user_id_provider
        self._clock = clock
        self._target = SyncedCollection(binding=REVIEWS, store=store)

        self._inflight: dict[str, asyncio.Task[SyncResult]] = {}
        self._current_parent: str | None = None

    # -- bulk ----------------------------------------------------------------------

    async def bulk_sync(
        self, *, replace: bool = False, correlation_id: str | None = None
    ) -> SyncResult:
        """Bring the whole review cache up to date.

        Args:
            replace: Refetch and replace the cache even if it is not empty
            correlation_id: Correlation id of the surrounding orchestrator run
        """
        cid = correlation_id or generate_correlation_id()
        if not self._connectivity.is_online():
            return SyncResult.failure(ErrorKind.OFFLINE, "Device is offline")

        try:
            cached = await self._store.async_count()
            since = None if (replace or cached == 0) else await self._store.async_max_updated_at()
            deleted_since = await self._kv.async_get(tombstone_key(COLLECTION))
        except Exception as exc:
            logger.exception("review_bulk_read_failed", extra={"correlation_id": cid})
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        if since is None:
            return await self._replace_all(cid)
        return await self._global_delta(since, deleted_since or since, cid)

    async def _replace_all(self, cid: str) -> SyncResult:
        next_deleted_since = to_cursor(utc_now())
        fetched = await self._resilience.execute(
            lambda: self._remote.list_all(COLLECTION),
            operation_name="list_all_reviews",
            correlation_id=cid,
        )
        if not fetched.ok:
            return self._failed(fetched, cid)

        records = fetched.value or []
        try:
            old_ids = await self._store.async_list_ids()
            existing = await self._store.async_get_many(record.id for record in records)
            plan = plan_merge(REVIEWS, records, existing, synced_at=self._clock())
            rows = self._mark_own(plan.rows)
            await self._store.async_replace_all(rows)
            await self._kv.async_set(tombstone_key(COLLECTION), next_deleted_since)
        except Exception as exc:
            logger.exception("review_bulk_apply_failed", extra={"correlation_id": cid})
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        deleted = len(old_ids - {row["id"] for row in rows})
        logger.info(
            "review_bulk_replaced",
            extra={"correlation_id": cid, "added": plan.added, "updated": plan.updated, "deleted": deleted},
        )
        return SyncResult(
            success=True,
            added_count=plan.added,
            updated_count=plan.updated,
            deleted_count=deleted,
        )

    async def _global_delta(self, since: str, deleted_since: str, cid: str) -> SyncResult:
        next_deleted_since = to_cursor(utc_now())
        fetched = await self._resilience.execute(
            lambda: self._remote.list_since(COLLECTION, since),
            operation_name="list_since_reviews",
            correlation_id=cid,
        )
        if not fetched.ok:
            return self._failed(fetched, cid)

        records = fetched.value or []
        tombstones: list[str] | None = None
        if self.tombstones_enabled:
            tombstones = await fetch_tombstones(
                self._remote,
                self._resilience,
                COLLECTION,
                deleted_since,
                records,
                correlation_id=cid,
            )

        try:
            added, updated = await self._apply(records)
            deleted = await self._store.async_delete_many(tombstones) if tombstones else 0
            if tombstones is not None:
                await self._kv.async_set(tombstone_key(COLLECTION), next_deleted_since)
            elif self.tombstones_enabled:
                # MAX(updated_at) moves on with the applied rows; keep the unread window
                await self._kv.async_set(tombstone_key(COLLECTION), deleted_since)
        except Exception as exc:
            logger.exception("review_bulk_apply_failed", extra={"correlation_id": cid})
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        logger.info(
            "review_bulk_delta_completed",
            extra={
                "correlation_id": cid,
                "cursor": since,
                "added": added,
                "updated": updated,
                "deleted": deleted,
            },
        )
        return SyncResult(
            success=True, added_count=added, updated_count=updated, deleted_count=deleted
        )

    # -- per parent ----------------------------------------------------------------

    async def is_fresh(self, parent_id: str) -> bool:
        raw = await self._kv.async_get(parent_freshness_key(parent_id))
        if not raw:
            return False
        try:
            refreshed_at = float(raw)
        except ValueError:
            return False
        return self._clock() - refreshed_at < self.stale_threshold_sec

    async def delta_sync_for_parent(self, parent_id: str, *, force: bool = False) -> SyncResult:
        """Refresh the reviews of one attraction, honouring the staleness window.

        Returns:
            ``SyncResult`` with ``skipped=True`` when the cache was fresh enough.
        """
        cid = generate_correlation_id()
        try:
            if not force and await self.is_fresh(parent_id):
                logger.debug("review_parent_cache_fresh", extra={"parent_id": parent_id})
                return SyncResult(success=True, skipped=True)
            if not self._connectivity.is_online():
                return SyncResult.failure(ErrorKind.OFFLINE, "Device is offline")
            since = None if force else await self._store.async_max_updated_at(parent_id)
        except Exception as exc:
            logger.exception(
                "review_parent_read_failed",
                extra={"correlation_id": cid, "parent_id": parent_id},
            )
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        fetched = await self._resilience.execute(
            lambda: self._remote.list_for_parent(COLLECTION, parent_id, since),
            operation_name="list_reviews_for_parent",
            correlation_id=cid,
        )
        if not fetched.ok:
            return self._failed(fetched, cid, parent_id=parent_id)

        records = fetched.value or []
        deleted = 0
        try:
            if since is None:
                old_ids = await self._store.async_list_ids(parent_id)
                existing = await self._store.async_get_many(record.id for record in records)
                plan = plan_merge(REVIEWS, records, existing, synced_at=self._clock())
                rows = self._mark_own(plan.rows)
                await self._store.async_replace_for_parent(parent_id, rows)
                added, updated = plan.added, plan.updated
                deleted = len(old_ids - {row["id"] for row in rows})
            else:
                added, updated = await self._apply(records)
            await self._kv.async_set(parent_freshness_key(parent_id), repr(self._clock()))
        except Exception as exc:
            logger.exception(
                "review_parent_apply_failed",
                extra={"correlation_id": cid, "parent_id": parent_id},
            )
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        logger.info(
            "review_parent_synced",
            extra={
                "correlation_id": cid,
                "parent_id": parent_id,
                "cursor": since,
                "added": added,
                "updated": updated,
                "deleted": deleted,
            },
        )
        return SyncResult(
            success=True, added_count=added, updated_count=updated, deleted_count=deleted
        )

    async def force_refresh_for_parent(self, parent_id: str) -> SyncResult:
        """Refetch every review of ``parent_id``, ignoring the staleness window."""
        return await self.delta_sync_for_parent(parent_id, force=True)

    def open_parent(self, parent_id: str) -> asyncio.Task[SyncResult]:
        """Start (or join) the per-parent sync for the attraction the UI just opened.

        The sync of the previously opened attraction is cancelled. Cancellation lands
        between whole-row writes, so the cache never holds a half-merged review.
        """
        previous = self._current_parent
        if previous is not None and previous != parent_id:
            stale = self._inflight.get(previous)
            if stale is not None and not stale.done():
                logger.debug("review_parent_sync_cancelled", extra={"parent_id": previous})
                stale.cancel()
        self._current_parent = parent_id

        running = self._inflight.get(parent_id)
        if running is not None and not running.done():
            return running

        task = asyncio.create_task(
            self.delta_sync_for_parent(parent_id), name=f"reviews:{parent_id}"
        )
        self._inflight[parent_id] = task

        def _forget(done: asyncio.Task[SyncResult]) -> None:
            if self._inflight.get(parent_id) is done:
                del self._inflight[parent_id]

        task.add_done_callback(_forget)
        return task

    async def close(self) -> None:
        tasks = [task for task in self._inflight.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._current_parent = None

    # -- helpers -------------------------------------------------------------------

    async def _apply(self, records: list[Any]) -> tuple[int, int]:
        return await apply_records(
            self._target,
            records,
            batch_size=self.batch_size,
            synced_at=self._clock(),
            finalize=self._mark_own,
        )

    def _mark_own(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # Derived from the signed-in user on every write, never carried forward
        user_id = self._user_id_provider() if self._user_id_provider else None
        for row in rows:
            row["is_own_review"] = bool(user_id) and row.get("user_id") == user_id
        return rows

    @staticmethod
    def _failed(
        fetched: CallResult[Any], cid: str, *, parent_id: str | None = None
    ) -> SyncResult:
        kind = fetched.error_kind or ErrorKind.UNEXPECTED
        logger.warning(
            "review_sync_failed",
            extra={"correlation_id": cid, "parent_id": parent_id, "error_kind": kind},
        )
        return SyncResult.failure(kind, str(fetched.error) if fetched.error else None)
