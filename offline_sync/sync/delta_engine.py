"""Cursor-based delta synchronization for top-level collections.

One pass reads the collection's cursor, fetches records changed after it (or the
whole collection when there is no cursor), merges them into the local store in
fixed-size batches, applies tombstones and only then advances the cursor. A pass
that fails leaves the cursor where it was, so the next pass re-fetches the same
window.

Deletions have their own cursor (``tombstones:<collection>``). It moves only when
the tombstone fetch succeeded, so a pass whose tombstone call failed still applies
its records while the deletions of that window are asked for again next time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from offline_sync.core.logging_utils import generate_correlation_id
from offline_sync.core.time_utils import epoch_seconds, to_cursor, utc_now
from offline_sync.domain.errors import ErrorKind
from offline_sync.domain.models import SyncResult
from offline_sync.sync.merge import plan_merge

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from offline_sync.network.resilience import NetworkResilienceLayer
    from offline_sync.storage.protocols import (
        ConnectivityProbe,
        KeyValueStore,
        RecordStore,
        RemoteApi,
    )
    from offline_sync.sync.merge import CollectionBinding

logger = logging.getLogger(__name__)

CURSOR_KEY_PREFIX = "cursor:"
TOMBSTONE_KEY_PREFIX = "tombstones:"
DEFAULT_BATCH_SIZE = 50


def cursor_key(collection: str) -> str:
    return f"{CURSOR_KEY_PREFIX}{collection}"


def tombstone_key(collection: str) -> str:
    """Key of the deletion cursor, which only moves after tombstones were applied."""
    return f"{TOMBSTONE_KEY_PREFIX}{collection}"


@dataclass(frozen=True)
class SyncedCollection:
    binding: CollectionBinding
    store: RecordStore


@dataclass
class _Counts:
    added: int = 0
    updated: int = 0
    deleted: int = 0


async def apply_records(
    target: SyncedCollection,
    records: list[Any],
    *,
    batch_size: int,
    synced_at: float,
    finalize: Callable[[list[dict[str, Any]]], list[dict[str, Any]]] | None = None,
) -> tuple[int, int]:
    """Merge ``records`` into ``target.store`` batch by batch.

    ``finalize`` may adjust the merged rows of each batch before they are written.

    Returns:
        ``(added, updated)`` counts.
    """
    added = updated = 0
    for start in range(0, len(records), batch_size):
        batch = records[start : start + batch_size]
        existing = await target.store.async_get_many(record.id for record in batch)
        plan = plan_merge(target.binding, batch, existing, synced_at=synced_at)
        rows = finalize(plan.rows) if finalize else plan.rows
        await target.store.async_upsert_many(rows)
        added += plan.added
        updated += plan.updated
    return added, updated


async def fetch_tombstones(
    remote: RemoteApi,
    resilience: NetworkResilienceLayer,
    collection: str,
    since: str,
    fetched: list[Any],
    *,
    correlation_id: str,
) -> list[str] | None:
    """Ids deleted remotely after ``since``, or None when they could not be fetched.

    Ids present in ``fetched`` were re-created after their deletion and are kept.
    """
    result = await resilience.execute(
        lambda: remote.list_tombstones_since(collection, since),
        operation_name=f"list_tombstones_{collection}",
        correlation_id=correlation_id,
    )
    if not result.ok:
        logger.warning(
            "tombstone_fetch_failed",
            extra={
                "correlation_id": correlation_id,
                "collection": collection,
                "cursor": since,
                "error_kind": result.error_kind,
            },
        )
        return None
    alive = {record.id for record in fetched}
    return [record_id for record_id in result.value or [] if record_id not in alive]


class DeltaSyncEngine:
    def __init__(
        self,
        remote: RemoteApi,
        kv_store: KeyValueStore,
        connectivity: ConnectivityProbe,
        resilience: NetworkResilienceLayer,
        collections: Mapping[str, SyncedCollection],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        tombstones_enabled: bool = True,
    ) -> None:
        self._remote = remote
        self._kv = kv_store
        self._connectivity = connectivity
        self._resilience = resilience
        self._collections = dict(collections)
        self.batch_size = batch_size
        self.tombstones_enabled = tombstones_enabled

    def _target(self, collection: str) -> SyncedCollection:
        try:
            return self._collections[collection]
        except KeyError:
            msg = f"Collection is not registered for delta sync: {collection}"
            raise ValueError(msg) from None

    async def get_cursor(self, collection: str) -> str | None:
        return await self._kv.async_get(cursor_key(collection))

    async def get_tombstone_cursor(self, collection: str) -> str | None:
        return await self._kv.async_get(tombstone_key(collection))

    async def sync(self, collection: str, *, correlation_id: str | None = None) -> SyncResult:
        """Run one delta pass over ``collection``.

        Never raises for remote or storage failures; they are reported through the
        returned ``SyncResult``.
        """
        target = self._target(collection)
        cid = correlation_id or generate_correlation_id()
        started = time.perf_counter()

        try:
            cursor = await self.get_cursor(collection)
            tombstone_cursor = await self.get_tombstone_cursor(collection)
        except Exception as exc:
            logger.exception(
                "delta_sync_cursor_read_failed",
                extra={"correlation_id": cid, "collection": collection},
            )
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        if not self._connectivity.is_online():
            logger.info("delta_sync_offline", extra={"correlation_id": cid, "collection": collection})
            return SyncResult.failure(ErrorKind.OFFLINE, "Device is offline")

        # Taken before the fetch so rows written during the fetch are picked up next time
        next_cursor = to_cursor(utc_now())

        if cursor is None:
            fetched = await self._resilience.execute(
                lambda: self._remote.list_all(collection),
                operation_name=f"list_all_{collection}",
                correlation_id=cid,
            )
        else:
            fetched = await self._resilience.execute(
                lambda: self._remote.list_since(collection, cursor),
                operation_name=f"list_since_{collection}",
                correlation_id=cid,
            )
        if not fetched.ok:
            return self._failed(collection, cid, fetched.error_kind, fetched.error)

        records = fetched.value or []
        deleted_since = tombstone_cursor or cursor
        if cursor is None:
            # A full fetch covers every deletion up to now
            tombstones: list[str] | None = []
        elif not self.tombstones_enabled:
            tombstones = None
        else:
            tombstones = await fetch_tombstones(
                self._remote,
                self._resilience,
                collection,
                deleted_since,
                records,
                correlation_id=cid,
            )

        counts = _Counts()
        try:
            counts.added, counts.updated = await apply_records(
                target,
                records,
                batch_size=self.batch_size,
                synced_at=epoch_seconds(),
            )
            if tombstones:
                counts.deleted = await target.store.async_delete_many(tombstones)
            if tombstones is not None:
                await self._kv.async_set(tombstone_key(collection), next_cursor)
            elif self.tombstones_enabled and deleted_since:
                # Pin the unread deletion window before the record cursor moves past it
                await self._kv.async_set(tombstone_key(collection), deleted_since)
            await self._kv.async_set(cursor_key(collection), next_cursor)
        except Exception as exc:
            logger.exception(
                "delta_sync_apply_failed",
                extra={"correlation_id": cid, "collection": collection},
            )
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        logger.info(
            "delta_sync_completed",
            extra={
                "correlation_id": cid,
                "collection": collection,
                "cursor": next_cursor,
                "added": counts.added,
                "updated": counts.updated,
                "deleted": counts.deleted,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return SyncResult(
            success=True,
            added_count=counts.added,
            updated_count=counts.updated,
            deleted_count=counts.deleted,
        )

    async def full_sync(self, collection: str, *, correlation_id: str | None = None) -> SyncResult:
        """Replace the cached collection with the remote one.

        Local-only fields survive for ids present on both sides; ids missing remotely
        are dropped and counted as deleted.
        """
        target = self._target(collection)
        cid = correlation_id or generate_correlation_id()

        if not self._connectivity.is_online():
            return SyncResult.failure(ErrorKind.OFFLINE, "Device is offline")

        next_cursor = to_cursor(utc_now())
        fetched = await self._resilience.execute(
            lambda: self._remote.list_all(collection),
            operation_name=f"list_all_{collection}",
            correlation_id=cid,
        )
        if not fetched.ok:
            return self._failed(collection, cid, fetched.error_kind, fetched.error)

        records = fetched.value or []
        try:
            old_ids = await target.store.async_list_ids()
            existing = await target.store.async_get_many(record.id for record in records)
            plan = plan_merge(target.binding, records, existing, synced_at=epoch_seconds())
            await target.store.async_replace_all(plan.rows)
            await self._kv.async_set(tombstone_key(collection), next_cursor)
            await self._kv.async_set(cursor_key(collection), next_cursor)
        except Exception as exc:
            logger.exception(
                "full_sync_apply_failed",
                extra={"correlation_id": cid, "collection": collection},
            )
            return SyncResult.failure(ErrorKind.UNEXPECTED, str(exc))

        new_ids = {row["id"] for row in plan.rows}
        deleted = len(old_ids - new_ids)
        logger.info(
            "full_sync_completed",
            extra={
                "correlation_id": cid,
                "collection": collection,
                "added": plan.added,
                "updated": plan.updated,
                "deleted": deleted,
            },
        )
        return SyncResult(
            success=True,
            added_count=plan.added,
            updated_count=plan.updated,
            deleted_count=deleted,
        )

    @staticmethod
    def _failed(
        collection: str,
        correlation_id: str,
        kind: ErrorKind | None,
        error: BaseException | None,
    ) -> SyncResult:
        kind = kind or ErrorKind.UNEXPECTED
        logger.warning(
            "delta_sync_failed",
            extra={"correlation_id": correlation_id, "collection": collection, "error_kind": kind},
        )
        return SyncResult.failure(kind, str(error) if error else None)
