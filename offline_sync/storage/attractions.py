"""SQLite repository for cached attractions."""

from __future__ import annotations

from typing import Any

from offline_sync.db.models import Attraction
from offline_sync.storage.records import SqliteRecordRepository


class SqliteAttractionRepository(SqliteRecordRepository):
    model = Attraction

    async def async_list(self, *, favorites_only: bool = False) -> list[dict[str, Any]]:
        """List cached attractions ordered by name (the reading path of the UI)."""

        def _query() -> list[dict[str, Any]]:
            query = Attraction.select()
            if favorites_only:
                query = query.where(Attraction.is_favorite == True)  # noqa: E712
            return list(query.order_by(Attraction.name).dicts())

        return await self._execute(_query, operation_name="attractions_list", read_only=True)

    async def async_set_favorite(self, attraction_id: str, is_favorite: bool) -> bool:
        """Toggle the local-only favorite flag.

        Returns:
            True if the attraction exists and was updated.
        """

        def _update() -> bool:
            updated = (
                Attraction.update(is_favorite=is_favorite)
                .where(Attraction.id == attraction_id)
                .execute()
            )
            return updated > 0

        return await self._execute(_update, operation_name="attractions_set_favorite")
