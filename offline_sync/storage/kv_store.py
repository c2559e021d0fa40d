"""SQLite key-value store for sync cursors and session fields."""

from __future__ import annotations

from offline_sync.db.models import KeyValue
from offline_sync.storage.base import SqliteBaseRepository


class SqliteKeyValueStore(SqliteBaseRepository):
    async def async_get(self, key: str) -> str | None:
        def _query() -> str | None:
            row = KeyValue.get_or_none(KeyValue.key == key)
            return row.value if row else None

        return await self._execute(_query, operation_name="kv_get", read_only=True)

    async def async_set(self, key: str, value: str) -> None:
        def _upsert() -> None:
            KeyValue.replace(key=key, value=value).execute()

        await self._execute(_upsert, operation_name="kv_set")

    async def async_delete(self, key: str) -> None:
        def _delete() -> None:
            KeyValue.delete().where(KeyValue.key == key).execute()

        await self._execute(_delete, operation_name="kv_delete")
