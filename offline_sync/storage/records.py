"""Generic SQLite row store shared by the attraction and review repositories."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import peewee
from peewee import fn

from offline_sync.storage.base import SqliteBaseRepository

if TYPE_CHECKING:
    from offline_sync.db.models import BaseModel
    from offline_sync.db.session import DatabaseSessionManager

# Keeps "IN (...)" lists and multi-row inserts under SQLite's variable limit.
WRITE_CHUNK_SIZE = 50


class SqliteRecordRepository(SqliteBaseRepository):
    """Row store for one peewee model; rows travel as plain dicts."""

    model: type[BaseModel]
    parent_field: str | None = None

    def __init__(self, session_manager: DatabaseSessionManager) -> None:
        super().__init__(session_manager)
        self._fields: dict[str, peewee.Field] = dict(self.model._meta.fields)

    def _full_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Project ``row`` onto the model's columns, filling absent columns with defaults."""
        result: dict[str, Any] = {}
        for name, field in self._fields.items():
            if name in row:
                result[name] = row[name]
            elif field.default is not None:
                result[name] = field.default() if callable(field.default) else field.default
            else:
                result[name] = None
        return result

    def _scope(self, query: peewee.ModelSelect, parent_id: str | None) -> peewee.ModelSelect:
        if parent_id is not None and self.parent_field is not None:
            return query.where(getattr(self.model, self.parent_field) == parent_id)
        return query

    def _insert_rows(self, rows: list[dict[str, Any]]) -> None:
        full_rows = [self._full_row(row) for row in rows]
        for batch in peewee.chunked(full_rows, WRITE_CHUNK_SIZE):
            # INSERT OR REPLACE swaps the whole row in one statement
            self.model.replace_many(batch).execute()

    async def async_get_many(self, ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return {}

        def _query() -> dict[str, dict[str, Any]]:
            found: dict[str, dict[str, Any]] = {}
            for batch in peewee.chunked(id_list, WRITE_CHUNK_SIZE):
                for row in self.model.select().where(self.model.id.in_(batch)).dicts():
                    found[row["id"]] = row
            return found

        return await self._execute(_query, operation_name="records_get_many", read_only=True)

    async def async_get(self, record_id: str) -> dict[str, Any] | None:
        return (await self.async_get_many([record_id])).get(record_id)

    async def async_upsert_many(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        await self._execute(
            self._insert_rows, rows, operation_name="records_upsert_many", atomic=True
        )

    async def async_delete_many(self, ids: Iterable[str]) -> int:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return 0

        def _delete() -> int:
            removed = 0
            for batch in peewee.chunked(id_list, WRITE_CHUNK_SIZE):
                removed += self.model.delete().where(self.model.id.in_(batch)).execute()
            return removed

        return await self._execute(_delete, operation_name="records_delete_many", atomic=True)

    async def async_delete_all(self) -> int:
        def _delete() -> int:
            return self.model.delete().execute()

        return await self._execute(_delete, operation_name="records_delete_all")

    async def async_replace_all(self, rows: list[dict[str, Any]]) -> None:
        def _replace() -> None:
            self.model.delete().execute()
            self._insert_rows(rows)

        await self._execute(_replace, operation_name="records_replace_all", atomic=True)

    async def async_count(self, parent_id: str | None = None) -> int:
        def _query() -> int:
            return self._scope(self.model.select(), parent_id).count()

        return await self._execute(_query, operation_name="records_count", read_only=True)

    async def async_list_ids(self, parent_id: str | None = None) -> set[str]:
        def _query() -> set[str]:
            query = self._scope(self.model.select(self.model.id), parent_id)
            return {row.id for row in query}

        return await self._execute(_query, operation_name="records_list_ids", read_only=True)

    async def async_max_updated_at(self, parent_id: str | None = None) -> str | None:
        def _query() -> str | None:
            query = self._scope(
                self.model.select(fn.MAX(self.model.updated_at)), parent_id
            )
            return query.scalar()

        return await self._execute(_query, operation_name="records_max_updated_at", read_only=True)
