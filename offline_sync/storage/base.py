"""Shared plumbing for the SQLite-backed local stores."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from offline_sync.db.session import DatabaseSessionManager


class SqliteBaseRepository:
    """Routes every store query through the session manager's worker-thread executor."""

    def __init__(self, session_manager: DatabaseSessionManager) -> None:
        self._session = session_manager

    async def _execute(
        self,
        operation: Any,
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "repository_operation",
        read_only: bool = False,
        atomic: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Run a blocking peewee callable off the event loop with lock retry."""
        return await self._session.run(
            operation,
            *args,
            timeout=timeout,
            operation_name=operation_name,
            read_only=read_only,
            atomic=atomic,
            **kwargs,
        )
