"""Database session management for the local cache.

``DatabaseSessionManager`` owns the SQLite connection and runs every blocking
peewee call on a worker thread so the event loop never waits on disk I/O.
Writes are serialized through an ``asyncio.Lock``; SQLite WAL mode lets reads
proceed concurrently with a single writer.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from offline_sync.db.models import ALL_MODELS, database_proxy

if TYPE_CHECKING:
    from collections.abc import Callable

    from offline_sync.config import DatabaseConfig

T = TypeVar("T")

DB_OPERATION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3


class RowSqliteDatabase(SqliteExtDatabase):
    """SQLite database subclass that configures the row factory for dict-like access."""

    def _connect(self) -> sqlite3.Connection:
        conn = super()._connect()
        conn.row_factory = sqlite3.Row
        return conn


@dataclass
class DatabaseSessionManager:
    """Peewee-backed database session manager.

    Attributes:
        path: Path to the SQLite database file, or ":memory:" for an in-memory cache
        operation_timeout: Default timeout for database operations in seconds
        max_retries: Maximum retries when SQLite reports the database as locked
    """

    path: str
    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _write_lock: asyncio.Lock = field(init=False)

    def __post_init__(self) -> None:
        in_memory = self.is_in_memory
        if not in_memory:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        # An in-memory database lives only as long as its connection, so it gets one
        # shared connection instead of a connection per worker thread.
        self._database = RowSqliteDatabase(
            self.path,
            pragmas={"journal_mode": "wal", "synchronous": "normal"},
            check_same_thread=False,
            thread_safe=not in_memory,
        )
        database_proxy.initialize(self._database)
        if in_memory:
            self._database.connect(reuse_if_open=True)
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, cfg: DatabaseConfig) -> DatabaseSessionManager:
        return cls(path=cfg.path, operation_timeout=cfg.operation_timeout)

    @property
    def is_in_memory(self) -> bool:
        return self.path == ":memory:"

    @property
    def database(self) -> peewee.SqliteDatabase:
        """Access the underlying Peewee database instance."""
        return self._database

    def migrate(self) -> None:
        """Create tables if they do not exist yet."""
        with self._database.bind_ctx(ALL_MODELS):
            if self.is_in_memory:
                self._database.create_tables(ALL_MODELS, safe=True)
            else:
                with self._database.connection_context():
                    self._database.create_tables(ALL_MODELS, safe=True)
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    def _call_sync(self, operation: Callable[..., T], *args: Any, atomic: bool, **kwargs: Any) -> T:
        def _run() -> T:
            if atomic:
                with self._database.atomic():
                    return operation(*args, **kwargs)
            return operation(*args, **kwargs)

        if self.is_in_memory:
            return _run()
        with self._database.connection_context():
            return _run()

    async def run(
        self,
        operation: Callable[..., T],
        *args: Any,
        read_only: bool = False,
        atomic: bool = False,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        **kwargs: Any,
    ) -> T:
        """Execute ``operation`` on a worker thread with timeout and lock retry.

        Args:
            operation: Blocking callable issuing peewee queries
            *args: Positional arguments for the operation
            read_only: Skip the write lock (never skipped for the in-memory database)
            atomic: Wrap the call in a single transaction that rolls back on error
            timeout: Timeout in seconds (default: ``operation_timeout``)
            operation_name: Name for logging purposes
            **kwargs: Keyword arguments for the operation

        Returns:
            Result of the operation

        Raises:
            TimeoutError: If the operation times out
            peewee.OperationalError: If the database stays locked after retries
            peewee.IntegrityError: If a constraint is violated
        """
        if timeout is None:
            timeout = self.operation_timeout

        retries = 0
        while True:
            try:

                async def _run_with_lock() -> T:
                    if read_only and not self.is_in_memory:
                        return await asyncio.to_thread(
                            self._call_sync, operation, *args, atomic=atomic, **kwargs
                        )
                    async with self._write_lock:
                        return await asyncio.to_thread(
                            self._call_sync, operation, *args, atomic=atomic, **kwargs
                        )

                return await asyncio.wait_for(_run_with_lock(), timeout=timeout)

            except TimeoutError:
                self._logger.exception(
                    "db_operation_timeout",
                    extra={"operation": operation_name, "timeout": timeout, "retries": retries},
                )
                raise

            except peewee.OperationalError as e:
                error_msg = str(e).lower()
                if ("locked" in error_msg or "busy" in error_msg) and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.1 * (2**retries)
                    self._logger.warning(
                        "db_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "max_retries": self.max_retries,
                            "wait_time": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue

                self._logger.exception(
                    "db_operational_error",
                    extra={"operation": operation_name, "retries": retries, "error": str(e)},
                )
                raise

            except peewee.IntegrityError as e:
                self._logger.exception(
                    "db_integrity_error",
                    extra={"operation": operation_name, "error": str(e)},
                )
                raise

    @staticmethod
    def _mask_path(path: str) -> str:
        if path == ":memory:":
            return path
        return f".../{Path(path).name}"
