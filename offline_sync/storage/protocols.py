"""Protocol definitions for the collaborators of the sync core.

The engines depend only on these contracts, so the SQLite adapters, the httpx client
and the in-memory test fakes are interchangeable.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from offline_sync.domain.models import Reaction, ReactionState
    from offline_sync.network.models import AuthTokenResponse
    from offline_sync.sync.connectivity import ConnectivityStatus


class KeyValueStore(Protocol):
    """Durable string store for cursors and session fields. Each call is atomic per key."""

    async def async_get(self, key: str) -> str | None: ...

    async def async_set(self, key: str, value: str) -> None: ...

    async def async_delete(self, key: str) -> None: ...


class RecordStore(Protocol):
    """Row store for cached records of one collection.

    Rows are plain dicts keyed by column name. ``parent_id`` scopes a query to the
    records of one parent for dependent collections and is ignored otherwise.
    """

    async def async_get_many(self, ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Get existing rows by id.

        Returns:
            Mapping of id to row for the ids that exist.

        """
        ...

    async def async_upsert_many(self, rows: list[dict[str, Any]]) -> None:
        """Insert or wholly replace each row. One row is never partially written."""
        ...

    async def async_delete_many(self, ids: Iterable[str]) -> int:
        """Delete rows by id.

        Returns:
            Number of rows actually removed; unknown ids are ignored.

        """
        ...

    async def async_delete_all(self) -> int: ...

    async def async_replace_all(self, rows: list[dict[str, Any]]) -> None:
        """Atomically swap the whole collection for ``rows``."""
        ...

    async def async_count(self, parent_id: str | None = None) -> int: ...

    async def async_list_ids(self, parent_id: str | None = None) -> set[str]: ...

    async def async_max_updated_at(self, parent_id: str | None = None) -> str | None:
        """Return the greatest cached ``updated_at`` (optionally for one parent)."""
        ...


class ReviewStore(RecordStore, Protocol):
    """Row store for reviews: parent-scoped replace plus the viewer's reaction state."""

    async def async_replace_for_parent(self, parent_id: str, rows: list[dict[str, Any]]) -> None:
        """Atomically swap every cached review of ``parent_id`` for ``rows``."""
        ...

    async def async_get_reaction_state(self, review_id: str) -> ReactionState | None: ...

    async def async_set_reaction_state(
        self,
        review_id: str,
        state: ReactionState,
        *,
        expected: ReactionState | None = None,
    ) -> bool:
        """Write the reaction and counters of one review.

        When ``expected`` is given the write happens only if the row still holds that
        state (compare-and-set).

        Returns:
            True if the row was written.

        """
        ...

    async def async_mark_own_reviews(self, user_id: str | None) -> int:
        """Flag exactly the reviews written by ``user_id`` as own. Returns rows changed."""
        ...


class RemoteApi(Protocol):
    """Remote surface consumed by the engines and the reaction reconciler."""

    async def list_all(self, collection: str) -> list[Any]: ...

    async def list_since(self, collection: str, cursor: str) -> list[Any]: ...

    async def list_tombstones_since(self, collection: str, cursor: str) -> list[str]: ...

    async def list_for_parent(
        self, collection: str, parent_id: str, since: str | None = None
    ) -> list[Any]: ...

    async def upsert_reaction(self, entity_id: str, reaction: Reaction) -> None: ...

    async def delete_reaction(self, entity_id: str) -> None: ...


class AuthApi(Protocol):
    """Token endpoints used by the session manager."""

    async def refresh_token(self, refresh_token: str) -> AuthTokenResponse: ...

    async def sign_out(self, access_token: str) -> None: ...


class ConnectivityProbe(Protocol):
    """Platform connectivity signal: a current value plus a push stream of changes."""

    def is_online(self) -> bool: ...

    def changes(self) -> AsyncIterator[ConnectivityStatus]: ...
