"""Optimistic like/dislike toggling with background confirmation."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

from offline_sync.core.async_utils import BackgroundTaskSet
from offline_sync.domain.errors import AuthenticationRequiredError
from offline_sync.domain.models import Reaction, ReactionState

if TYPE_CHECKING:
    from offline_sync.auth.session_manager import SessionManager
    from offline_sync.network.resilience import NetworkResilienceLayer
    from offline_sync.storage.protocols import RemoteApi, ReviewStore

logger = logging.getLogger(__name__)


class ReactionFailurePolicy(str, Enum):
    """What happens to the optimistic local state when the server rejects it.

    KEEP_OPTIMISTIC leaves it in place; the next review sync brings the server's
    counters back. ROLLBACK restores the pre-toggle state, provided nothing else
    changed the row in the meantime.
    """

    KEEP_OPTIMISTIC = "keep_optimistic"
    ROLLBACK = "rollback"


def toggle_reaction(current: ReactionState, desired: Reaction) -> ReactionState:
    """Compute the state after the viewer taps ``desired``.

    Tapping the active reaction clears it, tapping the other one switches over.
    Counters never go below zero.
    """
    if desired is Reaction.NONE:
        msg = "desired reaction must be LIKE or DISLIKE"
        raise ValueError(msg)

    likes, dislikes = current.likes_count, current.dislikes_count
    if current.reaction is desired:
        if desired is Reaction.LIKE:
            likes = max(0, likes - 1)
        else:
            dislikes = max(0, dislikes - 1)
        return ReactionState(Reaction.NONE, likes, dislikes)

    if current.reaction is Reaction.LIKE:
        likes = max(0, likes - 1)
    elif current.reaction is Reaction.DISLIKE:
        dislikes = max(0, dislikes - 1)

    if desired is Reaction.LIKE:
        likes += 1
    else:
        dislikes += 1
    return ReactionState(desired, likes, dislikes)


class ReactionReconciler:
    def __init__(
        self,
        store: ReviewStore,
        remote: RemoteApi,
        session: SessionManager,
        resilience: NetworkResilienceLayer,
        *,
        policy: ReactionFailurePolicy = ReactionFailurePolicy.KEEP_OPTIMISTIC,
    ) -> None:
        self._store = store
        self._remote = remote
        self._session = session
        self._resilience = resilience
        self.policy = policy
        self._background = BackgroundTaskSet("reactions")
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def react(self, entity_id: str, desired: Reaction) -> ReactionState:
        """Toggle the viewer's reaction on a review.

        The local row is updated before this returns; the server call runs in the
        background and is never awaited by the caller.

        Returns:
            The optimistic state now stored locally.

        Raises:
            AuthenticationRequiredError: If nobody is signed in; nothing is changed.
            LookupError: If the review is not cached.
        """
        if not self._session.is_authenticated:
            raise AuthenticationRequiredError("Sign in to react to reviews")
        if desired is Reaction.NONE:
            msg = "desired reaction must be LIKE or DISLIKE"
            raise ValueError(msg)

        async with self._entity_lock(entity_id):
            current = await self._store.async_get_reaction_state(entity_id)
            if current is None:
                msg = f"Review {entity_id} is not cached"
                raise LookupError(msg)
            optimistic = toggle_reaction(current, desired)
            await self._store.async_set_reaction_state(entity_id, optimistic)
            # Spawned while still holding the lock so submissions queue in tap order
            self._background.spawn(
                self._submit(entity_id, current, optimistic), label=entity_id
            )

        logger.debug(
            "reaction_applied_locally",
            extra={
                "entity_id": entity_id,
                "reaction": optimistic.reaction.value,
                "likes": optimistic.likes_count,
                "dislikes": optimistic.dislikes_count,
            },
        )
        return optimistic

    async def _submit(
        self, entity_id: str, previous: ReactionState, optimistic: ReactionState
    ) -> None:
        async with self._entity_lock(entity_id, submit=True):
            reaction = optimistic.reaction
            if reaction is Reaction.NONE:
                operation = lambda: self._remote.delete_reaction(entity_id)  # noqa: E731
            else:
                operation = lambda: self._remote.upsert_reaction(entity_id, reaction)  # noqa: E731

            # Upsert and delete of the viewer's own reaction row are safe to repeat
            result = await self._resilience.execute(
                operation,
                operation_name="submit_reaction",
                idempotent=False,
                request_key=f"reaction:{entity_id}:{reaction.value}",
            )
            if result.ok:
                logger.debug("reaction_confirmed", extra={"entity_id": entity_id})
                return

            logger.warning(
                "reaction_submit_failed",
                extra={
                    "entity_id": entity_id,
                    "error_kind": result.error_kind,
                    "policy": self.policy.value,
                },
            )
            if self.policy is ReactionFailurePolicy.ROLLBACK:
                restored = await self._store.async_set_reaction_state(
                    entity_id, previous, expected=optimistic
                )
                logger.info(
                    "reaction_rolled_back",
                    extra={"entity_id": entity_id, "restored": restored},
                )

    def _entity_lock(self, entity_id: str, *, submit: bool = False) -> _EntityLock:
        key = f"submit:{entity_id}" if submit else entity_id
        return _EntityLock(self, key)

    @property
    def pending(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for every background submission started so far."""
        await self._background.drain()

    async def close(self) -> None:
        await self._background.cancel_all()


class _EntityLock:
    """Per-key ``asyncio.Lock`` that is dropped once nobody uses it."""

    def __init__(self, owner: ReactionReconciler, key: str) -> None:
        self._owner = owner
        self._key = key

    async def __aenter__(self) -> None:
        owner = self._owner
        lock = owner._locks.setdefault(self._key, asyncio.Lock())
        owner._lock_users[self._key] = owner._lock_users.get(self._key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_user()
            raise

    async def __aexit__(self, *exc_info: object) -> None:
        self._owner._locks[self._key].release()
        self._release_user()

    def _release_user(self) -> None:
        owner = self._owner
        remaining = owner._lock_users[self._key] - 1
        if remaining:
            owner._lock_users[self._key] = remaining
        else:
            del owner._lock_users[self._key]
            del owner._locks[self._key]
