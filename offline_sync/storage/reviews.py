"""SQLite repository for cached reviews and the viewer's reactions."""

from __future__ import annotations

from typing import Any

from offline_sync.db.models import Review
from offline_sync.domain.models import Reaction, ReactionState
from offline_sync.storage.records import SqliteRecordRepository


def _reaction_state(row: Review) -> ReactionState:
    return ReactionState(
        reaction=Reaction.from_wire(row.user_reaction),
        likes_count=row.likes_count or 0,
        dislikes_count=row.dislikes_count or 0,
    )


class SqliteReviewRepository(SqliteRecordRepository):
    model = Review
    parent_field = "attraction_id"

    async def async_list_for_parent(self, parent_id: str) -> list[dict[str, Any]]:
        def _query() -> list[dict[str, Any]]:
            query = (
                Review.select()
                .where(Review.attraction_id == parent_id)
                .order_by(Review.created_at.desc())
            )
            return list(query.dicts())

        return await self._execute(_query, operation_name="reviews_list_for_parent", read_only=True)

    async def async_replace_for_parent(self, parent_id: str, rows: list[dict[str, Any]]) -> None:
        def _replace() -> None:
            Review.delete().where(Review.attraction_id == parent_id).execute()
            self._insert_rows(rows)

        await self._execute(_replace, operation_name="reviews_replace_for_parent", atomic=True)

    async def async_get_reaction_state(self, review_id: str) -> ReactionState | None:
        def _query() -> ReactionState | None:
            row = Review.get_or_none(Review.id == review_id)
            return _reaction_state(row) if row else None

        return await self._execute(_query, operation_name="reviews_get_reaction", read_only=True)

    async def async_set_reaction_state(
        self,
        review_id: str,
        state: ReactionState,
        *,
        expected: ReactionState | None = None,
    ) -> bool:
        def _update() -> bool:
            row = Review.get_or_none(Review.id == review_id)
            if row is None:
                return False
            if expected is not None and _reaction_state(row) != expected:
                return False
            Review.update(
                user_reaction=state.reaction.to_wire(),
                likes_count=state.likes_count,
                dislikes_count=state.dislikes_count,
            ).where(Review.id == review_id).execute()
            return True

        return await self._execute(_update, operation_name="reviews_set_reaction", atomic=True)

    async def async_mark_own_reviews(self, user_id: str | None) -> int:
        def _update() -> int:
            stale = Review.is_own_review == True  # noqa: E712
            if user_id is not None:
                stale &= Review.user_id.is_null() | (Review.user_id != user_id)
            cleared = Review.update(is_own_review=False).where(stale).execute()
            if user_id is None:
                return cleared
            marked = (
                Review.update(is_own_review=True)
                .where(Review.is_own_review == False, Review.user_id == user_id)  # noqa: E712
                .execute()
            )
            return cleared + marked

        return await self._execute(_update, operation_name="reviews_mark_own", atomic=True)
