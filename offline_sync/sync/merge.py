"""Mapping remote rows onto cached rows without losing local-only state.

Local-only columns (favorites, the viewer's reaction, ownership) have no remote
counterpart. Every merge copies them from the cached row into the replacement
before the replacement is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from offline_sync.network.models import AttractionDto, ReviewDto


def attraction_row(dto: AttractionDto, synced_at: float) -> dict[str, Any]:
    return {
        "id": dto.id,
        "name": dto.name,
        "description": dto.description,
        "category": dto.category,
        "latitude": dto.latitude,
        "longitude": dto.longitude,
        "address": dto.address,
        "directions": dto.directions,
        "images": list(dto.images),
        "tags": list(dto.tags),
        "amenities": list(dto.amenities),
        "working_hours": dto.working_hours,
        "phone_number": dto.phone_number,
        "email": dto.email,
        "website": dto.website,
        "price_info": dto.price_info,
        "reviews_count": dto.reviews_count,
        "average_rating": dto.average_rating,
        "is_published": dto.is_published,
        "created_at": dto.created_at,
        "updated_at": dto.updated_at,
        "is_favorite": False,
        "last_synced_at": synced_at,
    }


def review_row(dto: ReviewDto, synced_at: float) -> dict[str, Any]:
    profile = dto.profile
    return {
        "id": dto.id,
        "attraction_id": dto.attraction_id,
        "user_id": dto.user_id,
        "rating": dto.rating,
        "title": dto.title,
        "body": dto.body,
        "status": dto.status,
        "rejection_reason": dto.rejection_reason,
        "author_name": profile.display_name if profile else None,
        "author_avatar": profile.avatar_url if profile else None,
        "likes_count": dto.likes_count or 0,
        "dislikes_count": dto.dislikes_count or 0,
        "created_at": dto.created_at,
        "updated_at": dto.updated_at,
        "user_reaction": None,
        "is_own_review": False,
        "last_synced_at": synced_at,
    }


@dataclass(frozen=True)
class CollectionBinding:
    """How remote records of one collection become cached rows.

    Attributes:
        name: Logical collection name understood by the remote API
        to_row: Converts a remote record into a full cached row
        local_fields: Columns always carried over from the cached row
        preserve_if_set: Columns carried over only when the cached row has a value
    """

    name: str
    to_row: Callable[[Any, float], dict[str, Any]]
    local_fields: tuple[str, ...]
    preserve_if_set: tuple[str, ...] = ()

    def merge(self, remote_row: dict[str, Any], existing: dict[str, Any] | None) -> dict[str, Any]:
        if existing is None:
            return remote_row
        merged = dict(remote_row)
        for name in self.local_fields:
            if name in existing:
                merged[name] = existing[name]
        for name in self.preserve_if_set:
            if existing.get(name) is not None:
                merged[name] = existing[name]
        return merged


ATTRACTIONS = CollectionBinding(
    name="attractions",
    to_row=attraction_row,
    local_fields=("is_favorite",),
)

REVIEWS = CollectionBinding(
    name="reviews",
    to_row=review_row,
    local_fields=("user_reaction", "is_own_review"),
    preserve_if_set=("rejection_reason",),
)


@dataclass
class MergePlan:
    rows: list[dict[str, Any]]
    added: int = 0
    updated: int = 0


def plan_merge(
    binding: CollectionBinding,
    records: Iterable[Any],
    existing: dict[str, dict[str, Any]],
    *,
    synced_at: float,
) -> MergePlan:
    """Turn fetched records into rows to write, counting inserts and updates.

    A record fetched twice in one page keeps only its last occurrence.
    """
    rows: dict[str, dict[str, Any]] = {}
    for record in records:
        row = binding.to_row(record, synced_at)
        rows[row["id"]] = binding.merge(row, existing.get(row["id"]))

    plan = MergePlan(rows=list(rows.values()))
    for row_id in rows:
        if row_id in existing:
            plan.updated += 1
        else:
            plan.added += 1
    return plan
