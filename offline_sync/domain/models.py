"""Value objects for sync results and reactions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict

from offline_sync.domain.errors import ErrorKind


class Reaction(str, Enum):
    NONE = "none"
    LIKE = "like"
    DISLIKE = "dislike"

    @classmethod
    def from_wire(cls, value: str | None) -> Reaction:
        """Map the stored/wire representation (``"like"``/``"dislike"``/``None``) to a member."""
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.NONE

    def to_wire(self) -> str | None:
        return None if self is Reaction.NONE else self.value


@dataclass(frozen=True)
class ReactionState:
    """The viewer's reaction to one review plus the displayed aggregate counters."""

    reaction: Reaction = Reaction.NONE
    likes_count: int = 0
    dislikes_count: int = 0


class SyncResult(BaseModel):
    """Outcome of one sync call. Returned, never raised."""

    model_config = ConfigDict(frozen=True)

    success: bool
    added_count: int = 0
    updated_count: int = 0
    deleted_count: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    skipped: bool = False

    @property
    def total_changes(self) -> int:
        return self.added_count + self.updated_count + self.deleted_count

    @property
    def has_changes(self) -> bool:
        return self.total_changes > 0

    @classmethod
    def failure(cls, kind: ErrorKind, message: str | None = None) -> Self:
        return cls(success=False, error_kind=kind, error_message=message)

    def combine(self, other: SyncResult) -> SyncResult:
        """Aggregate counters of two sequential steps; the first failure wins."""
        first_failure = self if not self.success else other if not other.success else None
        return SyncResult(
            success=self.success and other.success,
            added_count=self.added_count + other.added_count,
            updated_count=self.updated_count + other.updated_count,
            deleted_count=self.deleted_count + other.deleted_count,
            error_kind=first_failure.error_kind if first_failure else None,
            error_message=first_failure.error_message if first_failure else None,
        )
