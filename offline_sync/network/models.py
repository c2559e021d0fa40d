"""Pydantic models for the remote collection API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from offline_sync.core.time_utils import canonical_timestamp


class _WireModel(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("updated_at", "created_at", mode="before", check_fields=False)
    @classmethod
    def _normalize_timestamps(cls, value: object) -> object:
        if isinstance(value, str) and value:
            return canonical_timestamp(value)
        return value


class AttractionDto(_WireModel):
    """Attraction row as served by the remote collection."""

    id: str
    name: str
    description: str = ""
    category: str = ""
    latitude: float
    longitude: float
    address: str | None = None
    directions: str | None = None
    images: list[str] = Field(default_factory=list)
    reviews_count: int | None = None
    average_rating: float | None = None
    working_hours: str | None = None
    phone_number: str | None = None
    email: str | None = None
    website: str | None = None
    tags: list[str] = Field(default_factory=list)
    price_info: str | None = None
    amenities: list[str] = Field(default_factory=list)
    is_published: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("images", "tags", "amenities", mode="before")
    @classmethod
    def _none_to_list(cls, value: object) -> object:
        return [] if value is None else value


class ProfileDto(BaseModel):
    model_config = {"extra": "ignore"}

    display_name: str | None = None
    avatar_url: str | None = None


class ReviewDto(_WireModel):
    """Review row joined with its author's public profile."""

    id: str
    attraction_id: str
    user_id: str | None = None
    rating: int
    title: str | None = None
    body: str | None = None
    status: str | None = None
    rejection_reason: str | None = None
    likes_count: int | None = 0
    dislikes_count: int | None = 0
    profile: ProfileDto | None = Field(default=None, alias="profiles")
    created_at: str | None = None
    updated_at: str | None = None


class TombstoneDto(BaseModel):
    """Row of the ``sync_metadata`` feed recording a deleted or unpublished entity."""

    model_config = {"extra": "ignore"}

    entity_id: str
    entity_type: str | None = None
    action: str | None = None  # DELETE | UNPUBLISH
    deleted_at: str | None = None


class ReactionRequest(BaseModel):
    review_id: str
    user_id: str
    reaction: str  # "like" | "dislike"


class AuthUserDto(BaseModel):
    model_config = {"extra": "ignore"}

    id: str
    email: str | None = None
    email_confirmed_at: str | None = None


class AuthTokenResponse(BaseModel):
    """Body returned by sign-in, sign-up and refresh-token endpoints."""

    model_config = {"extra": "ignore"}

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    token_type: str | None = None
    expires_in: int | None = None
    expires_at: int | None = None
    user: AuthUserDto | None = None
