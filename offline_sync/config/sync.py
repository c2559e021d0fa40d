from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._validators import _parse_bounded_float, _parse_bounded_int


class SessionConfig(BaseModel):
    """Access-token lifecycle settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    refresh_margin_sec: int = Field(default=60, validation_alias="SESSION_REFRESH_MARGIN_SEC")
    default_ttl_sec: int = Field(default=3600, validation_alias="SESSION_DEFAULT_TTL_SEC")

    @field_validator("refresh_margin_sec", mode="before")
    @classmethod
    def _validate_margin(cls, value: Any) -> int:
        return _parse_bounded_int(
            value, default=60, name="Session refresh margin", low=0, high=3600
        )

    @field_validator("default_ttl_sec", mode="before")
    @classmethod
    def _validate_ttl(cls, value: Any) -> int:
        return _parse_bounded_int(
            value, default=3600, name="Session default TTL", low=60, high=7 * 24 * 3600
        )


class SyncConfig(BaseModel):
    """Tuning knobs for the delta/review sync engines and the orchestrator."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    batch_size: int = Field(default=50, validation_alias="SYNC_BATCH_SIZE")
    review_stale_threshold_sec: int = Field(
        default=300, validation_alias="REVIEW_STALE_THRESHOLD_SEC"
    )
    state_reset_delay_sec: float = Field(default=3.0, validation_alias="SYNC_STATE_RESET_DELAY_SEC")
    reaction_rollback_on_failure: bool = Field(
        default=False, validation_alias="REACTION_ROLLBACK_ON_FAILURE"
    )
    tombstones_enabled: bool = Field(default=True, validation_alias="SYNC_TOMBSTONES_ENABLED")

    @field_validator("batch_size", mode="before")
    @classmethod
    def _validate_batch_size(cls, value: Any) -> int:
        return _parse_bounded_int(value, default=50, name="Sync batch size", low=1, high=1000)

    @field_validator("review_stale_threshold_sec", mode="before")
    @classmethod
    def _validate_stale_threshold(cls, value: Any) -> int:
        return _parse_bounded_int(
            value, default=300, name="Review stale threshold", low=0, high=24 * 3600
        )

    @field_validator("state_reset_delay_sec", mode="before")
    @classmethod
    def _validate_reset_delay(cls, value: Any) -> float:
        return _parse_bounded_float(
            value, default=3.0, name="Sync state reset delay", low=0.0, high=60.0
        )
