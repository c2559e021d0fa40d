from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ._validators import _parse_bounded_float


class RemoteConfig(BaseModel):
    """Remote collection API endpoint and transport timeouts.

    Timeouts are generous on purpose: the client runs over high-latency cellular links
    where a 40 KB JSON page can take tens of seconds to arrive.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_url: str = Field(default="http://localhost:54321", validation_alias="SYNC_API_URL")
    anon_key: str = Field(default="", validation_alias="SYNC_ANON_KEY")
    connect_timeout_sec: float = Field(default=15.0, validation_alias="SYNC_CONNECT_TIMEOUT_SEC")
    read_timeout_sec: float = Field(default=60.0, validation_alias="SYNC_READ_TIMEOUT_SEC")
    write_timeout_sec: float = Field(default=15.0, validation_alias="SYNC_WRITE_TIMEOUT_SEC")
    total_timeout_sec: float = Field(default=90.0, validation_alias="SYNC_TOTAL_TIMEOUT_SEC")

    @field_validator("api_url", mode="before")
    @classmethod
    def _validate_api_url(cls, value: Any) -> str:
        url = str(value or "").strip()
        if not url:
            return "http://localhost:54321"
        if not url.startswith(("http://", "https://")):
            msg = f"SYNC_API_URL must be an http(s) URL, got: {url}"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator(
        "connect_timeout_sec",
        "read_timeout_sec",
        "write_timeout_sec",
        "total_timeout_sec",
        mode="before",
    )
    @classmethod
    def _validate_timeouts(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        return _parse_bounded_float(
            value, default=default, name=info.field_name.replace("_", " "), low=1.0, high=600.0
        )

    def httpx_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.read_timeout_sec,
            connect=self.connect_timeout_sec,
            read=self.read_timeout_sec,
            write=self.write_timeout_sec,
        )


class RetryConfig(BaseModel):
    """Backoff parameters for the network resilience layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_retries: int = Field(default=3, validation_alias="SYNC_RETRY_MAX_RETRIES")
    base_delay_sec: float = Field(default=1.0, validation_alias="SYNC_RETRY_BASE_DELAY_SEC")
    max_delay_sec: float = Field(default=10.0, validation_alias="SYNC_RETRY_MAX_DELAY_SEC")
    jitter: float = Field(default=0.1, validation_alias="SYNC_RETRY_JITTER")

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_max_retries(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 3))
        except ValueError as exc:
            msg = "Retry max retries must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 10:
            msg = "Retry max retries must be between 0 and 10"
            raise ValueError(msg)
        return parsed

    @field_validator("base_delay_sec", "max_delay_sec", mode="before")
    @classmethod
    def _validate_delays(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        return _parse_bounded_float(
            value, default=default, name=info.field_name.replace("_", " "), low=0.0, high=300.0
        )

    @field_validator("jitter", mode="before")
    @classmethod
    def _validate_jitter(cls, value: Any) -> float:
        return _parse_bounded_float(value, default=0.1, name="Retry jitter", low=0.0, high=1.0)
