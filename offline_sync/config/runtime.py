from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._validators import _parse_bounded_float


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str = Field(default="data/offline_sync.db", validation_alias="DB_PATH")
    operation_timeout: float = Field(default=30.0, validation_alias="DB_OPERATION_TIMEOUT")

    @field_validator("path", mode="before")
    @classmethod
    def _validate_path(cls, value: Any) -> str:
        path = str(value or "").strip()
        if not path:
            return "data/offline_sync.db"
        if "\x00" in path:
            msg = "DB path contains invalid characters"
            raise ValueError(msg)
        return path

    @field_validator("operation_timeout", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        return _parse_bounded_float(
            value, default=30.0, name="DB operation timeout", low=1.0, high=600.0
        )


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_use_loguru: bool = Field(default=True, validation_alias="LOG_USE_LOGURU")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        log_level = str(value or "INFO").upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            msg = f"Invalid log level: {value}. Must be one of {valid_levels}"
            raise ValueError(msg)
        return log_level

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Any) -> str | None:
        if value is None:
            return None
        trimmed = str(value).strip()
        return trimmed or None
