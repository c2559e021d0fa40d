"""Bounded retry with exponential backoff around single remote calls.

Transient kinds (timeouts, DNS, I/O, 5xx, 429) are retried; client errors,
``Unauthorized`` and serialization mismatches are returned on the first attempt so
the caller (or the session manager's reactive path) can decide what to do.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from offline_sync.domain.errors import ErrorKind
from offline_sync.network.errors import classify_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from offline_sync.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 10.0  # seconds
DEFAULT_JITTER = 0.1  # 10% jitter
BACKOFF_FACTOR = 2.0


@dataclass(frozen=True)
class CallResult(Generic[T]):
    """Result of ``NetworkResilienceLayer.execute``: a value or a classified error."""

    value: T | None = None
    error_kind: ErrorKind | None = None
    error: BaseException | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error_kind is None


class NetworkResilienceLayer:
    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> NetworkResilienceLayer:
        return cls(
            max_retries=cfg.max_retries,
            base_delay=cfg.base_delay_sec,
            max_delay=cfg.max_delay_sec,
            jitter=cfg.jitter,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is 0-indexed)."""
        delay = min(self.base_delay * (BACKOFF_FACTOR**attempt), self.max_delay)
        return delay + delay * self.jitter * self._rng()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "remote_call",
        idempotent: bool = True,
        request_key: str | None = None,
        correlation_id: str | None = None,
    ) -> CallResult[T]:
        """Run ``operation`` with retries on transient failures.

        Args:
            operation: Zero-argument coroutine factory performing one remote call
            operation_name: Name used in log records
            idempotent: ``False`` for mutations (POST/DELETE); such calls are attempted
                once unless ``request_key`` is given
            request_key: Caller-supplied key marking a mutation as safe to repeat
            correlation_id: Correlation id of the surrounding sync pass

        Returns:
            ``CallResult`` with either ``value`` or ``error_kind``/``error`` set.
            Cancellation is never converted into a result.
        """
        retry_budget = self.max_retries if (idempotent or request_key) else 0
        attempt = 0

        while True:
            try:
                value = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                kind = classify_error(exc)
                if not kind.is_transient or attempt >= retry_budget:
                    log = logger.warning if kind.is_transient else logger.info
                    log(
                        "remote_call_failed",
                        extra={
                            "correlation_id": correlation_id,
                            "operation": operation_name,
                            "error_kind": kind,
                            "attempts": attempt + 1,
                            "retries_exhausted": kind.is_transient,
                            "error": str(exc),
                        },
                    )
                    return CallResult(error_kind=kind, error=exc, attempts=attempt + 1)

                delay = self.backoff_delay(attempt)
                logger.debug(
                    "remote_call_retrying",
                    extra={
                        "correlation_id": correlation_id,
                        "operation": operation_name,
                        "error_kind": kind,
                        "attempt": attempt + 1,
                        "max_retries": retry_budget,
                        "delay_seconds": round(delay, 3),
                        "request_key": request_key,
                    },
                )
                await self._sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(
                    "remote_call_recovered",
                    extra={
                        "correlation_id": correlation_id,
                        "operation": operation_name,
                        "attempts": attempt + 1,
                    },
                )
            return CallResult(value=value, attempts=attempt + 1)
