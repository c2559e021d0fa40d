"""Connectivity signal consumed by the engines and the orchestrator."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class ConnectivityMonitor:
    """In-process holder of the platform's connectivity state.

    The platform adapter pushes transitions with ``set_status``; consumers read
    ``is_online()`` or iterate ``changes()``, which yields the current status first.
    """

    def __init__(self, initial: ConnectivityStatus = ConnectivityStatus.AVAILABLE) -> None:
        self._status = initial
        self._subscribers: set[asyncio.Queue[ConnectivityStatus]] = set()

    @property
    def status(self) -> ConnectivityStatus:
        return self._status

    def is_online(self) -> bool:
        return self._status is ConnectivityStatus.AVAILABLE

    def set_status(self, status: ConnectivityStatus) -> None:
        if status is self._status:
            return
        logger.info(
            "connectivity_changed",
            extra={"previous": self._status.value, "current": status.value},
        )
        self._status = status
        for queue in list(self._subscribers):
            queue.put_nowait(status)

    async def changes(self) -> AsyncIterator[ConnectivityStatus]:
        queue: asyncio.Queue[ConnectivityStatus] = asyncio.Queue()
        queue.put_nowait(self._status)
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)


async def check_reachability(
    url: str,
    *,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ConnectivityStatus:
    """Probe ``url`` once. Any HTTP answer, even an error status, counts as reachable."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            await client.head(url)
    except httpx.HTTPError as exc:
        logger.info("connectivity_probe_failed", extra={"url": url, "error": str(exc)})
        return ConnectivityStatus.UNAVAILABLE
    return ConnectivityStatus.AVAILABLE
