"""Classification of remote-call failures into ``ErrorKind``."""

from __future__ import annotations

import json
import socket

import httpx
from pydantic import ValidationError

from offline_sync.domain.errors import ErrorKind

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)


class RemoteApiError(Exception):
    """A remote call failed with an already-classified error kind."""

    def __init__(self, message: str, kind: ErrorKind, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class SerializationMismatchError(RemoteApiError):
    """The server answered 2xx but the body did not have the expected shape."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, ErrorKind.SERIALIZATION_MISMATCH, status_code)


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code == 401:
        return ErrorKind.UNAUTHORIZED
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if status_code >= 500:
        return ErrorKind.SERVER_UNAVAILABLE
    return ErrorKind.CLIENT_ERROR


def _looks_like_dns_failure(exc: BaseException) -> bool:
    current: BaseException | None = exc
    while current is not None:
        if isinstance(current, socket.gaierror):
            return True
        if any(marker in str(current).lower() for marker in _DNS_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a remote call to its ``ErrorKind``."""
    if isinstance(exc, RemoteApiError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return kind_for_status(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, (httpx.ConnectError, socket.gaierror)) and _looks_like_dns_failure(exc):
        return ErrorKind.DNS_FAILURE
    if isinstance(exc, (httpx.DecodingError, ValidationError, json.JSONDecodeError)):
        return ErrorKind.SERIALIZATION_MISMATCH
    if isinstance(exc, (httpx.TransportError, OSError)):
        return ErrorKind.TRANSIENT_IO
    return ErrorKind.UNEXPECTED


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc).is_transient
