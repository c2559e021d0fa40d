"""Error taxonomy shared by the network layer, the engines and the orchestrator."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    OFFLINE = "offline"
    TIMEOUT = "timeout"
    DNS_FAILURE = "dns_failure"
    TRANSIENT_IO = "transient_io"
    SERVER_UNAVAILABLE = "server_unavailable"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    UNAUTHORIZED = "unauthorized"
    SERIALIZATION_MISMATCH = "serialization_mismatch"
    ALREADY_IN_PROGRESS = "already_in_progress"
    UNEXPECTED = "unexpected"

    @property
    def is_transient(self) -> bool:
        return self in TRANSIENT_ERROR_KINDS


TRANSIENT_ERROR_KINDS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.DNS_FAILURE,
        ErrorKind.TRANSIENT_IO,
        ErrorKind.SERVER_UNAVAILABLE,
        ErrorKind.RATE_LIMITED,
    }
)


class AuthenticationRequiredError(Exception):
    """No usable session exists; the user has to sign in again."""
