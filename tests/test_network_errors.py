import json
import socket
import unittest

import httpx
from pydantic import BaseModel, ValidationError

from offline_sync.domain.errors import ErrorKind
from offline_sync.network.errors import (
    RemoteApiError,
    SerializationMismatchError,
    classify_error,
    is_retryable,
    kind_for_status,
)


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.test/rest/v1/attractions")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class _Row(BaseModel):
    id: str


class TestKindForStatus(unittest.TestCase):
    def test_status_mapping(self) -> None:
        assert kind_for_status(401) is ErrorKind.UNAUTHORIZED
        assert kind_for_status(429) is ErrorKind.RATE_LIMITED
        assert kind_for_status(408) is ErrorKind.TIMEOUT
        assert kind_for_status(500) is ErrorKind.SERVER_UNAVAILABLE
        assert kind_for_status(503) is ErrorKind.SERVER_UNAVAILABLE
        assert kind_for_status(400) is ErrorKind.CLIENT_ERROR
        assert kind_for_status(404) is ErrorKind.CLIENT_ERROR


class TestClassifyError(unittest.TestCase):
    def test_http_status_errors(self) -> None:
        assert classify_error(_status_error(502)) is ErrorKind.SERVER_UNAVAILABLE
        assert classify_error(_status_error(429)) is ErrorKind.RATE_LIMITED
        assert classify_error(_status_error(401)) is ErrorKind.UNAUTHORIZED
        assert classify_error(_status_error(422)) is ErrorKind.CLIENT_ERROR

    def test_timeouts(self) -> None:
        assert classify_error(httpx.ReadTimeout("slow")) is ErrorKind.TIMEOUT
        assert classify_error(httpx.ConnectTimeout("slow")) is ErrorKind.TIMEOUT
        assert classify_error(TimeoutError()) is ErrorKind.TIMEOUT

    def test_dns_failure_detected_from_message_and_cause(self) -> None:
        assert (
            classify_error(httpx.ConnectError("[Errno -2] Name or service not known"))
            is ErrorKind.DNS_FAILURE
        )
        exc = httpx.ConnectError("connection failed")
        exc.__cause__ = socket.gaierror(-3, "Temporary failure in name resolution")
        assert classify_error(exc) is ErrorKind.DNS_FAILURE

    def test_other_transport_errors_are_transient_io(self) -> None:
        assert classify_error(httpx.ConnectError("connection refused")) is ErrorKind.TRANSIENT_IO
        assert classify_error(httpx.RemoteProtocolError("eof")) is ErrorKind.TRANSIENT_IO
        assert classify_error(ConnectionResetError()) is ErrorKind.TRANSIENT_IO

    def test_serialization_errors(self) -> None:
        try:
            _Row.model_validate({"name": "no id"})
        except ValidationError as exc:
            assert classify_error(exc) is ErrorKind.SERIALIZATION_MISMATCH
        assert (
            classify_error(json.JSONDecodeError("bad", "doc", 0))
            is ErrorKind.SERIALIZATION_MISMATCH
        )
        assert (
            classify_error(SerializationMismatchError("error body"))
            is ErrorKind.SERIALIZATION_MISMATCH
        )

    def test_classified_remote_error_keeps_its_kind(self) -> None:
        assert classify_error(RemoteApiError("x", ErrorKind.RATE_LIMITED, 429)) is (
            ErrorKind.RATE_LIMITED
        )

    def test_unknown_exceptions_are_unexpected(self) -> None:
        assert classify_error(ValueError("bug")) is ErrorKind.UNEXPECTED
        assert not is_retryable(ValueError("bug"))


class TestRetryable(unittest.TestCase):
    def test_transient_kinds(self) -> None:
        assert is_retryable(_status_error(503))
        assert is_retryable(_status_error(429))
        assert is_retryable(httpx.ReadTimeout("slow"))

    def test_fatal_kinds(self) -> None:
        assert not is_retryable(_status_error(401))
        assert not is_retryable(_status_error(404))
        assert not is_retryable(SerializationMismatchError("bad"))
