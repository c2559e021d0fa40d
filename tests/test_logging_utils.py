"""Tests for structured logging helpers."""

from __future__ import annotations

import json
import logging
import sys
import unittest

from offline_sync.core.logging_utils import (
    EnhancedJsonFormatter,
    generate_correlation_id,
    token_fingerprint,
    truncate_log_content,
)
from offline_sync.domain.errors import ErrorKind


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="offline_sync.sync.delta_engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="delta_sync_completed",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestEnhancedJsonFormatter(unittest.TestCase):
    def test_groups_sync_counters_and_timing(self) -> None:
        formatter = EnhancedJsonFormatter(include_location=False)
        record = _record(
            correlation_id="abc123",
            collection="attractions",
            added=3,
            duration_ms=12.5,
            error_kind=ErrorKind.TIMEOUT,
            token_fp="deadbeef",
        )

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "delta_sync_completed"
        assert payload["correlation_id"] == "abc123"
        assert payload["sync"] == {"collection": "attractions", "added": 3, "error_kind": "timeout"}
        assert payload["timing"] == {"duration_ms": 12.5}
        assert payload["extra"] == {"token_fp": "deadbeef"}
        assert "module" not in payload

    def test_includes_exception_details(self) -> None:
        formatter = EnhancedJsonFormatter()
        try:
            raise ValueError("broken row")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        payload = json.loads(formatter.format(record))

        assert payload["exception"]["type"] == "ValueError"
        assert payload["exception"]["message"] == "broken row"


class TestLogHelpers(unittest.TestCase):
    def test_token_fingerprint_is_short_and_stable(self) -> None:
        first = token_fingerprint("secret-token")

        assert first == token_fingerprint("secret-token")
        assert first != token_fingerprint("other-token")
        assert len(first or "") == 8
        assert "secret" not in (first or "")
        assert token_fingerprint(None) is None

    def test_truncate_log_content(self) -> None:
        assert truncate_log_content("short", 10) == "short"
        assert truncate_log_content("x" * 20, 10) == "x" * 10 + "... [truncated]"
        assert truncate_log_content(None) is None

    def test_correlation_ids_are_unique(self) -> None:
        ids = {generate_correlation_id() for _ in range(50)}

        assert len(ids) == 50
        assert all(len(value) == 12 for value in ids)
