from __future__ import annotations

import time
from datetime import UTC, datetime

CURSOR_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def epoch_seconds() -> float:
    return time.time()


def normalize_timestamp(value: str) -> str:
    """Rewrite explicit UTC offsets to the ``Z`` suffix.

    ``+00:00`` breaks unescaped query strings, so cursors always travel as ``...Z``.
    """
    text = value.strip()
    if text.endswith("+00:00"):
        return text[: -len("+00:00")] + "Z"
    if text.endswith("+0000"):
        return text[: -len("+0000")] + "Z"
    return text


def to_cursor(moment: datetime) -> str:
    """Format a datetime as a UTC cursor string with fixed microsecond precision.

    Fixed precision keeps lexical order equal to chronological order, which the
    local store relies on for ``MAX(updated_at)``.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).strftime(CURSOR_FORMAT)


def canonical_timestamp(value: str) -> str:
    """Rewrite a server timestamp into cursor format; unparseable input is only normalized."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return normalize_timestamp(value)
    return to_cursor(parsed)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, tolerating the ``Z`` suffix. Naive values are UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
