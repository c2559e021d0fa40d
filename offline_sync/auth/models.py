from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from offline_sync.network.models import AuthTokenResponse

SESSION_ACCESS_TOKEN_KEY = "session:access_token"
SESSION_REFRESH_TOKEN_KEY = "session:refresh_token"
SESSION_EXPIRES_AT_KEY = "session:expires_at"
SESSION_USER_ID_KEY = "session:user_id"

SESSION_KEYS = (
    SESSION_ACCESS_TOKEN_KEY,
    SESSION_REFRESH_TOKEN_KEY,
    SESSION_EXPIRES_AT_KEY,
    SESSION_USER_ID_KEY,
)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class Session:
    """Access/refresh token pair. Replaced wholesale, never mutated in place."""

    access_token: str
    refresh_token: str
    expires_at: float  # epoch seconds
    user_id: str | None = None

    def remaining(self, now: float) -> float:
        return self.expires_at - now

    @classmethod
    def from_tokens(
        cls,
        tokens: AuthTokenResponse,
        *,
        now: float,
        default_ttl_sec: int,
        fallback_user_id: str | None = None,
    ) -> Session:
        """Build a session from a token response.

        ``expires_at`` wins over ``expires_in``; without either the session lives for
        ``default_ttl_sec``.
        """
        if tokens.expires_at:
            expires_at = float(tokens.expires_at)
        elif tokens.expires_in:
            expires_at = now + tokens.expires_in
        else:
            expires_at = now + default_ttl_sec
        user_id = tokens.user.id if tokens.user else fallback_user_id
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=expires_at,
            user_id=user_id,
        )
