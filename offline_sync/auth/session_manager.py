"""Access-token lifecycle: proactive and reactive refresh with single-flight semantics.

``SessionManager`` is the only writer of the session. Every concurrent caller that
needs a refresh awaits the same ``asyncio.Task``, so at most one refresh call is in
flight per process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from offline_sync.auth.models import (
    SESSION_ACCESS_TOKEN_KEY,
    SESSION_EXPIRES_AT_KEY,
    SESSION_KEYS,
    SESSION_REFRESH_TOKEN_KEY,
    SESSION_USER_ID_KEY,
    Session,
    SessionState,
)
from offline_sync.core.logging_utils import token_fingerprint
from offline_sync.core.time_utils import epoch_seconds
from offline_sync.domain.errors import AuthenticationRequiredError, ErrorKind
from offline_sync.network.resilience import NetworkResilienceLayer

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from offline_sync.config import SessionConfig
    from offline_sync.network.models import AuthTokenResponse
    from offline_sync.storage.protocols import AuthApi, KeyValueStore

logger = logging.getLogger(__name__)

# The refresh token itself was refused; no point keeping the session around.
_REJECTED_REFRESH_KINDS = frozenset(
    {ErrorKind.UNAUTHORIZED, ErrorKind.CLIENT_ERROR, ErrorKind.SERIALIZATION_MISMATCH}
)


class SessionManager:
    def __init__(
        self,
        store: KeyValueStore,
        api: AuthApi,
        *,
        refresh_margin_sec: float = 60,
        default_ttl_sec: int = 3600,
        clock: Callable[[], float] = epoch_seconds,
        resilience: NetworkResilienceLayer | None = None,
    ) -> None:
        self._store = store
        self._api = api
        # Without a shared layer the refresh is attempted once
        self._resilience = resilience or NetworkResilienceLayer(max_retries=0)
        self.refresh_margin_sec = refresh_margin_sec
        self.default_ttl_sec = default_ttl_sec
        self._clock = clock

        self._session: Session | None = None
        self._state = SessionState.NO_SESSION
        self._lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[Session | None] | None = None
        self._reauth_listeners: list[Callable[[], Any]] = []
        self._user_listeners: list[Callable[[str | None], Awaitable[Any]]] = []

    @classmethod
    def from_config(
        cls,
        cfg: SessionConfig,
        store: KeyValueStore,
        api: AuthApi,
        *,
        resilience: NetworkResilienceLayer | None = None,
    ) -> SessionManager:
        return cls(
            store,
            api,
            refresh_margin_sec=cfg.refresh_margin_sec,
            default_ttl_sec=cfg.default_ttl_sec,
            resilience=resilience,
        )

    # -- read-only view ------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def user_id(self) -> str | None:
        return self._session.user_id if self._session else None

    def is_expired(self) -> bool:
        if self._session is None:
            return True
        return self._session.remaining(self._clock()) <= 0

    def should_proactively_refresh(self) -> bool:
        if self._session is None:
            return False
        return self._session.remaining(self._clock()) < self.refresh_margin_sec

    # -- token access --------------------------------------------------------------

    async def get_valid_access_token(self) -> str | None:
        """Return a usable access token, refreshing it first when it is about to expire.

        Concurrent callers share one refresh. If the refresh fails while the current
        token is still valid, that token is returned (soft-fail).

        Returns:
            The access token, or None when there is no session.
        """
        session = self._session
        if session is None:
            return None
        if not self.should_proactively_refresh():
            return session.access_token

        refreshed = await self._refresh_single_flight(session)
        return refreshed.access_token if refreshed else None

    async def require_access_token(self) -> str:
        token = await self.get_valid_access_token()
        if token is None:
            raise AuthenticationRequiredError("Sign-in required")
        return token

    async def refresh_after_unauthorized(self, rejected_token: str) -> str | None:
        """Obtain a replacement for a token the server answered 401 to.

        If another caller already replaced ``rejected_token`` the current token is
        returned without a new refresh call.
        """
        session = self._session
        if session is None:
            return None
        if session.access_token != rejected_token:
            return session.access_token

        logger.info(
            "session_reactive_refresh",
            extra={"token_fp": token_fingerprint(rejected_token)},
        )
        refreshed = await self._refresh_single_flight(session)
        return refreshed.access_token if refreshed else None

    async def _refresh_single_flight(self, observed: Session) -> Session | None:
        async with self._lock:
            current = self._session
            if current is None:
                return None
            if current.access_token != observed.access_token:
                # Installed by a refresh that finished while this caller was waiting
                return current
            if self._refresh_task is None:
                self._state = SessionState.REFRESHING
                self._refresh_task = asyncio.create_task(
                    self._do_refresh(current), name="session-refresh"
                )
            task = self._refresh_task
        # One waiter being cancelled must not cancel the refresh for the others.
        return await asyncio.shield(task)

    async def _do_refresh(self, current: Session) -> Session | None:
        try:
            # The exchange may be repeated until the refresh token is consumed
            result = await self._resilience.execute(
                lambda: self._api.refresh_token(current.refresh_token),
                operation_name="refresh_token",
                request_key=f"refresh:{token_fingerprint(current.refresh_token)}",
            )
        except asyncio.CancelledError:
            self._state = SessionState.AUTHENTICATED
            raise
        else:
            if not result.ok or result.value is None:
                kind = result.error_kind or ErrorKind.UNEXPECTED
                return await self._on_refresh_failure(current, kind, result.error)
            session = Session.from_tokens(
                result.value,
                now=self._clock(),
                default_ttl_sec=self.default_ttl_sec,
                fallback_user_id=current.user_id,
            )
            await self._install(session)
            logger.info(
                "session_refreshed",
                extra={
                    "token_fp": token_fingerprint(session.access_token),
                    "expires_in": round(session.remaining(self._clock())),
                },
            )
            return session
        finally:
            self._refresh_task = None

    async def _on_refresh_failure(
        self, current: Session, kind: ErrorKind, exc: BaseException | None
    ) -> Session | None:
        expired = current.remaining(self._clock()) <= 0

        if kind not in _REJECTED_REFRESH_KINDS and not expired:
            self._state = SessionState.AUTHENTICATED
            logger.warning(
                "session_refresh_soft_failed",
                extra={"error_kind": kind, "error": str(exc)},
            )
            return current

        logger.warning(
            "session_refresh_failed",
            extra={"error_kind": kind, "expired": expired, "error": str(exc)},
        )
        await self.clear(notify=True)
        return None

    # -- lifecycle -----------------------------------------------------------------

    async def start_session(self, tokens: AuthTokenResponse) -> Session:
        """Install the tokens returned by sign-in or sign-up."""
        session = Session.from_tokens(
            tokens, now=self._clock(), default_ttl_sec=self.default_ttl_sec
        )
        await self._install(session)
        logger.info("session_started", extra={"user_id": session.user_id})
        return session

    async def restore(self) -> bool:
        """Load the persisted session at start-up.

        An expired session gets one refresh attempt; if that fails it is cleared.

        Returns:
            True if a usable session is active afterwards.
        """
        access = await self._store.async_get(SESSION_ACCESS_TOKEN_KEY)
        refresh = await self._store.async_get(SESSION_REFRESH_TOKEN_KEY)
        expires_raw = await self._store.async_get(SESSION_EXPIRES_AT_KEY)
        if not access or not refresh or not expires_raw:
            return False
        try:
            expires_at = float(expires_raw)
        except ValueError:
            logger.warning("session_restore_corrupt", extra={"expires_at": expires_raw})
            await self.clear()
            return False

        user_id = await self._store.async_get(SESSION_USER_ID_KEY)
        self._session = Session(access, refresh, expires_at, user_id or None)
        self._state = SessionState.AUTHENTICATED

        if self.should_proactively_refresh():
            await self._refresh_single_flight(self._session)
        logger.info("session_restored", extra={"authenticated": self.is_authenticated})
        return self.is_authenticated

    async def sign_out(self) -> None:
        """Revoke the session remotely (best effort) and always clear it locally."""
        session = self._session
        if session is not None:
            try:
                await self._api.sign_out(session.access_token)
            except Exception as exc:
                logger.warning("session_remote_sign_out_failed", extra={"error": str(exc)})
        await self.clear()

    async def clear(self, *, notify: bool = False) -> None:
        previous_user = self.user_id
        self._session = None
        self._state = SessionState.NO_SESSION
        for key in SESSION_KEYS:
            await self._store.async_delete(key)
        await self._notify_user_changed(previous_user, None)
        if notify:
            self._notify_reauthentication_required()

    def add_reauthentication_listener(self, listener: Callable[[], Any]) -> Callable[[], None]:
        """Register ``listener`` for "re-authentication required". Returns an unsubscribe."""
        self._reauth_listeners.append(listener)

        def _remove() -> None:
            if listener in self._reauth_listeners:
                self._reauth_listeners.remove(listener)

        return _remove

    def add_user_change_listener(
        self, listener: Callable[[str | None], Awaitable[Any]]
    ) -> Callable[[], None]:
        """Register an async ``listener(user_id)`` awaited when the signed-in user changes.

        Sign-out passes None. Token refreshes for the same user do not notify.
        """
        self._user_listeners.append(listener)

        def _remove() -> None:
            if listener in self._user_listeners:
                self._user_listeners.remove(listener)

        return _remove

    async def _notify_user_changed(self, previous: str | None, current: str | None) -> None:
        if previous == current:
            return
        for listener in list(self._user_listeners):
            try:
                await listener(current)
            except Exception:
                logger.exception("session_user_listener_failed", extra={"user_id": current})

    def _notify_reauthentication_required(self) -> None:
        logger.info("session_reauthentication_required")
        for listener in list(self._reauth_listeners):
            try:
                listener()
            except Exception:
                logger.exception("session_listener_failed")

    async def _install(self, session: Session) -> None:
        previous_user = self.user_id
        self._session = session
        self._state = SessionState.AUTHENTICATED
        await self._store.async_set(SESSION_ACCESS_TOKEN_KEY, session.access_token)
        await self._store.async_set(SESSION_REFRESH_TOKEN_KEY, session.refresh_token)
        await self._store.async_set(SESSION_EXPIRES_AT_KEY, repr(session.expires_at))
        if session.user_id:
            await self._store.async_set(SESSION_USER_ID_KEY, session.user_id)
        else:
            await self._store.async_delete(SESSION_USER_ID_KEY)
        await self._notify_user_changed(previous_user, session.user_id)
