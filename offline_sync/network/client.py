"""Async HTTP client for the remote collection API (PostgREST-style)."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from offline_sync.core.logging_utils import truncate_log_content
from offline_sync.core.time_utils import normalize_timestamp
from offline_sync.domain.errors import AuthenticationRequiredError
from offline_sync.network.errors import SerializationMismatchError
from offline_sync.network.models import (
    AttractionDto,
    AuthTokenResponse,
    ReactionRequest,
    ReviewDto,
    TombstoneDto,
)

if TYPE_CHECKING:
    from typing import Self

    from offline_sync.auth.session_manager import SessionManager
    from offline_sync.config import RemoteConfig
    from offline_sync.domain.models import Reaction

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

REVIEW_SELECT = (
    "id,attraction_id,user_id,rating,title,body,status,rejection_reason,"
    "likes_count,dislikes_count,created_at,updated_at,profiles(display_name,avatar_url)"
)
TOKEN_PATH = "/auth/v1/token"
MAX_REACTIVE_RETRIES = 1


@dataclass(frozen=True)
class CollectionRoute:
    """How a logical collection maps onto a remote table."""

    table: str
    entity_type: str
    dto: type[BaseModel]
    parent_column: str | None = None
    select: str = "*"
    filters: dict[str, str] = field(default_factory=dict)


DEFAULT_ROUTES: dict[str, CollectionRoute] = {
    "attractions": CollectionRoute(
        table="attractions",
        entity_type="attraction",
        dto=AttractionDto,
        filters={"is_published": "eq.true"},
    ),
    "reviews": CollectionRoute(
        table="reviews",
        entity_type="review",
        dto=ReviewDto,
        parent_column="attraction_id",
        select=REVIEW_SELECT,
        filters={"status": "eq.approved"},
    ),
}


class RemoteApiClient:
    """Remote surface used by the sync engines, the reaction reconciler and the session.

    Public reads are sent with the anonymous key and never trigger a token refresh.
    Authenticated calls get one reactive retry after a 401, using a token obtained
    through the session manager.
    """

    def __init__(
        self,
        api_url: str,
        anon_key: str,
        *,
        session_manager: SessionManager | None = None,
        timeout: httpx.Timeout | float = 60.0,
        total_timeout: float | None = 90.0,
        routes: dict[str, CollectionRoute] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.total_timeout = total_timeout
        self.routes = routes or dict(DEFAULT_ROUTES)
        self._session_manager = session_manager
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        cfg: RemoteConfig,
        *,
        session_manager: SessionManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RemoteApiClient:
        return cls(
            cfg.api_url,
            cfg.anon_key,
            session_manager=session_manager,
            timeout=cfg.httpx_timeout(),
            total_timeout=cfg.total_timeout_sec,
            transport=transport,
        )

    def bind_session_manager(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={"apikey": self.anon_key, "Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use async context manager.")
        return self._client

    def _route(self, collection: str) -> CollectionRoute:
        try:
            return self.routes[collection]
        except KeyError:
            msg = f"Unknown collection: {collection}"
            raise ValueError(msg) from None

    # -- transport -----------------------------------------------------------------

    async def _request(
        self, method: str, path: str, *, bearer: str | None = None, **kwargs: Any
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {bearer or self.anon_key}"
        if self.total_timeout is None:
            return await self.client.request(method, path, headers=headers, **kwargs)
        async with asyncio.timeout(self.total_timeout):
            return await self.client.request(method, path, headers=headers, **kwargs)

    async def _send_public(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._request(method, path, **kwargs)
        response.raise_for_status()
        return response

    async def _send_authenticated(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._session_manager is None:
            raise AuthenticationRequiredError("No session manager configured")

        token = await self._session_manager.get_valid_access_token()
        if token is None:
            raise AuthenticationRequiredError("No active session")

        response = await self._request(method, path, bearer=token, **kwargs)
        retries = 0
        while response.status_code == 401 and retries < MAX_REACTIVE_RETRIES:
            retries += 1
            fresh = await self._session_manager.refresh_after_unauthorized(token)
            if fresh is None or fresh == token:
                break
            logger.debug("remote_retry_with_fresh_token", extra={"path": path})
            token = fresh
            response = await self._request(method, path, bearer=token, **kwargs)

        response.raise_for_status()
        return response

    # -- parsing -------------------------------------------------------------------

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise SerializationMismatchError(
                f"Response body is not JSON: {truncate_log_content(response.text, 200)}",
                response.status_code,
            ) from exc

    @classmethod
    def _parse_list(cls, response: httpx.Response, model: type[ModelT]) -> list[ModelT]:
        data = cls._json(response)
        if not isinstance(data, list):
            # PostgREST occasionally answers 200 with an error object
            raise SerializationMismatchError(
                f"Expected a list, got: {truncate_log_content(str(data), 200)}",
                response.status_code,
            )
        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as exc:
            raise SerializationMismatchError(
                f"Unexpected row shape: {exc.error_count()} validation errors",
                response.status_code,
            ) from exc

    @classmethod
    def _parse_tokens(cls, response: httpx.Response) -> AuthTokenResponse:
        data = cls._json(response)
        try:
            return AuthTokenResponse.model_validate(data)
        except ValidationError as exc:
            raise SerializationMismatchError(
                "Auth response is missing tokens", response.status_code
            ) from exc

    # -- collections ---------------------------------------------------------------

    def _collection_params(self, route: CollectionRoute, order: str) -> dict[str, str]:
        return {"select": route.select, **route.filters, "order": order}

    async def list_all(self, collection: str) -> list[Any]:
        """Fetch every live row of a collection."""
        route = self._route(collection)
        response = await self._send_public(
            "GET", f"/rest/v1/{route.table}", params=self._collection_params(route, "id.asc")
        )
        rows = self._parse_list(response, route.dto)
        logger.info("remote_list_all", extra={"collection": collection, "count": len(rows)})
        return rows

    async def list_since(self, collection: str, cursor: str) -> list[Any]:
        """Fetch rows with ``updated_at`` strictly greater than ``cursor``."""
        route = self._route(collection)
        params = self._collection_params(route, "updated_at.asc")
        params["updated_at"] = f"gt.{normalize_timestamp(cursor)}"
        response = await self._send_public("GET", f"/rest/v1/{route.table}", params=params)
        rows = self._parse_list(response, route.dto)
        logger.debug(
            "remote_list_since",
            extra={"collection": collection, "cursor": cursor, "count": len(rows)},
        )
        return rows

    async def list_for_parent(
        self, collection: str, parent_id: str, since: str | None = None
    ) -> list[Any]:
        """Fetch rows of a dependent collection belonging to one parent."""
        route = self._route(collection)
        if route.parent_column is None:
            msg = f"Collection {collection} has no parent column"
            raise ValueError(msg)
        params = self._collection_params(
            route, "updated_at.asc" if since else "created_at.desc"
        )
        params[route.parent_column] = f"eq.{parent_id}"
        if since:
            params["updated_at"] = f"gt.{normalize_timestamp(since)}"
        response = await self._send_public("GET", f"/rest/v1/{route.table}", params=params)
        return self._parse_list(response, route.dto)

    async def list_tombstones_since(self, collection: str, cursor: str) -> list[str]:
        """Fetch ids of entities deleted or unpublished after ``cursor``."""
        route = self._route(collection)
        params = {
            "select": "entity_id,entity_type,action,deleted_at",
            "entity_type": f"eq.{route.entity_type}",
            "deleted_at": f"gt.{normalize_timestamp(cursor)}",
            "order": "deleted_at.asc",
        }
        response = await self._send_public("GET", "/rest/v1/sync_metadata", params=params)
        return [row.entity_id for row in self._parse_list(response, TombstoneDto)]

    # -- reactions -----------------------------------------------------------------

    def _current_user_id(self) -> str:
        user_id = self._session_manager.user_id if self._session_manager else None
        if not user_id:
            raise AuthenticationRequiredError("Session has no user id")
        return user_id

    async def upsert_reaction(self, entity_id: str, reaction: Reaction) -> None:
        wire = reaction.to_wire()
        if wire is None:
            msg = "Use delete_reaction to clear a reaction"
            raise ValueError(msg)
        body = ReactionRequest(review_id=entity_id, user_id=self._current_user_id(), reaction=wire)
        await self._send_authenticated(
            "POST",
            "/rest/v1/review_reactions",
            params={"on_conflict": "review_id,user_id"},
            json=body.model_dump(),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug("remote_reaction_upserted", extra={"entity_id": entity_id, "reaction": wire})

    async def delete_reaction(self, entity_id: str) -> None:
        await self._send_authenticated(
            "DELETE",
            "/rest/v1/review_reactions",
            params={"review_id": f"eq.{entity_id}", "user_id": f"eq.{self._current_user_id()}"},
        )
        logger.debug("remote_reaction_deleted", extra={"entity_id": entity_id})

    # -- auth ----------------------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> AuthTokenResponse:
        """Exchange a refresh token. Never goes through the reactive refresh path."""
        response = await self._send_public(
            "POST",
            TOKEN_PATH,
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return self._parse_tokens(response)

    async def sign_in(self, email: str, password: str) -> AuthTokenResponse:
        response = await self._send_public(
            "POST",
            TOKEN_PATH,
            params={"grant_type": "password"},
            json={"email": email.strip().lower(), "password": password},
        )
        return self._parse_tokens(response)

    async def sign_up(
        self, email: str, password: str, display_name: str | None = None
    ) -> AuthTokenResponse:
        payload: dict[str, Any] = {"email": email.strip().lower(), "password": password}
        if display_name:
            payload["data"] = {"display_name": display_name.strip()}
        response = await self._send_public("POST", "/auth/v1/signup", json=payload)
        return self._parse_tokens(response)

    async def sign_out(self, access_token: str) -> None:
        response = await self._request("POST", "/auth/v1/logout", bearer=access_token)
        response.raise_for_status()
