"""End-to-end wiring: SQLite cache, httpx client on a mock transport, real engines."""

from __future__ import annotations

import json

import httpx
import pytest

from offline_sync.config import load_config
from offline_sync.di.container import build_container
from offline_sync.domain.models import Reaction

API_URL = "https://api.example.test"


class _Backend:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.reactions: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/rest/v1/attractions":
            return httpx.Response(
                200,
                json=[
                    {
                        "id": "a1",
                        "name": "Burana Tower",
                        "category": "history",
                        "latitude": 42.74,
                        "longitude": 75.25,
                        "updated_at": "2025-03-01T10:00:00+00:00",
                    }
                ],
            )
        if path == "/rest/v1/reviews":
            return httpx.Response(
                200,
                json=[
                    {
                        "id": "r1",
                        "attraction_id": "a1",
                        "user_id": "user-1",
                        "rating": 5,
                        "likes_count": 2,
                        "updated_at": "2025-03-01T11:00:00Z",
                        "profiles": {"display_name": "Aida"},
                    }
                ],
            )
        if path == "/rest/v1/sync_metadata":
            return httpx.Response(200, json=[])
        if path == "/rest/v1/review_reactions":
            self.reactions.append(json.loads(request.content))
            return httpx.Response(201)
        if path == "/auth/v1/token":
            return httpx.Response(
                200,
                json={
                    "access_token": "user-access",
                    "refresh_token": "user-refresh",
                    "expires_in": 3600,
                    "user": {"id": "user-1"},
                },
            )
        return httpx.Response(404)


@pytest.fixture
def cfg(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    return load_config(
        remote={"api_url": API_URL, "anon_key": "anon"},
        database={"path": ":memory:"},
        retry={"base_delay_sec": 0.0, "jitter": 0.0},
    )


@pytest.mark.asyncio
async def test_sync_then_react_through_real_components(cfg):
    backend = _Backend()

    async with await build_container(cfg, transport=httpx.MockTransport(backend)) as container:
        result = await container.orchestrator.sync()

        assert result.success
        assert result.added_count == 2
        rows = await container.attractions.async_list()
        assert [row["name"] for row in rows] == ["Burana Tower"]
        assert await container.delta_engine.get_cursor("attractions") is not None

        tokens = await container.client.sign_in("aida@example.test", "secret")
        await container.session.start_session(tokens)
        cached = await container.reviews.async_get("r1")
        assert cached is not None and cached["is_own_review"] is True

        state = await container.reactions.react("r1", Reaction.LIKE)
        await container.reactions.drain()

        assert state.likes_count == 3
        assert backend.reactions == [{"review_id": "r1", "user_id": "user-1", "reaction": "like"}]
        stored = await container.reviews.async_get_reaction_state("r1")
        assert stored is not None and stored.reaction is Reaction.LIKE

        # Local reaction survives a later review refresh
        await container.review_engine.force_refresh_for_parent("a1")
        stored = await container.reviews.async_get_reaction_state("r1")
        assert stored is not None and stored.reaction is Reaction.LIKE


@pytest.mark.asyncio
async def test_second_pass_asks_only_for_changes(cfg):
    backend = _Backend()

    async with await build_container(cfg, transport=httpx.MockTransport(backend)) as container:
        await container.orchestrator.sync()
        backend.requests.clear()
        await container.orchestrator.sync()

    attraction_calls = [r for r in backend.requests if r.url.path == "/rest/v1/attractions"]
    review_calls = [r for r in backend.requests if r.url.path == "/rest/v1/reviews"]
    assert attraction_calls[0].url.params["updated_at"].startswith("gt.")
    assert review_calls[0].url.params["updated_at"] == "gt.2025-03-01T11:00:00.000000Z"


@pytest.mark.asyncio
async def test_sign_out_clears_own_review_flags(cfg):
    backend = _Backend()

    async with await build_container(cfg, transport=httpx.MockTransport(backend)) as container:
        await container.orchestrator.sync()
        await container.session.start_session(
            await container.client.sign_in("aida@example.test", "secret")
        )
        await container.session.sign_out()

        cached = await container.reviews.async_get("r1")
        assert cached is not None and cached["is_own_review"] is False
