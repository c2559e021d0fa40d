"""Tests for optimistic reaction toggling."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from offline_sync.auth.session_manager import SessionManager
from offline_sync.domain.errors import AuthenticationRequiredError
from offline_sync.domain.models import Reaction, ReactionState
from offline_sync.sync.merge import review_row
from offline_sync.sync.reactions import ReactionFailurePolicy, ReactionReconciler, toggle_reaction
from tests.fakes import FakeAuthApi, InMemoryKeyValueStore, make_review, server_error, token_response

LIKE, DISLIKE, NONE = Reaction.LIKE, Reaction.DISLIKE, Reaction.NONE


@pytest.mark.parametrize(
    ("current", "desired", "expected"),
    [
        (ReactionState(NONE, 3, 1), LIKE, ReactionState(LIKE, 4, 1)),
        (ReactionState(LIKE, 4, 1), LIKE, ReactionState(NONE, 3, 1)),
        (ReactionState(LIKE, 4, 1), DISLIKE, ReactionState(DISLIKE, 3, 2)),
        (ReactionState(DISLIKE, 0, 2), LIKE, ReactionState(LIKE, 1, 1)),
        (ReactionState(DISLIKE, 0, 0), DISLIKE, ReactionState(NONE, 0, 0)),
        (ReactionState(LIKE, 0, 0), DISLIKE, ReactionState(DISLIKE, 0, 1)),
    ],
)
def test_toggle_reaction(current, desired, expected):
    assert toggle_reaction(current, desired) == expected


def test_toggle_twice_restores_counters():
    start = ReactionState(NONE, 5, 2)
    assert toggle_reaction(toggle_reaction(start, DISLIKE), DISLIKE) == start


def test_toggle_rejects_none():
    with pytest.raises(ValueError):
        toggle_reaction(ReactionState(), NONE)


@pytest_asyncio.fixture
async def session():
    manager = SessionManager(InMemoryKeyValueStore(), FakeAuthApi())
    await manager.start_session(token_response(user_id="viewer"))
    return manager


@pytest.fixture
def seeded_store(review_store):
    review_store.seed(review_row(make_review("r1", "a1", "2025-01-01T00:00:00Z", likes_count=3), 0.0))
    return review_store


def _reconciler(store, remote, session, resilience, policy=ReactionFailurePolicy.KEEP_OPTIMISTIC):
    return ReactionReconciler(store, remote, session, resilience, policy=policy)


@pytest.mark.asyncio
async def test_react_requires_authentication(seeded_store, remote, resilience):
    anonymous = SessionManager(InMemoryKeyValueStore(), FakeAuthApi())
    reconciler = _reconciler(seeded_store, remote, anonymous, resilience)

    with pytest.raises(AuthenticationRequiredError):
        await reconciler.react("r1", LIKE)

    assert seeded_store.reaction_state("r1") == ReactionState(NONE, 3, 0)
    assert remote.calls == []


@pytest.mark.asyncio
async def test_react_on_uncached_review(review_store, remote, session, resilience):
    reconciler = _reconciler(review_store, remote, session, resilience)

    with pytest.raises(LookupError):
        await reconciler.react("missing", LIKE)


@pytest.mark.asyncio
async def test_local_state_changes_before_server_answers(seeded_store, remote, session, resilience):
    remote.gate = asyncio.Event()
    reconciler = _reconciler(seeded_store, remote, session, resilience)

    state = await reconciler.react("r1", LIKE)

    assert state == ReactionState(LIKE, 4, 0)
    assert seeded_store.reaction_state("r1") == state
    assert reconciler.pending == 1
    assert "r1" not in remote.reactions

    remote.gate.set()
    await reconciler.drain()
    assert remote.reactions["r1"] is LIKE
    assert reconciler.pending == 0


@pytest.mark.asyncio
async def test_clearing_reaction_deletes_remote_row(seeded_store, remote, session, resilience):
    reconciler = _reconciler(seeded_store, remote, session, resilience)

    await reconciler.react("r1", LIKE)
    await reconciler.react("r1", LIKE)
    await reconciler.drain()

    assert [call[0] for call in remote.calls] == ["upsert_reaction", "delete_reaction"]
    assert "r1" not in remote.reactions
    assert seeded_store.reaction_state("r1") == ReactionState(NONE, 3, 0)


@pytest.mark.asyncio
async def test_submissions_reach_server_in_tap_order(seeded_store, remote, session, resilience):
    remote.gate = asyncio.Event()
    reconciler = _reconciler(seeded_store, remote, session, resilience)

    await reconciler.react("r1", LIKE)
    await reconciler.react("r1", DISLIKE)
    await reconciler.react("r1", LIKE)
    remote.gate.set()
    await reconciler.drain()

    submitted = [call[2] for call in remote.calls if call[0] == "upsert_reaction"]
    assert submitted == [LIKE, DISLIKE, LIKE]
    assert remote.reactions["r1"] is LIKE


@pytest.mark.asyncio
async def test_keep_optimistic_policy_leaves_local_state(seeded_store, remote, session, resilience):
    remote.fail("upsert_reaction", server_error(400))
    reconciler = _reconciler(seeded_store, remote, session, resilience)

    await reconciler.react("r1", LIKE)
    await reconciler.drain()

    assert seeded_store.reaction_state("r1") == ReactionState(LIKE, 4, 0)


@pytest.mark.asyncio
async def test_transient_failure_is_retried(seeded_store, remote, session, resilience, recording_sleep):
    remote.fail("upsert_reaction", server_error(503))
    reconciler = _reconciler(seeded_store, remote, session, resilience)

    await reconciler.react("r1", DISLIKE)
    await reconciler.drain()

    assert remote.count_calls("upsert_reaction") == 2
    assert recording_sleep.delays == [1.0]
    assert remote.reactions["r1"] is DISLIKE


@pytest.mark.asyncio
async def test_rollback_policy_restores_previous_state(seeded_store, remote, session, resilience):
    remote.fail("upsert_reaction", server_error(400))
    reconciler = _reconciler(seeded_store, remote, session, resilience, ReactionFailurePolicy.ROLLBACK)

    await reconciler.react("r1", LIKE)
    await reconciler.drain()

    assert seeded_store.reaction_state("r1") == ReactionState(NONE, 3, 0)


@pytest.mark.asyncio
async def test_rollback_skips_rows_changed_since(seeded_store, remote, session, resilience):
    remote.gate = asyncio.Event()
    remote.fail("upsert_reaction", server_error(400))
    reconciler = _reconciler(seeded_store, remote, session, resilience, ReactionFailurePolicy.ROLLBACK)

    await reconciler.react("r1", LIKE)
    # A sync landed new counters while the submission was in flight
    seeded_store.rows["r1"]["likes_count"] = 10
    remote.gate.set()
    await reconciler.drain()

    assert seeded_store.reaction_state("r1") == ReactionState(LIKE, 10, 0)
