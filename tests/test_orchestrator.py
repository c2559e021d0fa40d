"""Tests for the sync orchestrator and its observable state."""

from __future__ import annotations

import asyncio

import pytest

from offline_sync.domain.errors import ErrorKind
from offline_sync.sync.connectivity import ConnectivityStatus
from offline_sync.sync.delta_engine import DeltaSyncEngine, SyncedCollection, cursor_key
from offline_sync.sync.merge import ATTRACTIONS
from offline_sync.sync.orchestrator import SyncOrchestrator, user_message
from offline_sync.sync.review_engine import ReviewSyncEngine
from offline_sync.sync.state import Error, Idle, Success, Syncing
from tests.fakes import FakeRemoteApi, RecordingSleep, make_attraction, make_review, server_error

PAST = "2025-01-01T00:00:00Z"
OLD_CURSOR = "2025-01-01T00:00:00.000000Z"


class _GatedRemote(FakeRemoteApi):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def list_all(self, collection):
        await self.release.wait()
        return await super().list_all(collection)


def _build(remote, kv_store, connectivity, resilience, attraction_store, review_store):
    delta = DeltaSyncEngine(
        remote,
        kv_store,
        connectivity,
        resilience,
        {"attractions": SyncedCollection(ATTRACTIONS, attraction_store)},
    )
    reviews = ReviewSyncEngine(remote, review_store, kv_store, connectivity, resilience)
    sleep = RecordingSleep()
    return SyncOrchestrator(delta, reviews, connectivity, reset_delay_sec=3.0, sleep=sleep), sleep


@pytest.fixture
def orchestrator(remote, kv_store, connectivity, resilience, attraction_store, review_store):
    orch, _ = _build(remote, kv_store, connectivity, resilience, attraction_store, review_store)
    return orch


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_successful_sync_publishes_states_and_resets(
    remote, kv_store, connectivity, resilience, attraction_store, review_store
):
    orch, sleep = _build(remote, kv_store, connectivity, resilience, attraction_store, review_store)
    remote.put("attractions", make_attraction("a1", PAST))
    remote.put("reviews", make_review("r1", "a1", PAST))
    seen = []
    orch.state.subscribe(seen.append)

    result = await orch.sync()
    await _settle()

    assert result.success
    assert result.added_count == 2
    assert seen[0] == Idle()
    assert seen[1] == Syncing(full=False)
    assert isinstance(seen[2], Success)
    assert seen[2].result == result
    assert seen[3] == Idle()
    assert sleep.delays == [3.0]
    assert set(review_store.rows) == {"r1"}


@pytest.mark.asyncio
async def test_review_failure_keeps_attraction_progress(
    orchestrator, remote, kv_store, attraction_store, review_store
):
    kv_store.data[cursor_key("attractions")] = OLD_CURSOR
    remote.put("attractions", make_attraction("a1", "2025-03-01T00:00:00Z"))
    # Empty review cache goes through list_all; attractions use list_since
    remote.fail("list_all", server_error(404))

    result = await orchestrator.sync()

    assert not result.success
    assert result.error_kind is ErrorKind.CLIENT_ERROR
    assert result.added_count == 1
    assert kv_store.data[cursor_key("attractions")] != OLD_CURSOR
    assert set(attraction_store.rows) == {"a1"}
    assert review_store.rows == {}
    assert orchestrator.state.value == Error(user_message(ErrorKind.CLIENT_ERROR), ErrorKind.CLIENT_ERROR)


@pytest.mark.asyncio
async def test_attraction_failure_skips_reviews(orchestrator, remote):
    remote.fail("list_all", server_error(400))

    result = await orchestrator.sync()

    assert result.error_kind is ErrorKind.CLIENT_ERROR
    assert remote.count_calls("list_all") == 1
    assert all(call[1] == "attractions" for call in remote.calls)


@pytest.mark.asyncio
async def test_offline_sync_reports_error_without_remote_calls(orchestrator, remote, connectivity):
    connectivity.online = False

    result = await orchestrator.sync()

    assert result.error_kind is ErrorKind.OFFLINE
    assert remote.calls == []
    assert isinstance(orchestrator.state.value, Error)
    assert orchestrator.state.value.message == user_message(ErrorKind.OFFLINE)


@pytest.mark.asyncio
async def test_second_request_while_running_is_rejected(
    kv_store, connectivity, resilience, attraction_store, review_store
):
    remote = _GatedRemote()
    orch, _ = _build(remote, kv_store, connectivity, resilience, attraction_store, review_store)

    first = asyncio.create_task(orch.sync())
    await _settle()
    assert orch.is_syncing
    assert orch.state.value == Syncing(full=False)

    second = await orch.sync()

    assert second.error_kind is ErrorKind.ALREADY_IN_PROGRESS
    assert orch.state.value == Syncing(full=False)

    remote.release.set()
    assert (await first).success
    assert not orch.is_syncing
    await orch.stop()


@pytest.mark.asyncio
async def test_force_full_sync_replaces_collections(
    orchestrator, remote, attraction_store, review_store
):
    remote.put("attractions", make_attraction("a1", PAST), make_attraction("a2", PAST))
    remote.put("reviews", make_review("r1", "a1", PAST))
    await orchestrator.sync()
    attraction_store.rows["a1"]["is_favorite"] = True
    remote.records["attractions"].pop("a2")

    result = await orchestrator.force_full_sync()

    assert result.success
    assert result.deleted_count == 1
    assert set(attraction_store.rows) == {"a1"}
    assert attraction_store.rows["a1"]["is_favorite"] is True
    assert remote.count_calls("list_all") == 4


@pytest.mark.asyncio
async def test_trigger_sync_runs_in_background(orchestrator, remote):
    remote.put("attractions", make_attraction("a1", PAST))

    flow = orchestrator.trigger_sync()
    assert flow is orchestrator.state
    await _settle(30)

    assert remote.count_calls("list_all") == 2
    await orchestrator.stop()


@pytest.mark.asyncio
async def test_regained_connectivity_triggers_sync(orchestrator, remote, connectivity):
    orchestrator.start()
    connectivity.push(ConnectivityStatus.UNAVAILABLE)
    await _settle()
    assert remote.calls == []

    connectivity.push(ConnectivityStatus.AVAILABLE)
    await _settle(30)
    assert remote.count_calls("list_all") >= 1

    await orchestrator.stop()
