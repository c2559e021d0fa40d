"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from offline_sync.db.session import DatabaseSessionManager
from offline_sync.network.resilience import NetworkResilienceLayer
from tests.fakes import (
    FakeRemoteApi,
    InMemoryKeyValueStore,
    InMemoryRecordStore,
    InMemoryReviewStore,
    RecordingSleep,
    StaticConnectivity,
)


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def attraction_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def review_store() -> InMemoryReviewStore:
    return InMemoryReviewStore()


@pytest.fixture
def remote() -> FakeRemoteApi:
    return FakeRemoteApi()


@pytest.fixture
def connectivity() -> StaticConnectivity:
    return StaticConnectivity(online=True)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def resilience(recording_sleep: RecordingSleep) -> NetworkResilienceLayer:
    return NetworkResilienceLayer(max_retries=3, base_delay=1.0, jitter=0.0, sleep=recording_sleep)


@pytest.fixture
def db():
    session = DatabaseSessionManager(":memory:")
    session.migrate()
    yield session
    session.close()
