from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from offline_sync.auth.session_manager import SessionManager
from offline_sync.config import AppConfig, load_config
from offline_sync.db.session import DatabaseSessionManager
from offline_sync.network.client import RemoteApiClient
from offline_sync.network.resilience import NetworkResilienceLayer
from offline_sync.storage.attractions import SqliteAttractionRepository
from offline_sync.storage.kv_store import SqliteKeyValueStore
from offline_sync.storage.reviews import SqliteReviewRepository
from offline_sync.sync.connectivity import ConnectivityMonitor
from offline_sync.sync.delta_engine import DeltaSyncEngine, SyncedCollection
from offline_sync.sync.merge import ATTRACTIONS
from offline_sync.sync.orchestrator import SyncOrchestrator
from offline_sync.sync.reactions import ReactionFailurePolicy, ReactionReconciler
from offline_sync.sync.review_engine import ReviewSyncEngine

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


@dataclass
class SyncContainer:
    """Fully wired sync core. Close it with ``aclose()`` (or ``async with``)."""

    config: AppConfig
    db: DatabaseSessionManager
    kv_store: SqliteKeyValueStore
    attractions: SqliteAttractionRepository
    reviews: SqliteReviewRepository
    client: RemoteApiClient
    session: SessionManager
    connectivity: ConnectivityMonitor
    delta_engine: DeltaSyncEngine
    review_engine: ReviewSyncEngine
    reactions: ReactionReconciler
    orchestrator: SyncOrchestrator

    async def __aenter__(self) -> SyncContainer:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.orchestrator.stop()
        await self.review_engine.close()
        await self.reactions.drain()
        await self.client.aclose()
        self.db.close()


async def build_container(
    cfg: AppConfig | None = None,
    *,
    db: DatabaseSessionManager | None = None,
    connectivity: ConnectivityMonitor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    restore_session: bool = True,
) -> SyncContainer:
    """Construct the sync core with DI-friendly wiring.

    Args:
        cfg: Application configuration. If None, loads from environment.
        db: Database session manager. If None, creates (and migrates) from config.
        connectivity: Connectivity monitor. If None, starts as available.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
        restore_session: Load the persisted session from the key-value store.

    Returns:
        Configured SyncContainer with an open HTTP client.
    """
    cfg = cfg or load_config()

    if db is None:
        db = DatabaseSessionManager.from_config(cfg.database)
        db.migrate()

    kv_store = SqliteKeyValueStore(db)
    attractions = SqliteAttractionRepository(db)
    reviews = SqliteReviewRepository(db)
    connectivity = connectivity or ConnectivityMonitor()
    resilience = NetworkResilienceLayer.from_config(cfg.retry)

    client = RemoteApiClient.from_config(cfg.remote, transport=transport)
    session = SessionManager.from_config(cfg.session, kv_store, client, resilience=resilience)
    client.bind_session_manager(session)
    session.add_user_change_listener(reviews.async_mark_own_reviews)
    await client.open()

    delta_engine = DeltaSyncEngine(
        client,
        kv_store,
        connectivity,
        resilience,
        {ATTRACTIONS.name: SyncedCollection(binding=ATTRACTIONS, store=attractions)},
        batch_size=cfg.sync.batch_size,
        tombstones_enabled=cfg.sync.tombstones_enabled,
    )
    review_engine = ReviewSyncEngine(
        client,
        reviews,
        kv_store,
        connectivity,
        resilience,
        stale_threshold_sec=cfg.sync.review_stale_threshold_sec,
        batch_size=cfg.sync.batch_size,
        tombstones_enabled=cfg.sync.tombstones_enabled,
        user_id_provider=lambda: session.user_id,
    )
    reactions = ReactionReconciler(
        reviews,
        client,
        session,
        resilience,
        policy=(
            ReactionFailurePolicy.ROLLBACK
            if cfg.sync.reaction_rollback_on_failure
            else ReactionFailurePolicy.KEEP_OPTIMISTIC
        ),
    )
    orchestrator = SyncOrchestrator(
        delta_engine,
        review_engine,
        connectivity,
        reset_delay_sec=cfg.sync.state_reset_delay_sec,
    )

    if restore_session:
        await session.restore()

    logger.info(
        "sync_container_built",
        extra={"authenticated": session.is_authenticated, "batch_size": cfg.sync.batch_size},
    )
    return SyncContainer(
        config=cfg,
        db=db,
        kv_store=kv_store,
        attractions=attractions,
        reviews=reviews,
        client=client,
        session=session,
        connectivity=connectivity,
        delta_engine=delta_engine,
        review_engine=review_engine,
        reactions=reactions,
        orchestrator=orchestrator,
    )
