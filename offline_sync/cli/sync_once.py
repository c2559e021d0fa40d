"""Run one sync pass against the configured remote and print the result.

Usage:
    # Incremental pass (delta since the stored cursors)
    python -m offline_sync.cli.sync_once

    # Refetch and replace both collections
    python -m offline_sync.cli.sync_once --full

    # Use another database file
    python -m offline_sync.cli.sync_once --db /tmp/cache.db
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from offline_sync.config import load_config
from offline_sync.core.logging_utils import setup_json_logging
from offline_sync.di.container import build_container
from offline_sync.domain.models import SyncResult
from offline_sync.sync.connectivity import ConnectivityMonitor, check_reachability

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one offline-sync pass.")
    parser.add_argument("--full", action="store_true", help="replace the cache instead of a delta")
    parser.add_argument("--db", default=None, help="SQLite path (overrides DB_PATH)")
    return parser.parse_args(argv)


async def run(argv: list[str] | None = None) -> SyncResult:
    args = _parse_args(argv)
    overrides = {"database": {"path": args.db}} if args.db else {}
    cfg = load_config(**overrides)
    setup_json_logging(
        cfg.runtime.log_level,
        use_loguru=cfg.runtime.log_use_loguru,
        log_file=cfg.runtime.log_file,
    )

    status = await check_reachability(cfg.remote.api_url, timeout=cfg.remote.connect_timeout_sec)
    async with await build_container(cfg, connectivity=ConnectivityMonitor(status)) as container:
        orchestrator = container.orchestrator
        if args.full:
            return await orchestrator.force_full_sync()
        return await orchestrator.sync()


def main(argv: list[str] | None = None) -> int:
    result = asyncio.run(run(argv))
    sys.stdout.write(result.model_dump_json() + "\n")
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
