"""
Like sync worker — periodic Redis → database reconciliation.

Every `sync_interval_seconds`:
  1. SCAN Redis for pending song:*:likedBy and comment:*:likedBy keys.
  2. Flush them in batches of `sync_batch_size`, at most
     `sync_concurrency_limit` keys in flight at once.
  3. Delete each key once its likes are durable.

Key design decisions:
  • Write-behind — like/unlike requests only touch Redis; this worker
    absorbs the database writes, coalescing bursts into one write per
    entity per tick.
  • At-least-once — a key is deleted only after its durable writes
    succeed, so a crash or failure mid-flush just means it is retried next
    tick. Writes are absolute (derived counts, full user-id lists) so
    retries never double count.

Run:  python -m tunesync.worker          (loop until SIGINT / SIGTERM)
      python -m tunesync.worker --once   (single tick; non-zero exit on failures)
"""
import argparse
import asyncio
import logging
import signal
import sys

from tunesync.clients.redis_client import MembershipStore, close_redis, init_redis
from tunesync.config import settings
from tunesync.database import AsyncSessionLocal, engine
from tunesync.errors import PartialBatchFailure
from tunesync.stores.records import DurableRecordStore
from tunesync.sync.flusher import BatchFlusher
from tunesync.sync.scheduler import SyncScheduler
from tunesync.telemetry import setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler(membership: MembershipStore, records: DurableRecordStore) -> SyncScheduler:
    flusher = BatchFlusher(membership, records)
    return SyncScheduler(membership, flusher)


async def main(once: bool = False) -> int:
    setup_tracing(service_name="tunesync-sync-worker")

    redis = await init_redis()
    membership = MembershipStore(redis)
    records = DurableRecordStore(AsyncSessionLocal)
    scheduler = build_scheduler(membership, records)

    try:
        if once:
            outcomes = await scheduler.run_once()
            exit_code = 0
            for kind, outcome in outcomes.items():
                if outcome is None:
                    logger.error("%s sync tick did not run", kind.value)
                    exit_code = 1
                    continue
                try:
                    outcome.raise_for_failures()
                except PartialBatchFailure as exc:
                    logger.error("%s", exc)
                    exit_code = 1
            return exit_code

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)
        logger.info(
            "Like sync worker running (batch=%d, concurrency=%d)",
            settings.sync_batch_size, settings.sync_concurrency_limit,
        )
        await scheduler.run_forever()
        return 0
    finally:
        await close_redis()
        await engine.dispose()


def _cli() -> None:
    parser = argparse.ArgumentParser(description="Sync Redis likes to the database")
    parser.add_argument("--once", action="store_true", help="Run a single sync tick and exit")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(once=args.once)))


if __name__ == "__main__":
    _cli()
