"""
Sync scheduler — fires the like flush on a fixed interval.

Each tick runs one independent pipeline per entity kind (songs, comments):
discover the kind's pending LikeSet keys with SCAN, then hand them to the
BatchFlusher. A kind whose previous tick is still draining skips the new
tick instead of stacking a second flush pool on top of the first.

stop() ends the loop; ticks already in flight are drained before
run_forever() returns.
"""
import asyncio
import logging
import time
from typing import Iterable, Optional

from tunesync.clients.redis_client import MembershipStore
from tunesync.config import settings
from tunesync.errors import FastStoreUnavailable
from tunesync.keys import EntityKind, like_set_pattern
from tunesync.sync.flusher import BatchFlusher, FlushOutcome
from tunesync.telemetry import FLUSH_TICK_LATENCY, PENDING_KEYS, TICKS_SKIPPED_TOTAL

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(
        self,
        membership: MembershipStore,
        flusher: BatchFlusher,
        interval: float = settings.sync_interval_seconds,
        kinds: Iterable[EntityKind] = tuple(EntityKind),
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.membership = membership
        self.flusher = flusher
        self.interval = interval
        self.kinds = tuple(kinds)
        self._running: set[EntityKind] = set()
        self._tasks: set[asyncio.Task] = set()
        self._stop = asyncio.Event()

    async def discover(self, kind: EntityKind) -> list[str]:
        keys = await self.membership.list_keys_matching(like_set_pattern(kind))
        PENDING_KEYS.labels(kind=kind.value).set(len(keys))
        self.flusher.prune_backoff(kind, keys)
        return keys

    async def run_kind(self, kind: EntityKind) -> Optional[FlushOutcome]:
        """Run one tick for `kind`; None if skipped or discovery failed."""
        if not self._reserve(kind):
            return None
        return await self._run_reserved(kind)

    async def run_once(self) -> dict[EntityKind, Optional[FlushOutcome]]:
        """Run a single tick for every kind concurrently and wait for it."""
        outcomes = await asyncio.gather(*(self.run_kind(kind) for kind in self.kinds))
        return dict(zip(self.kinds, outcomes))

    async def run_forever(self) -> None:
        logger.info(
            "Like sync scheduler started (interval=%.1fs, kinds=%s)",
            self.interval, ", ".join(k.value for k in self.kinds),
        )
        try:
            while not self._stop.is_set():
                for kind in self.kinds:
                    self._spawn(kind)
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.drain()
            logger.info("Like sync scheduler stopped")

    def stop(self) -> None:
        self._stop.set()

    async def drain(self) -> None:
        if self._tasks:
            logger.info("Draining %d in-flight sync tick(s)", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ─────────────────────── Internals ─────────────────────────────────────

    def _reserve(self, kind: EntityKind) -> bool:
        if kind in self._running:
            TICKS_SKIPPED_TOTAL.labels(kind=kind.value).inc()
            logger.warning("Previous %s sync tick still draining — skipping this tick", kind.value)
            return False
        self._running.add(kind)
        return True

    def _spawn(self, kind: EntityKind) -> None:
        if not self._reserve(kind):
            return
        task = asyncio.create_task(self._run_reserved(kind), name=f"like-sync-{kind.value}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_reserved(self, kind: EntityKind) -> Optional[FlushOutcome]:
        t0 = time.perf_counter()
        try:
            keys = await self.discover(kind)
            if not keys:
                logger.info("No %s like keys to process", kind.value)
                return FlushOutcome(kind)

            outcome = await self.flusher.flush_keys(kind, keys)
            elapsed_ms = (time.perf_counter() - t0) * 1000
            log = logger.warning if outcome.failed else logger.info
            log(
                "Synced %s likes to the database: %d reconciled, %d failed, "
                "%d changed, %d deferred, %d skipped, %d orphaned (%.1fms)",
                kind.value, len(outcome.succeeded), len(outcome.failed),
                len(outcome.changed), len(outcome.deferred), len(outcome.skipped),
                len(outcome.orphaned), elapsed_ms,
            )
            return outcome
        except FastStoreUnavailable as exc:
            logger.error("Error syncing %s likes: %s", kind.value, exc)
            return None
        except Exception:
            logger.exception("Error syncing %s likes", kind.value)
            return None
        finally:
            FLUSH_TICK_LATENCY.labels(kind=kind.value).observe(time.perf_counter() - t0)
            self._running.discard(kind)
