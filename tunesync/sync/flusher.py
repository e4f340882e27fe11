"""
Batch flusher — reconciles Redis LikeSets into the durable store.

Per key:
  1. Parse the entity id out of `{kind}:{entity_id}:likedBy`.
  2. Read the full member set from Redis.
  3. Upsert the LikeRecord with the member set (full replace).
  4. Set the entity's like_count to the size of the set.
  5. Comments only: recompute the parent song's comment_count.
  6. Delete the Redis key, but only if 3–5 succeeded and the set is
     unchanged since step 2.

A failing key stays in Redis and is picked up again by the next tick; its
siblings in the batch are unaffected. Because every write is an absolute
value derived from the set, reprocessing a key any number of times converges
on the same durable state.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

from opentelemetry import trace

from tunesync.clients.redis_client import MembershipStore
from tunesync.config import settings
from tunesync.errors import FlushError, PartialBatchFailure
from tunesync.keys import EntityKind, parse_like_set_key
from tunesync.stores.records import DurableRecordStore
from tunesync.telemetry import FLUSH_KEYS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class KeyStatus(str, Enum):
    SUCCEEDED = "succeeded"   # durable store updated, Redis key deleted
    SKIPPED = "skipped"       # key vanished before it could be read
    CHANGED = "changed"       # durable store updated, set changed meanwhile
    DEFERRED = "deferred"     # key is backing off after recent failures
    ORPHANED = "orphaned"     # entity no longer exists; key dropped


@dataclass
class FlushOutcome:
    kind: EntityKind
    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, FlushError]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.succeeded) + len(self.failed) + len(self.skipped)
            + len(self.changed) + len(self.deferred) + len(self.orphaned)
        )

    @property
    def ok(self) -> bool:
        return not self.failed

    def record(self, key: str, status: KeyStatus) -> None:
        getattr(self, status.value).append(key)

    def merge(self, other: "FlushOutcome") -> None:
        for name in ("succeeded", "failed", "skipped", "changed", "deferred", "orphaned"):
            getattr(self, name).extend(getattr(other, name))

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self)


@dataclass
class _Backoff:
    failures: int
    retry_at: float


class BatchFlusher:
    def __init__(
        self,
        membership: MembershipStore,
        records: DurableRecordStore,
        batch_size: int = settings.sync_batch_size,
        concurrency_limit: int = settings.sync_concurrency_limit,
        key_timeout: float = settings.flush_key_timeout_seconds,
        backoff_base: float = settings.flush_backoff_base_seconds,
        backoff_max: float = settings.flush_backoff_max_seconds,
        sync_comment_counts: bool = settings.sync_comment_counts,
        clock: Callable[[], float] = time.monotonic,
    ):
        if batch_size < 1 or concurrency_limit < 1:
            raise ValueError("batch_size and concurrency_limit must be positive")
        self.membership = membership
        self.records = records
        self.batch_size = batch_size
        self.concurrency_limit = concurrency_limit
        self.key_timeout = key_timeout
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.sync_comment_counts = sync_comment_counts
        self._clock = clock
        self._backoff: dict[str, _Backoff] = {}

    async def flush_keys(self, kind: EntityKind, keys: Iterable[str]) -> FlushOutcome:
        """Split `keys` into batches of batch_size and flush them in turn."""
        keys = list(keys)
        outcome = FlushOutcome(kind)
        for start in range(0, len(keys), self.batch_size):
            outcome.merge(await self.flush_batch(kind, keys[start:start + self.batch_size]))
        return outcome

    async def flush_batch(self, kind: EntityKind, keys: list[str]) -> FlushOutcome:
        if len(keys) > self.batch_size:
            raise ValueError(f"Batch of {len(keys)} keys exceeds batch_size={self.batch_size}")

        semaphore = asyncio.Semaphore(self.concurrency_limit)

        async def bounded(key: str):
            async with semaphore:
                return await self._flush_key_guarded(kind, key)

        results = await asyncio.gather(*(bounded(key) for key in keys))

        outcome = FlushOutcome(kind)
        for key, result in zip(keys, results):
            if isinstance(result, FlushError):
                outcome.failed.append((key, result))
                FLUSH_KEYS_TOTAL.labels(kind=kind.value, outcome="failed").inc()
            else:
                outcome.record(key, result)
                FLUSH_KEYS_TOTAL.labels(kind=kind.value, outcome=result.value).inc()
        return outcome

    # ─────────────────────── Per-key unit of work ──────────────────────────

    async def _flush_key_guarded(self, kind: EntityKind, key: str) -> KeyStatus | FlushError:
        if self._in_backoff(key):
            return KeyStatus.DEFERRED
        try:
            status = await asyncio.wait_for(self._flush_key(kind, key), self.key_timeout)
        except asyncio.TimeoutError as exc:
            error = FlushError(key, exc)
            logger.error("Flush of %s timed out after %.1fs", key, self.key_timeout)
        except Exception as exc:
            error = FlushError(key, exc)
            logger.error("Flush of %s failed: %s", key, exc)
        else:
            self._backoff.pop(key, None)
            return status
        self._note_failure(key)
        return error

    async def _flush_key(self, kind: EntityKind, key: str) -> KeyStatus:
        with tracer.start_as_current_span("flush_key") as span:
            span.set_attribute("like.key", key)

            key_kind, entity_id = parse_like_set_key(key)
            if key_kind is not kind:
                raise ValueError(f"Key {key!r} does not belong to the {kind.value} pipeline")

            members = await self.membership.list_members(key)
            if not members and not await self.membership.exists(key):
                return KeyStatus.SKIPPED

            entity = await self.records.find_entity_by_id(kind, entity_id)
            if entity is None:
                logger.warning("%s %s no longer exists — dropping %s", kind.value, entity_id, key)
                await self.membership.delete_key(key)
                return KeyStatus.ORPHANED

            await self.records.upsert_like_record(kind, entity_id, members)
            await self.records.set_aggregate_field(kind, entity_id, "like_count", len(members))

            if kind is EntityKind.COMMENT and self.sync_comment_counts:
                await self._refresh_comment_count(entity.song_id)

            span.set_attribute("like.count", len(members))
            if await self.membership.delete_if_unchanged(key, members):
                return KeyStatus.SUCCEEDED
            logger.debug("%s changed during flush; leaving it pending", key)
            return KeyStatus.CHANGED

    async def _refresh_comment_count(self, song_id: str) -> None:
        comment_count = await self.records.count_child_documents(EntityKind.SONG, song_id)
        await self.records.set_aggregate_field(
            EntityKind.SONG, song_id, "comment_count", comment_count
        )

    # ─────────────────────── Backoff bookkeeping ───────────────────────────

    def _in_backoff(self, key: str) -> bool:
        entry: Optional[_Backoff] = self._backoff.get(key)
        return entry is not None and self._clock() < entry.retry_at

    def _note_failure(self, key: str) -> None:
        if self.backoff_base <= 0:
            return
        entry = self._backoff.get(key)
        failures = entry.failures + 1 if entry else 1
        delay = min(self.backoff_base * 2 ** (failures - 1), self.backoff_max)
        self._backoff[key] = _Backoff(failures=failures, retry_at=self._clock() + delay)

    def prune_backoff(self, kind: EntityKind, live_keys: Iterable[str]) -> None:
        """Drop backoff state for `kind` keys that are no longer in Redis."""
        live = set(live_keys)
        prefix = f"{kind.value}:"
        for key in [k for k in self._backoff if k.startswith(prefix) and k not in live]:
            del self._backoff[key]
