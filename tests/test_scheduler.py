import asyncio

import pytest
from redis.exceptions import ResponseError

from tunesync.errors import FastStoreUnavailable
from tunesync.keys import EntityKind
from tunesync.sync.flusher import FlushOutcome
from tunesync.sync.scheduler import SyncScheduler


async def test_tick_without_pending_keys_is_a_noop(membership, flusher):
    scheduler = SyncScheduler(membership, flusher, interval=60)

    outcomes = await scheduler.run_once()

    assert set(outcomes) == {EntityKind.SONG, EntityKind.COMMENT}
    assert all(o.total == 0 and o.ok for o in outcomes.values())


async def test_tick_flushes_both_kinds(coordinator, flusher, membership, records, make_song, make_comment):
    await make_song("S1")
    await make_comment("S1", comment_id="C1")
    await coordinator.like(EntityKind.SONG, "S1", "U1")
    await coordinator.like(EntityKind.COMMENT, "C1", "U2")
    scheduler = SyncScheduler(membership, flusher, interval=60)

    outcomes = await scheduler.run_once()

    assert outcomes[EntityKind.SONG].succeeded == ["song:S1:likedBy"]
    assert outcomes[EntityKind.COMMENT].succeeded == ["comment:C1:likedBy"]
    assert await membership.list_keys_matching("*:likedBy") == []
    song = await records.find_entity_by_id(EntityKind.SONG, "S1")
    assert (song.like_count, song.comment_count) == (1, 1)


class BlockingFlusher:
    """Flusher double whose flush blocks until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = []

    def prune_backoff(self, kind, live_keys):
        pass

    async def flush_keys(self, kind, keys):
        self.calls.append((kind, list(keys)))
        self.started.set()
        await self.release.wait()
        return FlushOutcome(kind, succeeded=list(keys))


async def test_busy_kind_skips_overlapping_tick(membership):
    await membership.add_members("song:S1:likedBy", ["U1"])
    flusher = BlockingFlusher()
    scheduler = SyncScheduler(membership, flusher, interval=60, kinds=[EntityKind.SONG])

    first = asyncio.create_task(scheduler.run_kind(EntityKind.SONG))
    await flusher.started.wait()

    assert await scheduler.run_kind(EntityKind.SONG) is None

    flusher.release.set()
    outcome = await first
    assert outcome.succeeded == ["song:S1:likedBy"]
    assert len(flusher.calls) == 1


async def test_one_kind_does_not_block_the_other(membership):
    await membership.add_members("song:S1:likedBy", ["U1"])
    flusher = BlockingFlusher()
    scheduler = SyncScheduler(membership, flusher, interval=60)

    blocked = asyncio.create_task(scheduler.run_kind(EntityKind.SONG))
    await flusher.started.wait()

    # Comments have nothing pending and complete while songs are still draining
    comments = await asyncio.wait_for(scheduler.run_kind(EntityKind.COMMENT), timeout=1)
    assert comments.total == 0
    assert not blocked.done()

    flusher.release.set()
    await blocked


async def test_run_forever_drains_in_flight_tick_on_stop(membership):
    await membership.add_members("song:S1:likedBy", ["U1"])
    flusher = BlockingFlusher()
    scheduler = SyncScheduler(membership, flusher, interval=0.01, kinds=[EntityKind.SONG])

    loop_task = asyncio.create_task(scheduler.run_forever())
    await flusher.started.wait()
    await asyncio.sleep(0.05)   # several intervals elapse while the tick is busy
    scheduler.stop()
    await asyncio.sleep(0.01)
    assert not loop_task.done()

    flusher.release.set()
    await asyncio.wait_for(loop_task, timeout=1)
    assert len(flusher.calls) == 1


class DownMembership:
    async def list_keys_matching(self, pattern):
        raise FastStoreUnavailable("Redis unavailable during list_keys_matching")


async def test_discovery_failure_is_contained(flusher):
    scheduler = SyncScheduler(DownMembership(), flusher, interval=60)

    outcomes = await scheduler.run_once()

    assert outcomes == {EntityKind.SONG: None, EntityKind.COMMENT: None}
    # The kind is released so the next tick can run
    assert await scheduler.run_kind(EntityKind.SONG) is None
    assert not scheduler._running


class LoadingMembership:
    async def list_keys_matching(self, pattern):
        raise ResponseError("LOADING Redis is loading the dataset in memory")


async def test_unexpected_redis_error_is_contained(flusher, caplog):
    scheduler = SyncScheduler(LoadingMembership(), flusher, interval=60)

    outcomes = await scheduler.run_once()

    assert outcomes == {EntityKind.SONG: None, EntityKind.COMMENT: None}
    assert not scheduler._running
    assert "Error syncing song likes" in caplog.text
    assert "LOADING" in caplog.text


def test_interval_must_be_positive(membership, flusher):
    with pytest.raises(ValueError):
        SyncScheduler(membership, flusher, interval=0)
