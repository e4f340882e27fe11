"""
Redis client wrapper.

Responsibilities:
  • LikeSets — SET keyed by {kind}:{entity_id}:likedBy
               member = user_id of someone who currently likes the entity

The API mutates LikeSets at request time (hydrating them from the durable
store when absent). The sync worker discovers them with SCAN, reconciles
them into the database and deletes them.

All Redis connection / timeout failures surface as FastStoreUnavailable:
there is no durable fallback for like state while Redis is down.
"""
import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterable, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from tunesync.config import settings
from tunesync.errors import FastStoreUnavailable
from tunesync.keys import HYDRATED_MARKER

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        socket_timeout=settings.redis_socket_timeout,
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


@contextmanager
def _fast_store_errors(operation: str, key: str):
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        logger.error("Redis unavailable during %s on %s: %s", operation, key, exc)
        raise FastStoreUnavailable(f"Redis unavailable during {operation}") from exc


SeedLoader = Callable[[], Awaitable[Iterable[str]]]


class MembershipStore:
    """Set-oriented view over Redis used for the likedBy sets."""

    def __init__(
        self,
        redis: aioredis.Redis,
        scan_count: int = settings.redis_scan_count,
        watch_retries: int = settings.redis_watch_retries,
    ):
        self._redis = redis
        self._scan_count = scan_count
        self._watch_retries = watch_retries

    # ─────────────────────── Primitive set operations ──────────────────────

    async def exists(self, key: str) -> bool:
        with _fast_store_errors("exists", key):
            return bool(await self._redis.exists(key))

    async def add_members(self, key: str, members: Iterable[str]) -> int:
        members = [m for m in members if m]
        if not members:
            return 0
        with _fast_store_errors("add_members", key):
            return await self._redis.sadd(key, *members)

    async def remove_member(self, key: str, member: str) -> bool:
        with _fast_store_errors("remove_member", key):
            return bool(await self._redis.srem(key, member))

    async def list_members(self, key: str) -> list[str]:
        with _fast_store_errors("list_members", key):
            members = await self._redis.smembers(key)
        return sorted(m for m in members if m != HYDRATED_MARKER)

    async def delete_key(self, key: str) -> None:
        with _fast_store_errors("delete_key", key):
            await self._redis.delete(key)

    async def delete_keys(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        with _fast_store_errors("delete_keys", keys[0]):
            return await self._redis.delete(*keys)

    async def list_keys_matching(self, pattern: str) -> list[str]:
        """
        Enumerate keys with SCAN rather than KEYS so discovery never blocks
        Redis. SCAN may yield a key more than once; duplicates are dropped.
        """
        with _fast_store_errors("list_keys_matching", pattern):
            keys = [
                key
                async for key in self._redis.scan_iter(
                    match=pattern, count=self._scan_count
                )
            ]
        return list(dict.fromkeys(keys))

    # ─────────────────────── Optimistic transactions ───────────────────────

    async def mutate_member(
        self,
        key: str,
        member: str,
        *,
        add: bool,
        seed_loader: SeedLoader,
    ) -> bool:
        """
        Add or remove `member`, hydrating the set from `seed_loader` first if
        the key does not exist. Returns True if membership actually changed.
        Hydration always writes HYDRATED_MARKER, so an unlike that removes
        the last real member still leaves a pending (empty) LikeSet behind.

        WATCH makes the existence check and the mutation one atomic unit: if
        a flush deletes the key (or another request hydrates it) in between,
        EXEC aborts and we start over against the new state.
        """
        with _fast_store_errors("mutate_member", key):
            for attempt in range(1, self._watch_retries + 1):
                async with self._redis.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        seed: list[str] = []
                        if not await pipe.exists(key):
                            seed = [m for m in await seed_loader() if m]
                            seed.append(HYDRATED_MARKER)
                        pipe.multi()
                        if seed:
                            pipe.sadd(key, *seed)
                        if add:
                            pipe.sadd(key, member)
                        else:
                            pipe.srem(key, member)
                        results = await pipe.execute()
                    except WatchError:
                        logger.debug("WATCH conflict on %s (attempt %d)", key, attempt)
                        continue
                if seed:
                    logger.debug("Hydrated %s with %d members", key, len(seed) - 1)
                return bool(results[-1])
        raise FastStoreUnavailable(
            f"Gave up on {key} after {self._watch_retries} conflicting updates"
        )

    async def delete_if_unchanged(self, key: str, expected: Iterable[str]) -> bool:
        """
        Delete `key` only if its members still equal `expected`.

        Returns False (key kept) when the set was modified after it was read,
        so likes that arrive mid-flush stay pending for the next tick.
        """
        expected = set(expected)
        with _fast_store_errors("delete_if_unchanged", key):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.smembers(key)
                    if set(current) - {HYDRATED_MARKER} != expected:
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    await pipe.execute()
                except WatchError:
                    return False
        return True
