"""
Shared fixtures: a fresh SQLite database (aiosqlite) and a fresh fake Redis
server per test, plus helpers to seed songs and comments.
"""
import os

os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("DB_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")

import fakeredis  # noqa: E402
import pytest  # noqa: E402

from tunesync.clients.redis_client import MembershipStore  # noqa: E402
from tunesync.database import create_engine, create_session_factory, init_db  # noqa: E402
from tunesync.likes import LikeCoordinator  # noqa: E402
from tunesync.models import Comment, Song  # noqa: E402
from tunesync.stores.records import DurableRecordStore  # noqa: E402
from tunesync.sync.flusher import BatchFlusher  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'tunesync.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def records(session_factory):
    return DurableRecordStore(session_factory)


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def membership(redis):
    return MembershipStore(redis, scan_count=10, watch_retries=10)


@pytest.fixture
def coordinator(membership, records):
    return LikeCoordinator(membership, records)


@pytest.fixture
def flusher(membership, records):
    # SQLite serialises writers; one key in flight keeps the tests deterministic
    return BatchFlusher(
        membership,
        records,
        batch_size=100,
        concurrency_limit=1,
        key_timeout=5.0,
        backoff_base=0.0,
    )


@pytest.fixture
def make_song(session_factory):
    async def _make(song_id: str = None, title: str = "Blue in Green", **fields) -> Song:
        song = Song(owner_id="owner-1", title=title, **fields)
        if song_id:
            song.song_id = song_id
        async with session_factory() as session:
            session.add(song)
            await session.commit()
        return song

    return _make


@pytest.fixture
def make_comment(session_factory):
    async def _make(
        song_id: str,
        comment_id: str = None,
        parent_comment_id: str = None,
        content: str = "great track",
    ) -> Comment:
        comment = Comment(
            song_id=song_id,
            user_id="commenter-1",
            content=content,
            parent_comment_id=parent_comment_id,
        )
        if comment_id:
            comment.comment_id = comment_id
        async with session_factory() as session:
            session.add(comment)
            await session.commit()
        return comment

    return _make
