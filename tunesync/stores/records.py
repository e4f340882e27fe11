"""
Durable record store — async SQLAlchemy over the songs / comments tables.

The like sync worker is the only writer of LikeRecords (song_likes,
comment_likes) and of the derived counters (like_count, comment_count). Both
are written as absolute values recomputed from an authoritative source, so a
retried or duplicated write converges instead of drifting.
"""
import logging
from collections import deque
from typing import Iterable, Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunesync.database import AsyncSessionLocal
from tunesync.errors import NotFoundError
from tunesync.keys import EntityKind
from tunesync.models import Comment, CommentLike, Song, SongLike
from tunesync.schemas import CommentUpdate, SongUpdate

logger = logging.getLogger(__name__)

Entity = Union[Song, Comment]

_ENTITY_MODELS = {
    EntityKind.SONG: (Song, "song_id"),
    EntityKind.COMMENT: (Comment, "comment_id"),
}

_LIKE_RECORD_MODELS = {
    EntityKind.SONG: (SongLike, "song_id"),
    EntityKind.COMMENT: (CommentLike, "comment_id"),
}

# Only derived counters may be written through set_aggregate_field
AGGREGATE_FIELDS = {
    EntityKind.SONG: frozenset({"like_count", "comment_count"}),
    EntityKind.COMMENT: frozenset({"like_count"}),
}


async def _count_song_comments(session: AsyncSession, song_id: str) -> int:
    result = await session.execute(
        select(func.count(Comment.comment_id)).where(Comment.song_id == song_id)
    )
    return result.scalar_one()


class DurableRecordStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self._session_factory = session_factory

    # ─────────────────────── Like sync primitives ──────────────────────────

    async def find_entity_by_id(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        model, _ = _ENTITY_MODELS[kind]
        async with self._session_factory() as session:
            return await session.get(model, entity_id)

    async def get_like_user_ids(self, kind: EntityKind, entity_id: str) -> list[str]:
        """Read the reconciled likers of an entity; used to hydrate LikeSets."""
        model, pk = _LIKE_RECORD_MODELS[kind]
        async with self._session_factory() as session:
            result = await session.execute(
                select(model.user_ids).where(getattr(model, pk) == entity_id)
            )
            user_ids = result.scalar_one_or_none()
        return [str(uid) for uid in user_ids or []]

    async def upsert_like_record(
        self, kind: EntityKind, entity_id: str, user_ids: Iterable[str]
    ) -> None:
        """Replace the stored liker list wholesale (never appends)."""
        model, pk = _LIKE_RECORD_MODELS[kind]
        user_ids = sorted(set(user_ids))
        async with self._session_factory() as session:
            record = await session.get(model, entity_id)
            if record is None:
                session.add(model(**{pk: entity_id, "user_ids": user_ids}))
            else:
                record.user_ids = user_ids
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent flush of the same key inserted the row first
                await session.rollback()
                await session.execute(
                    update(model)
                    .where(getattr(model, pk) == entity_id)
                    .values(user_ids=user_ids)
                )
                await session.commit()

    async def set_aggregate_field(
        self, kind: EntityKind, entity_id: str, field: str, value: int
    ) -> bool:
        """Write a derived counter. Returns False if the entity row is gone."""
        if field not in AGGREGATE_FIELDS[kind]:
            raise ValueError(f"{field!r} is not an aggregate field of {kind.value}")
        if value < 0:
            raise ValueError(f"{field} cannot be negative (got {value})")
        model, pk = _ENTITY_MODELS[kind]
        async with self._session_factory() as session:
            result = await session.execute(
                update(model).where(getattr(model, pk) == entity_id).values({field: value})
            )
            await session.commit()
        return result.rowcount > 0

    async def count_child_documents(self, parent_kind: EntityKind, parent_id: str) -> int:
        """Live comments on a song, or live direct replies to a comment."""
        async with self._session_factory() as session:
            if parent_kind is EntityKind.SONG:
                return await _count_song_comments(session, parent_id)
            result = await session.execute(
                select(func.count(Comment.comment_id)).where(
                    Comment.parent_comment_id == parent_id
                )
            )
            return result.scalar_one()

    # ─────────────────────── Comment lifecycle ─────────────────────────────

    async def create_comment(
        self,
        song_id: str,
        user_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> Comment:
        async with self._session_factory() as session:
            if await session.get(Song, song_id) is None:
                raise NotFoundError(EntityKind.SONG.value, song_id)
            if parent_comment_id is not None:
                parent = await session.get(Comment, parent_comment_id)
                if parent is None or parent.song_id != song_id:
                    raise NotFoundError(EntityKind.COMMENT.value, parent_comment_id)

            comment = Comment(
                song_id=song_id,
                user_id=user_id,
                content=content,
                parent_comment_id=parent_comment_id,
            )
            session.add(comment)
            await session.flush()
            comment_count = await _count_song_comments(session, song_id)
            await session.execute(
                update(Song).where(Song.song_id == song_id).values(comment_count=comment_count)
            )
            await session.commit()
            await session.refresh(comment)

        logger.info("Comment %s created on song %s", comment.comment_id, song_id)
        return comment

    async def delete_comment_tree(self, comment_id: str) -> list[str]:
        """
        Delete a comment, every reply beneath it, and their LikeRecords.

        Descendants are collected breadth-first with an explicit queue so
        reply depth never translates into call-stack depth. Returns the ids
        of all deleted comments, root first.
        """
        async with self._session_factory() as session:
            root = await session.get(Comment, comment_id)
            if root is None:
                raise NotFoundError(EntityKind.COMMENT.value, comment_id)
            song_id = root.song_id

            collected: list[str] = []
            queue = deque([comment_id])
            while queue:
                current = queue.popleft()
                collected.append(current)
                replies = await session.execute(
                    select(Comment.comment_id).where(Comment.parent_comment_id == current)
                )
                queue.extend(replies.scalars().all())

            await session.execute(
                delete(CommentLike).where(CommentLike.comment_id.in_(collected))
            )
            # Detach the subtree first so the self-referencing FK never sees
            # a child outliving its parent mid-statement
            await session.execute(
                update(Comment)
                .where(Comment.comment_id.in_(collected))
                .values(parent_comment_id=None)
            )
            await session.execute(delete(Comment).where(Comment.comment_id.in_(collected)))
            comment_count = await _count_song_comments(session, song_id)
            await session.execute(
                update(Song).where(Song.song_id == song_id).values(comment_count=comment_count)
            )
            await session.commit()

        logger.info(
            "Deleted comment %s and %d replies from song %s",
            comment_id, len(collected) - 1, song_id,
        )
        return collected

    # ─────────────────────── Allow-listed metadata updates ─────────────────

    async def update_song(self, song_id: str, changes: SongUpdate) -> Song:
        return await self._apply_update(
            EntityKind.SONG, song_id, changes.model_dump(exclude_unset=True, exclude_none=True)
        )

    async def update_comment(self, comment_id: str, changes: CommentUpdate) -> Comment:
        return await self._apply_update(
            EntityKind.COMMENT, comment_id, changes.model_dump(exclude_unset=True, exclude_none=True)
        )

    async def _apply_update(self, kind: EntityKind, entity_id: str, values: dict) -> Entity:
        model, _ = _ENTITY_MODELS[kind]
        async with self._session_factory() as session:
            entity = await session.get(model, entity_id)
            if entity is None:
                raise NotFoundError(kind.value, entity_id)
            for field, value in values.items():
                setattr(entity, field, value)
            await session.commit()
            await session.refresh(entity)
            return entity
