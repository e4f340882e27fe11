"""
SQLAlchemy ORM models for the durable store.

Tables:
  songs          — song metadata + derived like_count / comment_count
  comments       — comments on songs; replies point at parent_comment_id
  song_likes     — LikeRecord per song: full list of user_ids who liked it
  comment_likes  — LikeRecord per comment

The *_likes tables and the count columns are only ever written by the like
sync worker, which replaces them wholesale from the Redis LikeSets.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tunesync.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Song(Base):
    __tablename__ = "songs"

    song_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    duration: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_songs_owner", "owner_id"),)


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    song_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("songs.song_id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    parent_comment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("comments.comment_id")
    )
    content: Mapped[str] = mapped_column(String(1000), nullable=False)
    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        # comment_count recomputation counts by song
        Index("idx_comments_song", "song_id"),
        # subtree deletion walks replies by parent
        Index("idx_comments_parent", "parent_comment_id"),
    )


class SongLike(Base):
    __tablename__ = "song_likes"

    song_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("songs.song_id"), primary_key=True
    )
    user_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class CommentLike(Base):
    __tablename__ = "comment_likes"

    comment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("comments.comment_id"), primary_key=True
    )
    user_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
