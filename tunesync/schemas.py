"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

Update schemas forbid unknown fields: only the listed attributes of a song or
comment can be changed by a client, never the derived counters.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ──────────────────────────── Likes ───────────────────────────────────────

class LikeRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=36)


class LikeResult(BaseModel):
    already_liked: bool


class UnlikeResult(BaseModel):
    already_unliked: bool


# ──────────────────────────── Songs ───────────────────────────────────────

class SongUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)

    class Config:
        extra = "forbid"


class SongResponse(BaseModel):
    song_id: str
    owner_id: str
    title: str
    description: Optional[str]
    duration: float
    views: int
    like_count: int
    comment_count: int
    created_at: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Comments ────────────────────────────────────

class CommentCreate(BaseModel):
    song_id: str
    user_id: str
    content: str = Field(..., min_length=1, max_length=1000)
    parent_comment_id: Optional[str] = None   # set when replying


class CommentUpdate(BaseModel):
    content: Optional[str] = Field(None, min_length=1, max_length=1000)
    is_flagged: Optional[bool] = None

    class Config:
        extra = "forbid"


class CommentResponse(BaseModel):
    comment_id: str
    song_id: str
    user_id: str
    parent_comment_id: Optional[str]
    content: str
    is_flagged: bool
    like_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class CommentDeleteResponse(BaseModel):
    deleted_comment_ids: list[str]
