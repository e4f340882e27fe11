"""
Comment endpoints:
  POST   /comments/             — comment on a song, or reply to a comment
  PATCH  /comments/{id}         — update allow-listed fields
  DELETE /comments/{id}         — delete a comment and all of its replies
  POST   /comments/{id}/like    — like a comment
  POST   /comments/{id}/unlike  — unlike a comment
"""
import logging

from fastapi import APIRouter, Depends, status

from tunesync.clients.redis_client import MembershipStore
from tunesync.dependencies import get_coordinator, get_membership, get_records
from tunesync.keys import EntityKind, like_set_key
from tunesync.likes import LikeCoordinator
from tunesync.schemas import (
    CommentCreate,
    CommentDeleteResponse,
    CommentResponse,
    CommentUpdate,
    LikeRequest,
    LikeResult,
    UnlikeResult,
)
from tunesync.stores.records import DurableRecordStore

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    body: CommentCreate,
    records: DurableRecordStore = Depends(get_records),
):
    return await records.create_comment(
        song_id=body.song_id,
        user_id=body.user_id,
        content=body.content,
        parent_comment_id=body.parent_comment_id,
    )


@router.patch("/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: str,
    body: CommentUpdate,
    records: DurableRecordStore = Depends(get_records),
):
    return await records.update_comment(comment_id, body)


@router.delete("/{comment_id}", response_model=CommentDeleteResponse)
async def delete_comment(
    comment_id: str,
    records: DurableRecordStore = Depends(get_records),
    membership: MembershipStore = Depends(get_membership),
):
    """
    Delete the comment subtree, then drop any unflushed LikeSets for it so
    the sync worker does not resurrect like records for deleted comments.
    """
    deleted = await records.delete_comment_tree(comment_id)
    await membership.delete_keys(like_set_key(EntityKind.COMMENT, cid) for cid in deleted)
    return CommentDeleteResponse(deleted_comment_ids=deleted)


@router.post("/{comment_id}/like", response_model=LikeResult)
async def like_comment(
    comment_id: str,
    body: LikeRequest,
    coordinator: LikeCoordinator = Depends(get_coordinator),
):
    return await coordinator.like(EntityKind.COMMENT, comment_id, body.user_id)


@router.post("/{comment_id}/unlike", response_model=UnlikeResult)
async def unlike_comment(
    comment_id: str,
    body: LikeRequest,
    coordinator: LikeCoordinator = Depends(get_coordinator),
):
    return await coordinator.unlike(EntityKind.COMMENT, comment_id, body.user_id)
