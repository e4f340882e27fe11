"""
Song endpoints:
  GET   /songs/{id}        — fetch a song (counters as of the last sync)
  PATCH /songs/{id}        — update allow-listed metadata
  POST  /songs/{id}/like   — like a song
  POST  /songs/{id}/unlike — unlike a song
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from tunesync.dependencies import get_coordinator, get_records
from tunesync.keys import EntityKind
from tunesync.likes import LikeCoordinator
from tunesync.schemas import LikeRequest, LikeResult, SongResponse, SongUpdate, UnlikeResult
from tunesync.stores.records import DurableRecordStore

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{song_id}", response_model=SongResponse)
async def get_song(song_id: str, records: DurableRecordStore = Depends(get_records)):
    song = await records.find_entity_by_id(EntityKind.SONG, song_id)
    if not song:
        raise HTTPException(status_code=404, detail="Song not found")
    return song


@router.patch("/{song_id}", response_model=SongResponse)
async def update_song(
    song_id: str,
    body: SongUpdate,
    records: DurableRecordStore = Depends(get_records),
):
    return await records.update_song(song_id, body)


@router.post("/{song_id}/like", response_model=LikeResult)
async def like_song(
    song_id: str,
    body: LikeRequest,
    coordinator: LikeCoordinator = Depends(get_coordinator),
):
    """Record a like in Redis; the sync worker persists it later."""
    return await coordinator.like(EntityKind.SONG, song_id, body.user_id)


@router.post("/{song_id}/unlike", response_model=UnlikeResult)
async def unlike_song(
    song_id: str,
    body: LikeRequest,
    coordinator: LikeCoordinator = Depends(get_coordinator),
):
    return await coordinator.unlike(EntityKind.SONG, song_id, body.user_id)
