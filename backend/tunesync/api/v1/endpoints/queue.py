"""
Queue & voting endpoints.

The room document in the store is the source of truth; every change goes
through the same queue service and advancer the room sessions use, and
reaches browsers as a snapshot over the room's WebSocket feed.
"""
import logging
from typing import Any
from fastapi import APIRouter, Depends, HTTPException

from tunesync.api import deps
from tunesync.api.v1.endpoints.rooms import load_room, load_room_as_creator
from tunesync.core.config import settings
from tunesync.models.user import Identity
from tunesync.schemas.queue import (
    AdvanceResponse,
    QueueAddRequest,
    QueueAddResponse,
    QueueListResponse,
    QueueReorderRequest,
    VoteSkipResponse,
)
from tunesync.services.advancement import AdvanceReason, Advancer
from tunesync.services.queue_service import (
    InvalidQueueOrderError,
    NotRoomCreatorError,
    QueuePermissionError,
    QueueService,
    build_song,
)
from tunesync.services.room_store import RoomNotFoundError, RoomStore, StoreWriteError
from tunesync.services.vote_skip import NoSongPlayingError, toggle_skip_vote

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, RoomNotFoundError):
        return HTTPException(status_code=404, detail="Room not found")
    if isinstance(e, (NotRoomCreatorError, QueuePermissionError)):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, InvalidQueueOrderError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NoSongPlayingError):
        return HTTPException(status_code=400, detail="No song is currently playing")
    return HTTPException(status_code=503, detail="Could not save room state")


QUEUE_ERRORS = (
    RoomNotFoundError,
    StoreWriteError,
    NotRoomCreatorError,
    QueuePermissionError,
    InvalidQueueOrderError,
    NoSongPlayingError,
)


@router.get("/{room_id}/queue", response_model=QueueListResponse)
async def get_queue(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """Get the current queue for a room."""
    room = await load_room(store, room_id)
    return QueueListResponse(now_playing=room.currently_playing, queue=room.queue)


@router.post("/{room_id}/queue", response_model=QueueAddResponse)
async def add_to_queue(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
    payload: QueueAddRequest,
) -> Any:
    """Add a song to the queue. Starts playing at once if the room is idle."""
    song = build_song(
        current_user,
        store.now_ms(),
        video_id=payload.video_id,
        title=payload.title,
        thumbnail=payload.thumbnail_url,
        channel_title=payload.channel_title,
        duration=payload.duration,
    )
    try:
        outcome = await QueueService(store).append(room_id, current_user, song)
    except QUEUE_ERRORS as e:
        raise _http_error(e)
    return QueueAddResponse(song=song, status=outcome.value)


@router.delete("/{room_id}/queue/{song_id}", response_model=QueueListResponse)
async def remove_from_queue(
    room_id: str,
    song_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """Remove a queued song. Members may remove their own songs, the creator any song."""
    try:
        removed = await QueueService(store).remove(room_id, current_user, song_id)
    except QUEUE_ERRORS as e:
        raise _http_error(e)
    if removed is None:
        raise HTTPException(status_code=404, detail="Song is not in the queue")
    room = await load_room(store, room_id)
    return QueueListResponse(now_playing=room.currently_playing, queue=room.queue)


@router.put("/{room_id}/queue/order", response_model=QueueListResponse)
async def reorder_queue(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
    payload: QueueReorderRequest,
) -> Any:
    """Creator only: reorder. Payload: { "songIds": [...] }, a permutation of the queue."""
    try:
        await QueueService(store).reorder_by_ids(room_id, current_user, payload.song_ids)
    except QUEUE_ERRORS as e:
        raise _http_error(e)
    room = await load_room(store, room_id)
    return QueueListResponse(now_playing=room.currently_playing, queue=room.queue)


@router.post("/{room_id}/queue/shuffle", response_model=QueueListResponse)
async def shuffle_queue(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """Creator only: shuffle the whole queue."""
    try:
        await QueueService(store).shuffle(room_id, current_user)
    except QUEUE_ERRORS as e:
        raise _http_error(e)
    room = await load_room(store, room_id)
    return QueueListResponse(now_playing=room.currently_playing, queue=room.queue)


@router.post("/{room_id}/queue/skip", response_model=AdvanceResponse)
async def creator_skip(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """Creator only: skip the current song."""
    room = await load_room_as_creator(store, room_id, current_user)
    if room.currently_playing is None:
        raise HTTPException(status_code=400, detail="No song is currently playing")

    result = await Advancer(store, room_id).advance(room.currently_playing.id, AdvanceReason.SKIP_COMMAND)
    if result is None:
        # someone else advanced first (or the write failed); report what is playing now
        room = await load_room(store, room_id)
        return AdvanceResponse(advanced=False, now_playing=room.currently_playing)
    return AdvanceResponse(advanced=True, now_playing=result.now_playing)


@router.post("/{room_id}/queue/vote-skip", response_model=VoteSkipResponse)
async def vote_skip(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """Any member: toggle a vote to skip the current song.

    The creator's session acts on the quorum.
    """
    try:
        room = await toggle_skip_vote(store, room_id, current_user.uid)
    except QUEUE_ERRORS as e:
        raise _http_error(e)

    voters = room.skip_voters()
    threshold = settings.VOTE_SKIP_THRESHOLD
    if len(voters) >= threshold:
        logger.info(f"Vote-skip quorum reached in {room_id} ({len(voters)}/{threshold})")
    return VoteSkipResponse(
        voted=current_user.uid in voters,
        vote_count=len(voters),
        threshold=threshold,
        quorum_reached=len(voters) >= threshold,
    )
