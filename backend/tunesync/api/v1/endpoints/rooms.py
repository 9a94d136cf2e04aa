from typing import Any, Optional
import random
import string
from fastapi import APIRouter, Body, Depends, HTTPException

from tunesync.api import deps
from tunesync.core.config import settings
from tunesync.models.room import Room
from tunesync.models.user import Identity
from tunesync.schemas.room import (
    ListenPermissionRequest,
    PlaybackResponse,
    RoomCreate,
    RoomCreated,
    RoomState,
    SeekRequest,
)
from tunesync.services.playback_clock import room_position
from tunesync.services.room_store import RoomExistsError, RoomNotFoundError, RoomStore, StoreWriteError
from tunesync.services.state_tree import SERVER_TIMESTAMP

router = APIRouter()


def generate_slug(length=8):
    chars = string.ascii_lowercase + string.digits
    return ''.join(random.choice(chars) for _ in range(length))


async def load_room(store: RoomStore, room_id: str) -> Room:
    doc = await store.get(room_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return Room.from_snapshot(room_id, doc)


async def load_room_as_creator(store: RoomStore, room_id: str, user: Identity) -> Room:
    room = await load_room(store, room_id)
    if not room.is_creator(user.uid):
        raise HTTPException(status_code=403, detail="Only the room creator can control playback")
    return room


async def write_playback(store: RoomStore, room_id: str, fields: dict) -> Room:
    try:
        await store.update(room_id, fields)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail="Room not found")
    except StoreWriteError:
        raise HTTPException(status_code=503, detail="Could not save room state")
    return await load_room(store, room_id)


@router.post("/", response_model=RoomCreated)
async def create_room(
    *,
    room_in: RoomCreate,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """
    Create new room. The caller becomes its creator for the room's lifetime.
    """
    doc = {
        "name": room_in.name,
        "createdBy": current_user.uid,
        "createdAt": SERVER_TIMESTAMP,
        "participants": 0,
        "queue": {},
        "playbackState": {
            "isPlaying": False,
            "currentTime": 0,
            "lastUpdated": SERVER_TIMESTAMP,
        },
        "allowOthersToListen": room_in.allow_others_to_listen,
        "isPrivate": room_in.is_private,
    }
    for _ in range(5):
        slug = generate_slug()
        try:
            await store.create(slug, doc)
        except RoomExistsError:
            continue
        return RoomCreated(id=slug, name=room_in.name)
    raise HTTPException(status_code=503, detail="Could not allocate a room id")


@router.get("/{room_id}", response_model=RoomState)
async def get_room(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """
    Get room info and state.
    """
    room = await load_room(store, room_id)
    now = store.now_ms()
    return RoomState(
        room=room,
        is_creator=room.is_creator(current_user.uid),
        can_listen=room.can_listen(current_user.uid),
        expected_position=room_position(room, now),
        online_count=len(room.online_participants(now, settings.PRESENCE_ONLINE_WINDOW_S)),
    )


@router.delete("/{room_id}", status_code=204)
async def delete_room(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
):
    await load_room_as_creator(store, room_id, current_user)
    await store.delete(room_id)


# --- Player Endpoints ---

@router.post("/{room_id}/player/play", response_model=PlaybackResponse)
async def play_music(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
) -> Any:
    """
    Creator only: resume from where the room timeline stands.
    """
    room = await load_room_as_creator(store, room_id, current_user)
    if room.currently_playing is None:
        raise HTTPException(status_code=400, detail="No song is loaded")
    position = room_position(room, store.now_ms())
    room = await write_playback(store, room_id, {
        "playbackState/isPlaying": True,
        "playbackState/currentTime": position,
        "playbackState/lastUpdated": SERVER_TIMESTAMP,
    })
    return PlaybackResponse(playback_state=room.playback_state)


@router.post("/{room_id}/player/pause", response_model=PlaybackResponse)
async def pause_music(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
    payload: Optional[SeekRequest] = Body(default=None),
) -> Any:
    """
    Creator only: pause. Payload: { "seconds": float } to pin the position the
    creator's player stopped at, otherwise the room timeline is used.
    """
    room = await load_room_as_creator(store, room_id, current_user)
    if room.currently_playing is None:
        raise HTTPException(status_code=400, detail="No song is loaded")
    position = payload.seconds if payload is not None else room_position(room, store.now_ms())
    room = await write_playback(store, room_id, {
        "playbackState/isPlaying": False,
        "playbackState/currentTime": position,
        "playbackState/lastUpdated": SERVER_TIMESTAMP,
    })
    return PlaybackResponse(playback_state=room.playback_state)


@router.post("/{room_id}/player/seek", response_model=PlaybackResponse)
async def seek_music(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
    payload: SeekRequest,
) -> Any:
    """
    Creator only: seek.
    """
    room = await load_room_as_creator(store, room_id, current_user)
    if room.currently_playing is None:
        raise HTTPException(status_code=400, detail="No song is loaded")
    room = await write_playback(store, room_id, {
        "playbackState/currentTime": payload.seconds,
        "playbackState/lastUpdated": SERVER_TIMESTAMP,
    })
    return PlaybackResponse(playback_state=room.playback_state)


@router.put("/{room_id}/listen-permission", response_model=RoomState)
async def set_listen_permission(
    room_id: str,
    *,
    current_user: Identity = Depends(deps.get_current_user),
    store: RoomStore = Depends(deps.get_store),
    payload: ListenPermissionRequest,
) -> Any:
    """
    Creator only: let (or stop) everyone else's player follow the room.
    """
    await load_room_as_creator(store, room_id, current_user)
    room = await write_playback(store, room_id, {"allowOthersToListen": payload.allow_others_to_listen})
    now = store.now_ms()
    return RoomState(
        room=room,
        is_creator=True,
        can_listen=True,
        expected_position=room_position(room, now),
        online_count=len(room.online_participants(now, settings.PRESENCE_ONLINE_WINDOW_S)),
    )
