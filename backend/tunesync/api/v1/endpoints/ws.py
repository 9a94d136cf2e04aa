import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from tunesync.api import deps
from tunesync.services import presence
from tunesync.services.room_store import RoomNotFoundError, RoomStore, StoreWriteError
from tunesync.services.ws_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


def _is_ping(text: str) -> bool:
    if text == "ping":
        return True
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return False
    return isinstance(message, dict) and message.get("type") == "ping"


@router.websocket("/{room_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    room_id: str,
    token: str = Query(...),
    store: RoomStore = Depends(deps.get_store),
):
    try:
        identity = deps.identity_from_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if await store.get(room_id) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, room_id, store)
    try:
        await presence.heartbeat(store, room_id, identity)
        while True:
            text = await websocket.receive_text()
            if _is_ping(text):
                await presence.heartbeat(store, room_id, identity)
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except RoomNotFoundError:
        logger.info(f"Room {room_id} closed under {identity.uid}'s socket")
    finally:
        manager.disconnect(websocket, room_id)
        try:
            await presence.leave(store, room_id, identity.uid)
        except (RoomNotFoundError, StoreWriteError):
            pass
