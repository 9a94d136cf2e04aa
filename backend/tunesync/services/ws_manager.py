"""
WebSocket fan-out of room snapshots.

  - One store subscription per room per process, shared by every socket
    watching that room
  - The subscription starts with the first socket and stops with the last
  - Dead connections are dropped on send failure
"""
import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import WebSocket

from tunesync.models.room import Room
from tunesync.services.room_store import RoomStore

logger = logging.getLogger(__name__)


def snapshot_message(room_id: str, doc: Optional[dict]) -> dict:
    if doc is None:
        return {"type": "room_closed", "room_id": room_id}
    # browsers always get the queue as an array
    room = Room.from_snapshot(room_id, doc)
    return {
        "type": "room_snapshot",
        "room_id": room_id,
        "data": room.model_dump(by_alias=True, exclude_none=True),
    }


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self._feeds: Dict[str, asyncio.Task] = {}

    async def connect(self, websocket: WebSocket, room_id: str, store: RoomStore):
        await websocket.accept()
        self.active_connections.setdefault(room_id, []).append(websocket)

        feed = self._feeds.get(room_id)
        if feed is None or feed.done():
            self._feeds[room_id] = asyncio.create_task(self._room_feed(room_id, store))
            logger.info(f"Feed started: {room_id} (total: {len(self._feeds)})")
        else:
            # late joiner: the running feed already sent its first snapshot
            await websocket.send_json(snapshot_message(room_id, await store.get(room_id)))

    def disconnect(self, websocket: WebSocket, room_id: str):
        connections = self.active_connections.get(room_id)
        if connections is None:
            return
        try:
            connections.remove(websocket)
        except ValueError:
            pass

        if not connections:
            del self.active_connections[room_id]
            feed = self._feeds.pop(room_id, None)
            if feed is not None and not feed.done():
                feed.cancel()
                logger.info(f"Feed stopped: {room_id} (total: {len(self._feeds)})")

    async def broadcast_local(self, room_id: str, message: dict):
        """Send to every local socket in the room, cleaning dead ones."""
        dead = []
        for ws in list(self.active_connections.get(room_id, [])):
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)

        for ws in dead:
            logger.info(f"Removing dead WS connection in {room_id}")
            self.disconnect(ws, room_id)

    async def _room_feed(self, room_id: str, store: RoomStore):
        try:
            async for doc in store.subscribe(room_id):
                await self.broadcast_local(room_id, snapshot_message(room_id, doc))
                if doc is None:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Feed for {room_id} crashed: {e}")

    def get_stats(self) -> dict:
        total_ws = sum(len(conns) for conns in self.active_connections.values())
        return {
            "rooms": len(self.active_connections),
            "feeds": len(self._feeds),
            "total_connections": total_ws,
        }


manager = ConnectionManager()
