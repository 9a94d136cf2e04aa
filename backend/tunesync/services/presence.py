import logging

from tunesync.models.user import Identity
from tunesync.services.room_store import RoomStore
from tunesync.services.state_tree import SERVER_TIMESTAMP, set_in

logger = logging.getLogger(__name__)


def _recount(doc: dict) -> dict:
    doc["participants"] = len(doc.get("participantsList") or {})
    return doc


async def heartbeat(store: RoomStore, room_id: str, identity: Identity):
    """Mark ``identity`` present in the room and refresh the participant count."""
    entry = {
        "id": identity.uid,
        "displayName": identity.display_name,
        "isAnonymous": identity.is_anonymous,
        "lastActive": SERVER_TIMESTAMP,
    }
    await store.transact(
        room_id,
        lambda doc: _recount(set_in(doc, f"participantsList/{identity.uid}", entry)),
    )


async def leave(store: RoomStore, room_id: str, uid: str):
    """Best effort: drop the participant entry and recount."""
    await store.transact(
        room_id,
        lambda doc: _recount(set_in(doc, f"participantsList/{uid}", None)),
    )
    logger.info(f"Participant {uid} left {room_id}")
