"""
Shared room state store.

Every client reads and writes room state through a ``RoomStore``: a reactive
multi-writer JSON tree keyed by room id. Each committed write is pushed to
all subscribers as a full snapshot of the room.

``RedisRoomStore`` keeps one JSON document per room and fans snapshots out
over Redis PubSub, so any number of API instances and headless clients can
share a room.
"""
import copy
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from tunesync.core.config import settings
from tunesync.core.redis import get_redis_client
from tunesync.services.state_tree import (
    get_in,
    new_push_key,
    resolve_server_values,
    set_in,
)

logger = logging.getLogger(__name__)

MAX_TRANSACTION_RETRIES = 10


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


# Returned by a transaction function to leave the room untouched
ABORT = _Abort()

Doc = Dict[str, Any]
TransactionFn = Callable[[Doc], Any]


class RoomNotFoundError(Exception):
    """The room does not exist (never created, or deleted)."""
    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class RoomExistsError(Exception):
    pass


class StoreWriteError(Exception):
    """A write could not be committed."""
    pass


class RoomStore:
    """Base class holding the write semantics; subclasses supply storage.

    Subclasses implement ``get``, ``delete``, ``subscribe`` and ``_atomic``;
    ``_atomic(room_id, apply)`` must run ``apply(current_doc_or_None)`` and
    persist its result atomically, returning the new document, or return
    ``None`` without writing when ``apply`` returns ``ABORT``.
    """

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    async def server_now_ms(self) -> int:
        """Store time used to resolve ``SERVER_TIMESTAMP`` at commit."""
        return self.now_ms()

    async def get(self, room_id: str) -> Optional[Doc]:
        raise NotImplementedError

    async def delete(self, room_id: str):
        raise NotImplementedError

    def subscribe(self, room_id: str) -> AsyncIterator[Optional[Doc]]:
        """Current snapshot first, then one snapshot per committed change.

        ``None`` means the room no longer exists.
        """
        raise NotImplementedError

    async def _atomic(self, room_id: str, apply: Callable[[Optional[Doc]], Any]) -> Optional[Doc]:
        raise NotImplementedError

    # --- write API built on _atomic ---

    async def transact(self, room_id: str, fn: TransactionFn) -> Optional[Doc]:
        """Atomic read-modify-write of one room.

        ``fn`` receives a private copy of the room document and returns the
        new document or ``ABORT``. Returns the committed document, or None
        when aborted.
        """
        now = await self.server_now_ms()

        def apply(current: Optional[Doc]):
            if current is None:
                raise RoomNotFoundError(room_id)
            result = fn(copy.deepcopy(current))
            if result is ABORT:
                return ABORT
            return resolve_server_values(result, current, now)

        return await self._atomic(room_id, apply)

    async def create(self, room_id: str, doc: Doc) -> Doc:
        now = await self.server_now_ms()

        def apply(current: Optional[Doc]):
            if current is not None:
                raise RoomExistsError(f"Room {room_id} already exists")
            return resolve_server_values(doc, None, now)

        created = await self._atomic(room_id, apply)
        logger.info(f"Room created: {room_id}")
        return created

    async def get_path(self, room_id: str, path: str) -> Any:
        doc = await self.get(room_id)
        if doc is None:
            raise RoomNotFoundError(room_id)
        return get_in(doc, path)

    async def update(
        self,
        room_id: str,
        fields: Dict[str, Any],
        expect: Optional[Tuple[str, Any]] = None,
    ) -> bool:
        """Multi-path merge. ``expect=(path, value)`` makes the write conditional.

        Returns False when the condition did not hold.
        """
        def fn(doc: Doc):
            if expect is not None:
                path, value = expect
                if get_in(doc, path) != value:
                    return ABORT
            for path, value in fields.items():
                doc = set_in(doc, path, value)
            return doc

        return await self.transact(room_id, fn) is not None

    async def set(self, room_id: str, path: str, value: Any):
        await self.transact(room_id, lambda doc: set_in(doc, path, value))

    async def push(self, room_id: str, path: str, value: Any) -> str:
        """Append ``value`` under a fresh time-ordered key; returns the key."""
        key = new_push_key(self.now_ms())

        def fn(doc: Doc):
            container = get_in(doc, path)
            if isinstance(container, list):
                return set_in(doc, f"{path}/{len(container)}", value)
            return set_in(doc, f"{path}/{key}", value)

        await self.transact(room_id, fn)
        return key


class RedisRoomStore(RoomStore):
    def __init__(self, redis: Redis, ttl_s: int | None = None):
        self.redis = redis
        self.ttl_s = ttl_s if ttl_s is not None else settings.ROOM_KEY_TTL_S
        # Redis server time minus local time, refreshed on every write
        self._clock_offset_ms = 0.0

    def now_ms(self) -> int:
        return int(time.time() * 1000 + self._clock_offset_ms)

    async def server_now_ms(self) -> int:
        try:
            seconds, micros = await self.redis.time()
        except RedisError as e:
            logger.error(f"Redis error reading server time: {e}")
            raise StoreWriteError(str(e)) from e
        server_ms = seconds * 1000 + micros // 1000
        self._clock_offset_ms = server_ms - time.time() * 1000
        return server_ms

    def _key_room(self, room_id: str) -> str:
        return f"room:{room_id}"

    def _channel(self, room_id: str) -> str:
        return f"room_events:{room_id}"

    async def get(self, room_id: str) -> Optional[Doc]:
        try:
            raw = await self.redis.get(self._key_room(room_id))
        except RedisError as e:
            logger.error(f"Redis error loading room {room_id}: {e}")
            raise
        return json.loads(raw) if raw else None

    async def delete(self, room_id: str):
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key_room(room_id))
                pipe.publish(self._channel(room_id), "null")
                await pipe.execute()
        except RedisError as e:
            logger.error(f"Redis error deleting room {room_id}: {e}")
            raise StoreWriteError(str(e)) from e
        logger.info(f"Room deleted: {room_id}")

    async def _atomic(self, room_id: str, apply: Callable[[Optional[Doc]], Any]) -> Optional[Doc]:
        key = self._key_room(room_id)
        for attempt in range(MAX_TRANSACTION_RETRIES):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = json.loads(raw) if raw else None
                    new_doc = apply(current)
                    if new_doc is ABORT:
                        await pipe.unwatch()
                        return None
                    payload = json.dumps(new_doc)
                    pipe.multi()
                    pipe.set(key, payload, ex=self.ttl_s)
                    pipe.publish(self._channel(room_id), payload)
                    await pipe.execute()
                    return new_doc
            except WatchError:
                logger.info(f"Write contention on {room_id}, retry {attempt + 1}")
                continue
            except RedisError as e:
                logger.error(f"Redis error writing room {room_id}: {e}")
                raise StoreWriteError(str(e)) from e
        raise StoreWriteError(f"Gave up writing room {room_id} after {MAX_TRANSACTION_RETRIES} attempts")

    async def subscribe(self, room_id: str) -> AsyncIterator[Optional[Doc]]:
        channel = self._channel(room_id)
        pubsub = self.redis.pubsub()
        # subscribe before the initial read so no change slips in between
        await pubsub.subscribe(channel)
        logger.info(f"PubSub subscribed: {room_id}")
        try:
            yield await self.get(room_id)
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except json.JSONDecodeError as e:
                    logger.warning(f"PubSub parse error on {room_id}: {e}")
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info(f"PubSub unsubscribed: {room_id}")


# Global helper to get the store
async def get_room_store() -> RoomStore:
    redis = await get_redis_client()
    return RedisRoomStore(redis)
