"""
One client's stay in one room.

``RoomSession.open(...)`` subscribes to the room, registers presence and
starts a single cooperative tick; ``close()`` cancels everything it started
and deregisters the participant. Each tick runs, in order: reconciliation
(including the creator's end-of-song backstop), any parked seek, then the
presence heartbeat when due.

Transport actions (play/pause, seek, skip) are written to the store and
reach the local player through reconciliation like every other client's,
so the player is only ever driven from one place. Snapshots also switch the
player's video: a new song is loaded, and the player is stopped when the
room goes idle or this client may no longer listen.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Sequence

from pydantic import ValidationError

from tunesync.core.config import settings
from tunesync.models.room import Room
from tunesync.models.song import Song
from tunesync.models.user import Identity
from tunesync.services import presence
from tunesync.services.advancement import AdvanceReason, AdvanceResult, Advancer
from tunesync.services.media_player import MediaPlayer, PlayerState
from tunesync.services.playback_clock import expected_position
from tunesync.services.queue_service import AppendOutcome, QueueService, build_song
from tunesync.services.reconciler import LocalPlayback, ReconcileReport, Reconciler
from tunesync.services.room_store import RoomNotFoundError, RoomStore, StoreWriteError
from tunesync.services.state_tree import SERVER_TIMESTAMP
from tunesync.services.vote_skip import NoSongPlayingError, SkipVoteTally, toggle_skip_vote

logger = logging.getLogger(__name__)

SKIP_COMMANDS = ("!skip", "!vote skip")


class RoomSession:
    def __init__(
        self,
        store: RoomStore,
        room_id: str,
        identity: Identity,
        player: MediaPlayer,
        *,
        clock: Callable[[], float] | None = None,
        tick_interval_s: float | None = None,
        heartbeat_interval_s: float | None = None,
        vote_threshold: int | None = None,
        on_room_closed: Callable[[str], Any] | None = None,
        resubscribe_delay_s: float | None = None,
        **reconciler_options,
    ):
        self.store = store
        self.room_id = room_id
        self.identity = identity
        self.player = player
        self.clock = clock or store.now_ms
        self.tick_interval_s = tick_interval_s if tick_interval_s is not None else settings.TICK_INTERVAL_S
        self.heartbeat_interval_ms = (
            heartbeat_interval_s if heartbeat_interval_s is not None else settings.HEARTBEAT_INTERVAL_S
        ) * 1000
        self.on_room_closed = on_room_closed
        self.resubscribe_delay_s = (
            resubscribe_delay_s if resubscribe_delay_s is not None else settings.STORE_RESUBSCRIBE_DELAY_S
        )

        self.room: Optional[Room] = None
        self.reconciler = Reconciler(player, **reconciler_options)
        self.tally = SkipVoteTally(vote_threshold)
        self.advancer = Advancer(store, room_id)
        self.queue = QueueService(store)

        self.player_ready = False
        self.volume = 100
        self.closed = False
        self._last_heartbeat_ms: Optional[float] = None
        self._tasks: list[asyncio.Task] = []
        self._seek_task: Optional[asyncio.Task] = None
        # identity of the song the player holds; None when stopped
        self._loaded: Optional[tuple[str, str]] = None

    # --- lifecycle ---

    @classmethod
    async def open(cls, store: RoomStore, room_id: str, identity: Identity, player: MediaPlayer, **options) -> "RoomSession":
        session = cls(store, room_id, identity, player, **options)
        await session.start()
        return session

    async def start(self):
        doc = await self.store.get(self.room_id)
        if doc is None:
            raise RoomNotFoundError(self.room_id)
        await self.handle_snapshot(doc)
        await self.heartbeat()
        self._tasks = [
            asyncio.create_task(self._listen()),
            asyncio.create_task(self._tick_loop()),
        ]
        logger.info(f"{self.identity.uid} joined room {self.room_id}")

    async def close(self):
        if self.closed:
            return
        self.closed = True
        current = asyncio.current_task()
        pending = [t for t in self._tasks + [self._seek_task] if t is not None and t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        self._seek_task = None
        try:
            await presence.leave(self.store, self.room_id, self.identity.uid)
        except (RoomNotFoundError, StoreWriteError) as e:
            logger.warning(f"Could not deregister {self.identity.uid} from {self.room_id}: {e}")
        logger.info(f"{self.identity.uid} left room {self.room_id}")

    async def __aenter__(self) -> "RoomSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # --- derived state ---

    @property
    def is_creator(self) -> bool:
        return self.room is not None and self.room.is_creator(self.identity.uid)

    @property
    def can_listen(self) -> bool:
        return self.room is not None and self.room.can_listen(self.identity.uid)

    @property
    def local(self) -> LocalPlayback:
        return self.reconciler.local

    # --- store events ---

    async def _listen(self):
        while not self.closed:
            try:
                async for doc in self.store.subscribe(self.room_id):
                    if doc is None:
                        await self._room_gone()
                        return
                    try:
                        await self.handle_snapshot(doc)
                    except ValidationError as e:
                        logger.warning(f"Ignoring malformed snapshot of {self.room_id}: {e}")
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # the first snapshot after resubscribing catches up on anything missed
                logger.error(f"Room feed for {self.room_id} failed, resubscribing: {e}")
                await asyncio.sleep(self.resubscribe_delay_s)

    async def _room_gone(self):
        logger.info(f"Room {self.room_id} no longer exists")
        if self.on_room_closed is not None:
            result = self.on_room_closed(self.room_id)
            if inspect.isawaitable(result):
                await result
        await self.close()

    async def handle_snapshot(self, doc: dict):
        self._apply_room(Room.from_snapshot(self.room_id, doc))
        switched = await self._load_player()
        if await self._maybe_vote_advance():
            return
        await self.sync(force=switched)

    def _apply_room(self, room: Room):
        self.room = room
        self.tally.track_song(room.currently_playing)
        self.tally.observe(room.skip_voters())
        self.reconciler.load_song(room.currently_playing)

    async def _load_player(self) -> bool:
        """Put the room's song in the player, or stop it when there is
        nothing this client may play. True when the player was switched."""
        if not self.player_ready:
            return False
        song = self.room.currently_playing if self.room is not None else None
        if song is None:
            self.reconciler.local = LocalPlayback()
        target = song.identity() if song is not None and self.can_listen else None
        if target == self._loaded:
            return False
        try:
            if target is None:
                await self.player.stop_video()
            else:
                await self.player.load_video(song.video_id)
        except Exception as e:
            logger.warning(f"Could not switch the player in {self.room_id}: {e}")
            return False
        self._loaded = target
        return True

    # --- the tick ---

    async def _tick_loop(self):
        while True:
            await asyncio.sleep(self.tick_interval_s)
            try:
                await self.tick()
            except (RoomNotFoundError, StoreWriteError) as e:
                logger.error(f"Tick failed in {self.room_id}: {e}")

    async def tick(self):
        await self.sync()
        now = self.clock()
        await self.reconciler.flush_pending_seek(self.room, self.identity.uid, now)
        if self._last_heartbeat_ms is None or now - self._last_heartbeat_ms >= self.heartbeat_interval_ms:
            await self.heartbeat()

    async def heartbeat(self):
        self._last_heartbeat_ms = self.clock()
        try:
            await presence.heartbeat(self.store, self.room_id, self.identity)
        except (RoomNotFoundError, StoreWriteError) as e:
            logger.error(f"Presence update failed in {self.room_id}: {e}")

    async def sync(self, force: bool = False) -> Optional[ReconcileReport]:
        if not self.player_ready:
            return None
        now = self.clock()
        report = await self.reconciler.reconcile(self.room, self.identity.uid, now, force=force)
        if report.seek_deferred:
            self._schedule_seek_flush(now)
        if report.advance is not None:
            await self.advance(report.advance)
        return report

    def _schedule_seek_flush(self, now: float):
        if self._seek_task is not None and not self._seek_task.done():
            return
        delay = self.reconciler.seeks.due_in_ms(now) / 1000
        self._seek_task = asyncio.create_task(self._flush_seek_later(delay))

    async def _flush_seek_later(self, delay_s: float):
        await asyncio.sleep(delay_s)
        await self.reconciler.flush_pending_seek(self.room, self.identity.uid, self.clock())

    # --- advancement ---

    async def advance(self, reason: AdvanceReason) -> Optional[AdvanceResult]:
        if not self.is_creator:
            logger.warning(f"{self.identity.uid} is not the creator of {self.room_id}; not advancing")
            return None
        current = self.room.currently_playing
        result = await self.advancer.advance(current.id if current else None, reason)
        if result is None:
            return None

        self.tally.reset()
        self.reconciler.reset_after_advance()
        if result.room is not None:
            self._apply_room(result.room)
        await self._load_player()
        return result

    async def _maybe_vote_advance(self) -> bool:
        if self.is_creator and self.room.currently_playing is not None and self.tally.has_quorum():
            logger.info(f"Vote-skip quorum ({self.tally.count}/{self.tally.threshold}) in {self.room_id}")
            return await self.advance(AdvanceReason.VOTE_SKIP) is not None
        return False

    # --- queue ---

    async def add_song(
        self,
        video_id: str,
        title: str,
        thumbnail: str = "",
        channel_title: str = "",
        duration: Optional[float] = None,
    ) -> AppendOutcome:
        song = build_song(self.identity, int(self.clock()), video_id, title, thumbnail, channel_title, duration)
        return await self.queue.append(self.room_id, self.identity, song)

    async def remove_song(self, song_id: str) -> Optional[Song]:
        return await self.queue.remove(self.room_id, self.identity, song_id)

    async def reorder_queue(self, new_queue: Sequence[Song]):
        await self.queue.reorder(self.room_id, self.identity, new_queue)

    async def shuffle_queue(self) -> bool:
        return await self.queue.shuffle(self.room_id, self.identity)

    # --- votes and commands ---

    async def vote_skip(self) -> bool:
        """Toggle this client's skip vote. Returns True when the vote is now cast."""
        room = await toggle_skip_vote(self.store, self.room_id, self.identity.uid)
        self._apply_room(room)
        await self._maybe_vote_advance()
        return self.identity.uid in room.skip_voters()

    async def send_command(self, text: str) -> bool:
        """Handle chat commands; False when ``text`` is not one."""
        if text.strip().lower() not in SKIP_COMMANDS:
            return False
        try:
            await self.vote_skip()
        except NoSongPlayingError:
            return True
        await self.store.push(self.room_id, "messages", {
            "text": (
                f"{self.identity.display_name or 'A user'} voted to skip the current song. "
                f"({self.tally.count}/{self.tally.threshold} votes)"
            ),
            "userId": "system",
            "username": "System",
            "timestamp": SERVER_TIMESTAMP,
            "isSystem": True,
        })
        return True

    # --- creator transport (store writes only) ---

    def _require_creator(self, action: str) -> bool:
        if not self.is_creator:
            logger.warning(f"{self.identity.uid} tried to {action} in {self.room_id} without being the creator")
            return False
        return True

    async def _position_now(self) -> float:
        if self.player_ready:
            try:
                return await self.player.get_current_time()
            except Exception as e:
                logger.warning(f"Could not read player time: {e}")
        return expected_position(self.room.playback_state, self.clock()) or 0.0

    async def toggle_play_pause(self) -> bool:
        if not self._require_creator("toggle playback") or self.room.currently_playing is None:
            return False
        playing = not self.room.playback_state.is_playing
        await self.store.update(self.room_id, {
            "playbackState/isPlaying": playing,
            "playbackState/currentTime": await self._position_now(),
            "playbackState/lastUpdated": SERVER_TIMESTAMP,
        })
        return True

    async def seek(self, seconds: float) -> bool:
        if not self._require_creator("seek") or self.room.currently_playing is None:
            return False
        await self.store.update(self.room_id, {
            "playbackState/currentTime": max(0.0, seconds),
            "playbackState/lastUpdated": SERVER_TIMESTAMP,
        })
        return True

    async def skip(self) -> Optional[AdvanceResult]:
        return await self.advance(AdvanceReason.SKIP_COMMAND)

    async def set_allow_others_to_listen(self, allow: bool) -> bool:
        if not self._require_creator("change listen permission"):
            return False
        await self.store.update(self.room_id, {"allowOthersToListen": allow})
        return True

    # --- player events ---

    async def on_player_ready(self):
        self.player_ready = True
        self.reconciler.error_count = 0
        await self._load_player()
        try:
            self.reconciler.set_duration(await self.player.get_duration())
            await self.player.set_volume(self.volume)
            await self._seek_to_room_position()
        except Exception as e:
            logger.warning(f"Player initialisation error: {e}")
        await self.sync(force=True)

    async def _seek_to_room_position(self):
        # a late joiner starts where the room is, even inside the drift deadband
        if self.room is None or self.room.currently_playing is None or not self.can_listen:
            return
        now = self.clock()
        expected = expected_position(self.room.playback_state, now)
        if expected is not None and expected > 0:
            await self.player.seek_to(expected, True)
            self.reconciler.seeks.mark(now)

    def on_duration_change(self, duration: float):
        self.reconciler.set_duration(duration)

    async def on_player_state_change(self, state: PlayerState):
        if self.room is None or not self.player_ready:
            return
        if state == PlayerState.ENDED:
            if self.is_creator:
                await self.advance(AdvanceReason.PLAYER_ENDED)
            return
        # buffering/cued are transient; writing them would stall every listener
        if not self.is_creator or state not in (PlayerState.PLAYING, PlayerState.PAUSED):
            return
        playing = state == PlayerState.PLAYING
        if self.room.currently_playing is None or playing == self.room.playback_state.is_playing:
            return
        try:
            current_time = await self.player.get_current_time()
        except Exception as e:
            logger.warning(f"Error handling player state change: {e}")
            return
        await self.store.update(self.room_id, {
            "playbackState/isPlaying": playing,
            "playbackState/currentTime": current_time,
            "playbackState/lastUpdated": SERVER_TIMESTAMP,
        })

    async def on_player_error(self, code: int):
        logger.warning(f"Player error {code} in {self.room_id}")
        reason = self.reconciler.note_player_error(code, self.is_creator)
        if reason is not None:
            await self.advance(reason)

    async def set_volume(self, volume: int):
        self.volume = max(0, min(100, volume))
        if self.player_ready:
            try:
                await self.player.set_volume(self.volume)
            except Exception as e:
                logger.warning(f"Error setting volume: {e}")
