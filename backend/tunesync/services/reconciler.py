"""
Per-client reconciliation: steer the local player toward the room timeline.

One ``Reconciler`` belongs to one client session. It never writes to the
store; when it decides the creator should advance it says so in the
returned ``ReconcileReport`` and the session runs the advancement.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from tunesync.core.config import settings
from tunesync.models.room import Room
from tunesync.models.song import Song
from tunesync.services.advancement import AdvanceReason
from tunesync.services.media_player import MediaPlayer, PlayerState, is_unplayable
from tunesync.services.playback_clock import expected_position

logger = logging.getLogger(__name__)


class SeekDebouncer:
    """At most one seek per ``min_gap_s``; a refused seek waits, it is not lost."""

    def __init__(self, min_gap_s: float):
        self.min_gap_ms = min_gap_s * 1000
        self._last_seek_ms: Optional[float] = None
        self._pending: Optional[float] = None

    @property
    def pending(self) -> Optional[float]:
        return self._pending

    def due_in_ms(self, now_ms: float) -> float:
        if self._last_seek_ms is None:
            return 0.0
        return max(0.0, self._last_seek_ms + self.min_gap_ms - now_ms)

    def request(self, target: float, now_ms: float) -> bool:
        """True if the caller may seek right now, otherwise the target is parked."""
        if self.due_in_ms(now_ms) == 0:
            self._pending = None
            return True
        self._pending = target
        return False

    def take_pending(self, now_ms: float) -> Optional[float]:
        if self._pending is None or self.due_in_ms(now_ms) > 0:
            return None
        target, self._pending = self._pending, None
        return target

    def mark(self, now_ms: float):
        self._last_seek_ms = now_ms

    def clear(self):
        self._pending = None


@dataclass
class LocalPlayback:
    """What the seek bar shows: the model's best estimate."""
    is_playing: bool = False
    current_time: float = 0.0


@dataclass
class ReconcileReport:
    ran: bool = False
    expected: Optional[float] = None
    seeked: bool = False
    seek_deferred: bool = False
    played: bool = False
    paused: bool = False
    error: Optional[BaseException] = None
    advance: Optional[AdvanceReason] = None


class Reconciler:
    def __init__(
        self,
        player: MediaPlayer,
        *,
        drift_threshold_s: float | None = None,
        min_interval_s: float | None = None,
        seek_debounce_s: float | None = None,
        error_threshold: int | None = None,
    ):
        self.player = player
        self.drift_threshold_s = drift_threshold_s if drift_threshold_s is not None else settings.SYNC_DRIFT_THRESHOLD_S
        self.min_interval_ms = (min_interval_s if min_interval_s is not None else settings.SYNC_MIN_INTERVAL_S) * 1000
        self.error_threshold = error_threshold if error_threshold is not None else settings.PLAYER_ERROR_THRESHOLD
        self.seeks = SeekDebouncer(seek_debounce_s if seek_debounce_s is not None else settings.SEEK_DEBOUNCE_S)

        self.local = LocalPlayback()
        self.error_count = 0
        self.duration = 0.0
        self._last_run_ms: Optional[float] = None
        self._end_at_ms: Optional[float] = None
        self._timeline: Optional[tuple] = None
        self._song_key: Optional[tuple[str, str]] = None

    @property
    def expected_end_ms(self) -> Optional[float]:
        return self._end_at_ms

    # --- lifecycle hooks ---

    def load_song(self, song: Optional[Song]) -> bool:
        """Note the playing song; True (and caches dropped) if it changed."""
        key = song.identity() if song is not None else None
        if key == self._song_key:
            return False
        self._song_key = key
        self._end_at_ms = None
        # the player reports the real duration once the new video is ready
        self.duration = (song.duration or 0.0) if song is not None else 0.0
        self.seeks.clear()
        return True

    def set_duration(self, duration: float):
        if duration != self.duration:
            self.duration = duration
            self._end_at_ms = None

    def reset_after_advance(self):
        self.error_count = 0
        self._end_at_ms = None
        self.seeks.clear()

    def note_error(self, is_creator: bool) -> bool:
        """Count a transient player error; True when the creator should advance."""
        self.error_count += 1
        if is_creator and self.error_count > self.error_threshold:
            self.error_count = 0
            return True
        return False

    def note_player_error(self, code: int, is_creator: bool) -> Optional[AdvanceReason]:
        if is_creator and is_unplayable(code):
            self.error_count = 0
            return AdvanceReason.PLAYER_ERROR
        if self.note_error(is_creator):
            return AdvanceReason.PLAYER_ERROR
        return None

    # --- the sync pass ---

    async def reconcile(self, room: Optional[Room], uid: str, now_ms: float, force: bool = False) -> ReconcileReport:
        report = ReconcileReport()
        if room is None or room.currently_playing is None:
            return report
        if not force and self._last_run_ms is not None and now_ms - self._last_run_ms < self.min_interval_ms:
            return report
        self._last_run_ms = now_ms

        self.load_song(room.currently_playing)
        playback = room.playback_state
        timeline = (playback.is_playing, playback.current_time, playback.last_updated)
        if timeline != self._timeline:
            # a pause, seek or resume moves the end of the song
            self._timeline = timeline
            self._end_at_ms = None
        expected = expected_position(playback, now_ms)
        is_creator = room.is_creator(uid)
        report.ran = True
        report.expected = expected

        if room.can_listen(uid):
            try:
                local_time = await self.player.get_current_time()
                state = await self.player.get_player_state()

                if abs(local_time - expected) > self.drift_threshold_s:
                    if self.seeks.request(expected, now_ms):
                        await self.player.seek_to(expected, True)
                        self.seeks.mark(now_ms)
                        report.seeked = True
                    else:
                        report.seek_deferred = True

                if playback.is_playing and state != PlayerState.PLAYING:
                    await self.player.play_video()
                    report.played = True
                elif not playback.is_playing and state == PlayerState.PLAYING:
                    await self.player.pause_video()
                    report.paused = True

                self.error_count = 0
            except Exception as e:
                report.error = e
                logger.warning(f"Player sync error ({self.error_count + 1}): {e}")
                if self.note_error(is_creator):
                    logger.warning("Persistent player errors, advancing")
                    report.advance = AdvanceReason.PLAYER_ERROR

        self.local = LocalPlayback(is_playing=playback.is_playing, current_time=expected)

        # Backstop for "ended" events that never arrive in background tabs
        if is_creator and self.duration > 0 and playback.is_playing:
            if self._end_at_ms is None:
                self._end_at_ms = now_ms + (self.duration - expected) * 1000
            if now_ms >= self._end_at_ms:
                self._end_at_ms = None
                if report.advance is None:
                    report.advance = AdvanceReason.END_OF_SONG

        return report

    async def flush_pending_seek(self, room: Optional[Room], uid: str, now_ms: float) -> bool:
        """Run a parked seek once allowed, aimed at the timeline as of now."""
        if self.seeks.take_pending(now_ms) is None:
            return False
        if room is None or room.currently_playing is None or not room.can_listen(uid):
            return False
        target = expected_position(room.playback_state, now_ms)
        try:
            await self.player.seek_to(target, True)
        except Exception as e:
            logger.warning(f"Deferred seek failed: {e}")
            self.note_error(room.is_creator(uid))
            return False
        self.seeks.mark(now_ms)
        return True
