"""
Playback Controller for SoundStage.

Now-playing state machine (Idle / Playing) and owner of the end-of-track
timer.

Transition rules:
- play() holds the transition lock for the whole call and never changes
  state unless at least one device accepted the play command
- the end-of-track timer re-validates the generation it was armed for, so a
  stale timer (track stopped or replaced) does nothing
- play_next() on an exhausted playlist stops the outputs, clears state and
  publishes PLAYLIST_END

Operations never raise for expected conditions: they log, publish an ERROR
event and return False.
"""

import logging
import threading
from typing import TYPE_CHECKING, Optional

from soundstage.broadcast_core.track import Track
from soundstage.errors import (
    DeviceFailure,
    InvalidPlaylistError,
    InvalidTrackError,
    LockedError,
    NoOutputDevicesError,
    SoundStageError,
)
from soundstage.events.event_bus import EventBus, EventType
from soundstage.music_logic.playlist_manager import PlaylistCursor, PlaylistManager
from soundstage.outputs.output_layer import OutputLayer
from soundstage.scheduler.executor import StepExecutor
from soundstage.scheduler.task_scheduler import TimerHandle
from soundstage.state.playback_state import PlaybackState, PlaybackStateManager
from soundstage.volume.volume_controller import VolumeController

if TYPE_CHECKING:
    from soundstage.broadcast_core.crossfade import CrossfadeEngine

logger = logging.getLogger(__name__)


class PlaybackController:
    """
    Starts, stops and sequences tracks across the output layer.
    """

    def __init__(
        self,
        output: OutputLayer,
        events: EventBus,
        volume: VolumeController,
        playlist: PlaylistManager,
        state: PlaybackStateManager,
        executor: StepExecutor,
    ):
        self._output = output
        self._events = events
        self._volume = volume
        self._playlist = playlist
        self._state = state
        self._executor = executor
        self.crossfader: Optional["CrossfadeEngine"] = None
        self._timer_lock = threading.Lock()
        self._end_timer: Optional[TimerHandle] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self) -> PlaybackState:
        return self._state.get_state()

    @property
    def is_playing(self) -> bool:
        return self._state.get_state().is_playing

    def current_time(self) -> int:
        """Whole seconds elapsed in the current track (0 when idle)."""
        return int(self._state.get_state().elapsed_duration)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self, track: Track, duration: Optional[float] = None, monitor: bool = True) -> bool:
        """
        Start track on every output device.

        Args:
            track: Track to play
            duration: Override for track.duration_seconds (0 = unknown)
            monitor: Arm the end-of-track timer (advances the playlist when it fires)

        Returns:
            True if the track is now playing
        """
        if not isinstance(track, Track):
            return self.report(InvalidTrackError(f"Cannot play {track!r}: not a Track"), "play")
        if not self._state.try_acquire_lock():
            return self.report(LockedError(f"Cannot play {track.song_id}: transition in progress"), "play")
        try:
            return self._start_locked(track, duration, monitor)
        finally:
            self._state.release_lock()

    def _start_locked(self, track: Track, duration: Optional[float], monitor: bool) -> bool:
        if not self._output.has_devices():
            return self.report(NoOutputDevicesError(f"Cannot play {track.song_id}: no output devices"), "play")

        duration = track.duration_seconds if duration is None else max(0.0, float(duration))

        self.cancel_end_timer()
        self._output.broadcast_stop()
        result = self._output.broadcast_play(track.song_id, self._volume.render_level)
        if not result.any_succeeded:
            return self.report(
                DeviceFailure(f"No output device accepted {track.song_id}", action="play"),
                "play",
            )

        generation = self._state.begin(track, duration)
        logger.info(
            f"[PLAYBACK] Playing {track.display_name} ({track.song_id}, {duration:.1f}s) "
            f"on {len(result.succeeded)} device(s)"
        )
        self._events.publish(EventType.SONG_START, {
            "song": track.song_id,
            "name": track.display_name,
            "duration": duration,
        })
        if duration > 0 and monitor:
            self.arm_end_timer(generation, duration)
        return True

    def play_next(self) -> bool:
        """Advance the playlist and transition to the next track."""
        if self._state.locked:
            return self.report(LockedError("Cannot advance: transition in progress"), "play_next")
        if self._playlist.track_count == 0:
            return self.report(InvalidPlaylistError("No playlist loaded"), "play_next")

        before = self._playlist.cursor()
        result = self._playlist.advance()
        if result.exhausted:
            logger.info("[PLAYBACK] Playlist finished")
            self.cancel_end_timer()
            self._output.broadcast_stop()
            self._state.clear()
            self._events.publish(EventType.PLAYLIST_END, {"name": self._playlist.name})
            return False
        return self._transition_or_rewind(result.track, before)

    def play_previous(self) -> bool:
        """Return to the previously played track."""
        if self._state.locked:
            return self.report(LockedError("Cannot go back: transition in progress"), "play_previous")
        before = self._playlist.cursor()
        track = self._playlist.retreat()
        if track is None:
            return self.report(InvalidPlaylistError("No playlist loaded"), "play_previous")
        return self._transition_or_rewind(track, before)

    def _transition_or_rewind(self, track: Track, before: PlaylistCursor) -> bool:
        # The cursor already moved; put it back if track never became current
        moved = self._playlist.cursor()
        if self.transition_to(track):
            return True
        if self._playlist.restore(before, expected=moved):
            logger.info(f"[PLAYBACK] Transition to {track.display_name} failed; playlist cursor restored")
        return False

    def play_current(self) -> bool:
        """Play the playlist's current track."""
        track = self._playlist.current_track
        if track is None:
            return self.report(InvalidPlaylistError("No playlist loaded"), "play_current")
        return self.play(track)

    def transition_to(self, track: Track) -> bool:
        """Crossfade to track when enabled and something is audible, else play it."""
        crossfader = self.crossfader
        if crossfader is not None and crossfader.enabled and self.is_playing:
            return crossfader.crossfade(track)
        return self.play(track)

    def stop_all(self) -> bool:
        """
        Stop everything: in-flight crossfade, active fade, end-of-track timer
        and every output device.

        Publishes SONG_END (completed=False) only if a track was playing.
        """
        if self.crossfader is not None:
            self.crossfader.cancel(wait=True)
        self._volume.cancel_fade()
        self.cancel_end_timer()
        self._output.broadcast_stop()
        previous = self._state.clear()
        if previous is not None:
            logger.info(f"[PLAYBACK] Stopped {previous.display_name}")
            self._events.publish(EventType.SONG_END, {
                "song": previous.song_id,
                "name": previous.display_name,
                "completed": False,
            })
        return True

    # ------------------------------------------------------------------
    # End-of-track timer
    # ------------------------------------------------------------------

    def arm_end_timer(self, generation: int, delay: float) -> None:
        """(Re)arm the end-of-track timer for the track started at generation."""
        handle = self._executor.call_later(max(0.0, delay), lambda: self._on_track_end(generation))
        with self._timer_lock:
            previous, self._end_timer = self._end_timer, handle
        if previous is not None:
            previous.cancel()
        logger.debug(f"[PLAYBACK] End-of-track timer armed for {delay:.2f}s (generation {generation})")

    def cancel_end_timer(self) -> None:
        with self._timer_lock:
            handle, self._end_timer = self._end_timer, None
        if handle is not None:
            handle.cancel()

    def _on_track_end(self, generation: int) -> None:
        if not self._state.is_current(generation):
            logger.debug(f"[PLAYBACK] Ignoring stale end-of-track timer (generation {generation})")
            return
        state = self._state.get_state()
        logger.info(f"[PLAYBACK] Finished {state.display_name}")
        self._events.publish(EventType.SONG_END, {
            "song": state.song_id,
            "name": state.display_name,
            "completed": True,
        })
        self.play_next()

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def report(self, error: SoundStageError, source: str) -> bool:
        """Log error, publish it as an ERROR event and return False."""
        logger.warning(f"[PLAYBACK] {source}: {error}")
        self._events.publish_error(error, source)
        return False
