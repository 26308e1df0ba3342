"""
Crossfade Engine for SoundStage.

Transitions from the playing track to a new one by running two step
sequences side by side through the executor:

    fade-out  |==== steps x step ====|stop
    fade-in       |1.5 step|play@0|1 step|==== steps x step ====|

The fade-out lowers the outgoing track to 0 and stops every device; the
fade-in starts the incoming track at 0 after 1.5 steps and raises it to the
master level. Total wall time is duration + 2.5 steps. Each step is scaled
by the live render level, so set_volume, fade_volume and mute take effect on
the next step.

The transition lock is held from start to finish. Starting a crossfade while
another is running cancels the running one first. A cancelled crossfade
releases the lock and leaves playback state untouched.
"""

import logging
import math
import threading
from typing import Optional, Tuple

from soundstage.broadcast_core.playback_controller import PlaybackController
from soundstage.broadcast_core.track import Track
from soundstage.errors import InvalidTrackError, LockedError, NoOutputDevicesError, SoundStageError
from soundstage.events.event_bus import EventBus, EventType
from soundstage.outputs.output_layer import OutputLayer
from soundstage.scheduler.executor import CancelToken, StepExecutor, step_plan
from soundstage.state.playback_state import PlaybackStateManager
from soundstage.volume.volume_controller import VolumeController

logger = logging.getLogger(__name__)

DEFAULT_CROSSFADE_DURATION = 2.0
FADE_IN_OFFSET_STEPS = 1.5


def coerce_duration(value) -> Optional[float]:
    """Return value as a non-negative float of seconds, or None if it is not one."""
    try:
        duration = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(duration) or duration < 0:
        return None
    return duration


class _CrossfadeJob:
    def __init__(self, track: Track):
        self.track = track
        self.token = CancelToken()
        self.owner = threading.get_ident()
        self.finished = threading.Event()


class CrossfadeEngine:
    """
    Concurrent fade-out / fade-in transitions.

    Attributes:
        enabled: Whether playlist transitions use crossfades
        duration: Default crossfade length in seconds
    """

    def __init__(
        self,
        controller: PlaybackController,
        output: OutputLayer,
        events: EventBus,
        volume: VolumeController,
        state: PlaybackStateManager,
        executor: StepExecutor,
        duration: float = DEFAULT_CROSSFADE_DURATION,
        enabled: bool = True,
    ):
        self._controller = controller
        self._output = output
        self._events = events
        self._volume = volume
        self._state = state
        self._executor = executor
        self.enabled = bool(enabled)
        self.duration = max(0.0, float(duration))
        self._lock = threading.Lock()
        self._job: Optional[_CrossfadeJob] = None

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._job is not None

    def set_duration(self, duration: float) -> bool:
        duration = coerce_duration(duration)
        if duration is None:
            return False
        self.duration = duration
        return True

    def cancel(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Cancel the in-flight crossfade.

        Args:
            wait: Block until its sequences have unwound (skipped when called
                from the crossfade's own thread)
            timeout: Maximum seconds to wait

        Returns:
            True if a crossfade was running
        """
        with self._lock:
            job = self._job
        if job is None:
            return False
        if job.token.cancel():
            logger.info(f"[CROSSFADE] Cancelling crossfade to {job.track.display_name}")
        if wait and job.owner != threading.get_ident():
            job.finished.wait(timeout)
        return True

    def crossfade(
        self,
        track: Track,
        duration: Optional[float] = None,
        monitor: bool = True,
    ) -> bool:
        """
        Crossfade from the current track to track.

        Plays track directly when nothing is playing. A crossfade already in
        flight is cancelled and awaited first; a lock held by anything else
        fails with Locked.

        Args:
            track: Incoming track
            duration: Crossfade length in seconds (defaults to self.duration)
            monitor: Arm the incoming track's end-of-track timer

        Returns:
            True once track is current; False if rejected or cancelled
        """
        if not isinstance(track, Track):
            return self._controller.report(InvalidTrackError(f"Cannot crossfade to {track!r}: not a Track"), "crossfade")
        seconds = self.duration if duration is None else coerce_duration(duration)
        if seconds is None:
            return self._controller.report(SoundStageError(f"Invalid crossfade duration: {duration!r}"), "crossfade")

        self.cancel(wait=True)
        if not self._state.try_acquire_lock():
            return self._controller.report(
                LockedError(f"Cannot crossfade to {track.song_id}: transition in progress"), "crossfade"
            )

        snapshot = self._state.get_state()
        if not snapshot.is_playing or snapshot.current_track is None:
            self._state.release_lock()
            return self._controller.play(track, monitor=monitor)
        if not self._output.has_devices():
            self._state.release_lock()
            return self._controller.report(
                NoOutputDevicesError(f"Cannot crossfade to {track.song_id}: no output devices"), "crossfade"
            )

        job = _CrossfadeJob(track)
        with self._lock:
            self._job = job
        lock_held = True
        try:
            self._volume.cancel_fade()
            self._controller.cancel_end_timer()
            self._volume.hold_outputs()
            outcome = self._run(job, snapshot.current_track, seconds)

            if outcome is None or job.token.cancelled:
                logger.info(f"[CROSSFADE] Crossfade to {track.display_name} cancelled")
                return False

            started_at, last_level = outcome
            generation = self._state.begin(track, track.duration_seconds, start_time=started_at)
            self._state.release_lock()
            lock_held = False
            self._volume.release_outputs()
            self._finish(job, generation, started_at, last_level, monitor)
            return True
        finally:
            self._volume.release_outputs()
            if lock_held:
                self._state.release_lock()
            with self._lock:
                if self._job is job:
                    self._job = None
            job.finished.set()

    def _run(self, job: _CrossfadeJob, outgoing: Track, duration: float) -> Optional[Tuple[float, float]]:
        """
        Run both sequences.

        Step k of n renders the outgoing track at live * (1 - k/n) and the
        incoming track at live * k/n, where live is the volume controller's
        render level at that moment.

        Returns:
            (incoming start time, last incoming level), or None if cancelled
        """
        incoming = job.track
        token = job.token
        steps, step_duration = step_plan(duration)
        rendered = {"level": 0.0}

        logger.info(
            f"[CROSSFADE] {outgoing.display_name} -> {incoming.display_name} "
            f"over {duration:.2f}s ({steps} steps @ {step_duration:.3f}s)"
        )
        self._events.publish(EventType.CROSSFADE_START, {
            "from_song": outgoing.song_id,
            "from_name": outgoing.display_name,
            "to_song": incoming.song_id,
            "to_name": incoming.display_name,
            "duration": duration,
        })

        def fade_out() -> bool:
            for step in range(1, steps + 1):
                if token.cancelled:
                    return False
                level = self._volume.render_level * (1.0 - step / steps)
                self._output.broadcast_play(outgoing.song_id, level)
                if not self._executor.sleep(step_duration, token):
                    return False
            self._output.broadcast_stop()
            return True

        def fade_in() -> bool:
            if not self._executor.sleep(step_duration * FADE_IN_OFFSET_STEPS, token):
                return False
            self._output.broadcast_play(incoming.song_id, 0.0)
            rendered["at"] = self._executor.now()
            if not self._executor.sleep(step_duration, token):
                return False
            for step in range(1, steps + 1):
                if token.cancelled:
                    return False
                level = self._volume.render_level * (step / steps)
                self._output.broadcast_play(incoming.song_id, level)
                rendered["level"] = level
                if not self._executor.sleep(step_duration, token):
                    return False
            return True

        out_done, in_done = self._executor.run_concurrently(fade_out, fade_in)
        if not (out_done and in_done):
            return None
        return rendered["at"], rendered["level"]

    def _finish(
        self, job: _CrossfadeJob, generation: int, started_at: float, last_level: float, monitor: bool
    ) -> None:
        track = job.track
        logger.info(f"[CROSSFADE] Now playing {track.display_name}")
        self._events.publish(EventType.CROSSFADE_END, {"song": track.song_id, "name": track.display_name})
        self._events.publish(EventType.SONG_START, {
            "song": track.song_id,
            "name": track.display_name,
            "duration": track.duration_seconds,
        })

        # Level moved after the last step
        level = self._volume.render_level
        if level != last_level and self._state.is_current(generation):
            self._output.broadcast_stop()
            self._output.broadcast_play(track.song_id, level)

        if monitor and track.duration_seconds > 0 and self._state.is_current(generation):
            remaining = track.duration_seconds - (self._executor.now() - started_at)
            self._controller.arm_end_timer(generation, remaining)
