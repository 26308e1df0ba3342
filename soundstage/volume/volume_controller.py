"""
Volume Controller for SoundStage.

Owns the master level, mute state and the single active fade.

Rendering: every level change stops the devices and re-issues the live track
through the output layer at render_level (0 while muted). While a crossfade
owns the outputs the re-render is skipped; the crossfade scales its next step
by the new level.
"""

import logging
import threading
from typing import Optional

from soundstage.events.event_bus import EventBus, EventType
from soundstage.mixer.mixer import StereoMixer
from soundstage.outputs.output_layer import OutputLayer
from soundstage.scheduler.executor import CancelToken, StepExecutor, TaskHandle, step_plan
from soundstage.state.playback_state import PlaybackStateManager, VolumeState

logger = logging.getLogger(__name__)

DEFAULT_FADE_DURATION = 2.0


class FadeJob:
    """
    Handle for one background fade.

    Attributes:
        target: Level the fade ends at
        duration: Requested fade length in seconds
        completed: True once the fade reached its target (False if cancelled)
    """

    def __init__(self, target: float, duration: float):
        self.target = target
        self.duration = duration
        self.token = CancelToken()
        self.completed = False
        self._handle: Optional[TaskHandle] = None
        self._started = threading.Event()

    def _attach(self, handle: TaskHandle) -> None:
        self._handle = handle
        self._started.set()

    def cancel(self) -> bool:
        return self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def done(self) -> bool:
        return self._handle is not None and self._handle.done

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the fade ended (completed or cancelled). Returns False on timeout."""
        if not self._started.wait(timeout):
            return False
        return self._handle.join(timeout)

    def __repr__(self) -> str:
        state = "completed" if self.completed else "cancelled" if self.cancelled else "running"
        return f"FadeJob(target={self.target:.2f}, duration={self.duration}, {state})"


class VolumeController:
    """
    Master volume with mute and cancellable fades.
    """

    def __init__(
        self,
        output: OutputLayer,
        events: EventBus,
        executor: StepExecutor,
        playback: PlaybackStateManager,
        level: float = 1.0,
    ):
        self._output = output
        self._events = events
        self._executor = executor
        self._playback = playback
        self._lock = threading.RLock()
        self._level = StereoMixer.clamp(level)
        self._last_unmuted_level = self._level
        self._muted = False
        self._fade: Optional[FadeJob] = None
        self._outputs_held = threading.Event()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_volume(self) -> float:
        with self._lock:
            return self._level

    @property
    def is_muted(self) -> bool:
        with self._lock:
            return self._muted

    @property
    def render_level(self) -> float:
        """Level actually sent to devices."""
        with self._lock:
            return 0.0 if self._muted else self._level

    def get_state(self) -> VolumeState:
        with self._lock:
            fade = self._fade if self._fade is not None and not self._fade.done else None
            return VolumeState(
                level=self._level,
                is_muted=self._muted,
                last_unmuted_level=self._last_unmuted_level,
                active_fade=fade,
            )

    # ------------------------------------------------------------------
    # Crossfade ownership
    # ------------------------------------------------------------------

    def hold_outputs(self) -> None:
        """A crossfade is driving the outputs; suspend re-renders."""
        self._outputs_held.set()

    def release_outputs(self) -> None:
        self._outputs_held.clear()

    @property
    def outputs_held(self) -> bool:
        return self._outputs_held.is_set()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reset(self, level: float) -> None:
        """Cancel any fade and restore an unmuted level without rendering or events."""
        self.cancel_fade()
        with self._lock:
            self._level = StereoMixer.clamp(level)
            self._last_unmuted_level = self._level
            self._muted = False

    def set_volume(self, volume: float) -> float:
        """
        Set the master level.

        Args:
            volume: Requested level (clamped into [0, 1])

        Returns:
            The stored level
        """
        with self._lock:
            self._level = StereoMixer.clamp(volume)
            level, muted = self._level, self._muted
        self._render()
        logger.debug(f"[VOLUME] Volume set to {level:.2f}")
        self._events.publish(EventType.VOLUME_CHANGE, {"volume": level, "is_muted": muted})
        return level

    def fade_volume(self, target: float, duration: float = DEFAULT_FADE_DURATION) -> FadeJob:
        """
        Fade the master level to target in the background.

        Any running fade is cancelled first. The level moves in
        max(5, floor(duration / 0.1)) equal steps and finishes exactly at target.

        Returns:
            FadeJob for waiting on or cancelling the fade
        """
        target = StereoMixer.clamp(target)
        duration = max(0.0, float(duration))
        job = FadeJob(target, duration)
        with self._lock:
            previous, self._fade = self._fade, job
        if previous is not None and previous.cancel():
            logger.debug(f"[VOLUME] Cancelled previous fade to {previous.target:.2f}")
            previous.wait()

        logger.info(f"[VOLUME] Fading to {target:.2f} over {duration:.2f}s")
        job._attach(self._executor.spawn(lambda: self._run_fade(job), name="volume-fade"))
        return job

    def cancel_fade(self) -> bool:
        """Cancel the active fade. Returns True if one was running."""
        with self._lock:
            job = self._fade
        if job is None or job.done or not job.cancel():
            return False
        logger.debug(f"[VOLUME] Fade to {job.target:.2f} cancelled")
        return True

    def toggle_mute(self) -> bool:
        """
        Flip mute state.

        Muting remembers the current level and sets volume 0; unmuting
        restores the remembered level.

        Returns:
            The new mute state
        """
        with self._lock:
            self._muted = not self._muted
            muted = self._muted
            if muted:
                self._last_unmuted_level = self._level
            restore = self._last_unmuted_level
        self.set_volume(0.0 if muted else restore)
        logger.info(f"[VOLUME] {'Muted' if muted else 'Unmuted'}")
        self._events.publish(EventType.MUTE_CHANGE, {"is_muted": muted, "volume": self.get_volume()})
        return muted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_fade(self, job: FadeJob) -> None:
        steps, step_duration = step_plan(job.duration)
        with self._lock:
            delta = (job.target - self._level) / steps

        for _ in range(steps):
            if job.token.cancelled:
                return
            with self._lock:
                self._level = StereoMixer.clamp(self._level + delta)
            self._render()
            if not self._executor.sleep(step_duration, job.token):
                return

        if job.token.cancelled:
            return
        with self._lock:
            self._level = job.target
            muted = self._muted
        self._render()
        job.completed = True
        logger.debug(f"[VOLUME] Fade complete at {job.target:.2f}")
        self._events.publish(EventType.VOLUME_CHANGE, {"volume": job.target, "is_muted": muted})

    def _render(self) -> None:
        if self._outputs_held.is_set():
            return
        state = self._playback.get_state()
        if not state.is_playing or state.current_track is None:
            return
        self._output.broadcast_stop()
        self._output.broadcast_play(state.current_track.song_id, self.render_level)
