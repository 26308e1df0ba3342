"""
Playback and Volume State

Authoritative, read-only snapshots of what is playing and how loud.

PlaybackStateManager is written only by PlaybackController and
CrossfadeEngine. Every begin()/clear() bumps the generation counter; the
end-of-track timer captures the generation it was armed for and no-ops when
the counter has moved on.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from soundstage.broadcast_core.track import Track
    from soundstage.volume.volume_controller import FadeJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaybackState:
    """
    Immutable playback snapshot.

    elapsed_duration is computed when the snapshot is taken.
    """
    current_track: Optional["Track"] = None
    start_time: Optional[float] = None
    duration: float = 0.0
    elapsed_duration: float = 0.0
    is_playing: bool = False
    transition_lock: bool = False
    generation: int = 0

    @property
    def song_id(self) -> Optional[str]:
        return self.current_track.song_id if self.current_track else None

    @property
    def display_name(self) -> Optional[str]:
        return self.current_track.display_name if self.current_track else None

    @property
    def remaining(self) -> float:
        return max(0.0, self.duration - self.elapsed_duration)


@dataclass(frozen=True)
class VolumeState:
    """Immutable master-volume snapshot."""
    level: float
    is_muted: bool
    last_unmuted_level: float
    active_fade: Optional["FadeJob"] = None


class PlaybackStateManager:
    """
    Thread-safe owner of the now-playing state and the transition lock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize state manager.

        Args:
            clock: Monotonic time source (the executor's now() in the engine)
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._track: Optional["Track"] = None
        self._start_time: Optional[float] = None
        self._duration = 0.0
        self._is_playing = False
        self._transition_lock = False
        self._generation = 0

    def now(self) -> float:
        return self._clock()

    def begin(self, track: "Track", duration: float, start_time: Optional[float] = None) -> int:
        """
        Record that track is now playing.

        Args:
            track: Track that started
            duration: Track length in seconds (0 when unknown)
            start_time: When it started (defaults to now)

        Returns:
            The new generation
        """
        with self._lock:
            self._generation += 1
            self._track = track
            self._duration = max(0.0, float(duration or 0.0))
            self._start_time = self._clock() if start_time is None else start_time
            self._is_playing = True
            return self._generation

    def clear(self) -> Optional["Track"]:
        """Drop the current track. Returns the track that was playing, if any."""
        with self._lock:
            previous = self._track if self._is_playing else None
            self._generation += 1
            self._track = None
            self._start_time = None
            self._duration = 0.0
            self._is_playing = False
            return previous

    def try_acquire_lock(self) -> bool:
        with self._lock:
            if self._transition_lock:
                return False
            self._transition_lock = True
            return True

    def release_lock(self) -> None:
        with self._lock:
            self._transition_lock = False

    @property
    def locked(self) -> bool:
        with self._lock:
            return self._transition_lock

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return self._is_playing and self._generation == generation

    def get_state(self) -> PlaybackState:
        with self._lock:
            elapsed = 0.0
            if self._is_playing and self._start_time is not None:
                elapsed = max(0.0, self._clock() - self._start_time)
            return PlaybackState(
                current_track=self._track,
                start_time=self._start_time,
                duration=self._duration,
                elapsed_duration=elapsed,
                is_playing=self._is_playing,
                transition_lock=self._transition_lock,
                generation=self._generation,
            )
