"""
SoundStage Engine

Owns and wires one instance of every component:

    PlaylistManager -> PlaybackController / CrossfadeEngine -> OutputLayer
                                ^                                   ^
                          end-of-track timer                 VolumeController

Every operation that can fail for an expected reason (not initialized,
locked, bad input, no devices) logs, publishes an ERROR event and returns
False/None instead of raising. Several engines can coexist; nothing here is
module-global.
"""

import logging
import random
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from soundstage import __version__
from soundstage.broadcast_core.crossfade import CrossfadeEngine, coerce_duration
from soundstage.broadcast_core.playback_controller import PlaybackController
from soundstage.broadcast_core.track import Playlist, Track, TrackLike, create_playlist
from soundstage.config import EngineConfig
from soundstage.errors import (
    DeviceFailure,
    InvalidPlaylistError,
    InvalidTrackError,
    NoOutputDevicesError,
    NotInitializedError,
    SoundStageError,
)
from soundstage.events.event_bus import Event, EventBus, EventType
from soundstage.music_logic.playlist_manager import PlaylistManager
from soundstage.outputs.base_device import BaseOutputDevice
from soundstage.outputs.output_layer import OutputLayer
from soundstage.scheduler.deferred import Deferred
from soundstage.scheduler.executor import DirectExecutor, ScheduledExecutor, StepExecutor
from soundstage.scheduler.task_scheduler import TaskScheduler, ThreadedTaskScheduler
from soundstage.state.playback_state import PlaybackStateManager
from soundstage.volume.volume_controller import FadeJob, VolumeController

logger = logging.getLogger(__name__)

# Wait used by the promise chain when a track has no known duration
UNKNOWN_TRACK_WAIT = 30.0

TrackInput = Union[Track, str, Mapping[str, Any]]


class AudioEngine:
    """
    Audio-playback orchestration engine for a set of output devices.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        executor: Optional[StepExecutor] = None,
        scheduler: Optional[TaskScheduler] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the engine (devices are attached by initialize()).

        Args:
            config: Engine configuration (defaults to EngineConfig())
            executor: Step executor; defaults to a ScheduledExecutor when a
                scheduler is available, else a DirectExecutor
            scheduler: Background task scheduler; one is created and owned by
                the engine when config.use_scheduler is set
            rng: Random source for shuffling
        """
        self.config = config or EngineConfig()
        self._owns_scheduler = False
        if scheduler is None and self.config.use_scheduler:
            scheduler = ThreadedTaskScheduler()
            self._owns_scheduler = True
        self.scheduler = scheduler

        if executor is None:
            executor = ScheduledExecutor(scheduler) if scheduler is not None else DirectExecutor()
        self.executor = executor

        self.events = EventBus(surface_handler_errors=self.config.surface_handler_errors)
        self.output = OutputLayer(
            left_speaker=self.config.left_speaker,
            right_speaker=self.config.right_speaker,
            on_failure=self._on_device_failure,
        )
        self.state = PlaybackStateManager(clock=self.executor.now)
        self.volume = VolumeController(
            self.output, self.events, self.executor, self.state, level=self.config.default_volume
        )
        self.playlist = PlaylistManager(
            self.events,
            looping=self.config.looping,
            max_history=self.config.max_history,
            rng=rng,
        )
        self.controller = PlaybackController(
            self.output, self.events, self.volume, self.playlist, self.state, self.executor
        )
        self.crossfader = CrossfadeEngine(
            self.controller,
            self.output,
            self.events,
            self.volume,
            self.state,
            self.executor,
            duration=self.config.crossfade_duration,
            enabled=self.config.crossfade_enabled,
        )
        self.controller.crossfader = self.crossfader
        self.initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, devices: Iterable[BaseOutputDevice] = ()) -> bool:
        """
        Reset state from config and attach devices.

        Devices whose ids match config.left_speaker / config.right_speaker take
        the stereo roles with the configured balance.

        Returns:
            True if at least one device is registered
        """
        devices = list(devices)
        if not devices and not self.output.has_devices():
            return self._report(NoOutputDevicesError("No output devices provided"), "initialize")

        if self.initialized:
            self.controller.stop_all()

        self.volume.reset(self.config.default_volume)
        self.playlist.set_looping(self.config.looping)
        self.crossfader.enabled = self.config.crossfade_enabled
        self.crossfader.set_duration(self.config.crossfade_duration)
        self.output.set_stereo_balance(self.config.balance_left, self.config.balance_right)
        for device in devices:
            self.output.device_attached(device)

        if self._owns_scheduler and not self.scheduler.running:
            self.scheduler.start()

        self.initialized = True
        logger.info(
            f"[ENGINE] Initialized with {len(self.output)} device(s) "
            f"(volume={self.volume.get_volume():.2f}, crossfade={self.crossfader.enabled}, "
            f"scheduler={'yes' if self.scheduler is not None else 'no'})"
        )
        return True

    def shutdown(self) -> None:
        """Stop playback and release the engine's scheduler."""
        if self.initialized:
            self.controller.stop_all()
        self.executor.shutdown()
        if self._owns_scheduler and self.scheduler is not None:
            self.scheduler.shutdown()
        self.initialized = False
        logger.info("[ENGINE] Shut down")

    def get_version(self) -> str:
        return __version__

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play_song(self, track: TrackInput, duration: Optional[float] = None) -> bool:
        if not self._require("play_song"):
            return False
        resolved = self._coerce_track(track, duration, "play_song")
        if resolved is None:
            return False
        return self.controller.play(resolved, duration)

    def crossfade(self, track: TrackInput, duration: Optional[float] = None) -> bool:
        """
        Crossfade to track, cancelling any crossfade already in flight.

        Args:
            track: Incoming track (Track, song id or mapping)
            duration: Crossfade length (defaults to the configured duration)
        """
        if not self._require("crossfade"):
            return False
        seconds = None
        if duration is not None:
            seconds = coerce_duration(duration)
            if seconds is None:
                return self._report(SoundStageError(f"Invalid crossfade duration: {duration!r}"), "crossfade")
        resolved = self._coerce_track(track, None, "crossfade")
        if resolved is None:
            return False
        return self.crossfader.crossfade(resolved, seconds)

    def stop_all(self) -> bool:
        if not self._require("stop_all"):
            return False
        return self.controller.stop_all()

    def play_next(self) -> bool:
        if not self._require("play_next"):
            return False
        return self.controller.play_next()

    def play_previous(self) -> bool:
        if not self._require("play_previous"):
            return False
        return self.controller.play_previous()

    def play_current(self) -> bool:
        if not self._require("play_current"):
            return False
        return self.controller.play_current()

    # ------------------------------------------------------------------
    # Volume
    # ------------------------------------------------------------------

    def set_volume(self, volume: float) -> Optional[float]:
        if not self._require("set_volume"):
            return None
        try:
            return self.volume.set_volume(float(volume))
        except (TypeError, ValueError):
            self._report(SoundStageError(f"Invalid volume: {volume!r}"), "set_volume")
            return None

    def get_volume(self) -> float:
        return self.volume.get_volume()

    def fade_volume(self, target: float, duration: float = 2.0) -> Optional[FadeJob]:
        if not self._require("fade_volume"):
            return None
        return self.volume.fade_volume(target, duration)

    def toggle_mute(self) -> Optional[bool]:
        if not self._require("toggle_mute"):
            return None
        return self.volume.toggle_mute()

    def is_muted(self) -> bool:
        return self.volume.is_muted

    # ------------------------------------------------------------------
    # Playlist
    # ------------------------------------------------------------------

    def create_playlist(self, name: Optional[str], tracks: Iterable[TrackLike]) -> Optional[Playlist]:
        try:
            return create_playlist(name, tracks)
        except (InvalidPlaylistError, InvalidTrackError) as e:
            self._report(e, "create_playlist")
            return None

    def set_current_playlist(self, playlist: Playlist, name: Optional[str] = None) -> bool:
        if not self._require("set_current_playlist"):
            return False
        try:
            return self.playlist.set_current_playlist(playlist, name)
        except InvalidPlaylistError as e:
            return self._report(e, "set_current_playlist")

    def shuffle_playlist(self) -> bool:
        if not self._require("shuffle_playlist"):
            return False
        return self.playlist.shuffle()

    def toggle_shuffle(self) -> Optional[bool]:
        if not self._require("toggle_shuffle"):
            return None
        return self.playlist.toggle_shuffle()

    def set_looping(self, looping: bool) -> Optional[bool]:
        if not self._require("set_looping"):
            return None
        return self.playlist.set_looping(looping)

    def is_looping(self) -> bool:
        return self.playlist.is_looping

    def set_current_track_index(self, index: int) -> bool:
        if not self._require("set_current_track_index"):
            return False
        if not self.playlist.set_index(index):
            return self._report(
                InvalidPlaylistError(f"Track index {index} out of range (1..{self.playlist.track_count})"),
                "set_current_track_index",
            )
        return True

    # ------------------------------------------------------------------
    # Crossfade settings
    # ------------------------------------------------------------------

    def set_crossfade_enabled(self, enabled: bool) -> bool:
        self.crossfader.enabled = bool(enabled)
        logger.info(f"[ENGINE] Crossfade {'enabled' if self.crossfader.enabled else 'disabled'}")
        return self.crossfader.enabled

    def set_crossfade_duration(self, duration: float) -> bool:
        if not self.crossfader.set_duration(duration):
            return self._report(SoundStageError(f"Invalid crossfade duration: {duration!r}"), "set_crossfade_duration")
        return True

    # ------------------------------------------------------------------
    # Speakers
    # ------------------------------------------------------------------

    def configure_speakers(self, left: Optional[str], right: Optional[str]) -> bool:
        if not self._require("configure_speakers"):
            return False
        return self.output.configure_stereo(left, right)

    def set_speaker_balance(self, left: float, right: float) -> bool:
        if not self._require("set_speaker_balance"):
            return False
        self.output.set_stereo_balance(left, right)
        return True

    def device_attached(self, device: BaseOutputDevice) -> None:
        self.output.device_attached(device)

    def device_detached(self, device_id: str) -> bool:
        return self.output.device_detached(device_id)

    def get_speaker_status(self) -> dict:
        return self.output.get_status(self.volume.render_level)

    def get_speaker_config(self) -> dict:
        return self.output.get_config()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_current_song(self) -> Optional[str]:
        return self.state.get_state().song_id

    def get_current_song_name(self) -> Optional[str]:
        return self.state.get_state().display_name

    def get_current_time(self) -> int:
        return self.controller.current_time()

    def get_current_song_duration(self) -> float:
        return self.state.get_state().duration

    def get_current_playlist_name(self) -> Optional[str]:
        return self.playlist.name

    def get_status(self) -> dict:
        playback = self.state.get_state()
        volume = self.volume.get_state()
        return {
            "initialized": self.initialized,
            "version": __version__,
            "playback": {
                "is_playing": playback.is_playing,
                "current_song": playback.song_id,
                "song_name": playback.display_name,
                "position": int(playback.elapsed_duration),
                "duration": playback.duration,
                "transition_lock": playback.transition_lock,
            },
            "volume": {
                "level": volume.level,
                "is_muted": volume.is_muted,
                "fading": volume.active_fade is not None,
            },
            "effects": {
                "crossfade_enabled": self.crossfader.enabled,
                "crossfade_active": self.crossfader.is_active,
                "crossfade_duration": self.crossfader.duration,
            },
            "playlist": self.playlist.get_status(),
            "speakers": self.get_speaker_status(),
            "scheduler": {
                "available": self.scheduler is not None,
                "owned": self._owns_scheduler,
                "executor": type(self.executor).__name__,
            },
        }

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_event_listener(self, event_type: EventType, handler: Callable[[Event], None]) -> str:
        return self.events.subscribe(event_type, handler)

    def remove_event_listener(self, handler_id: str) -> bool:
        return self.events.unsubscribe(handler_id)

    # ------------------------------------------------------------------
    # Promise-driven playlist
    # ------------------------------------------------------------------

    def process_playlist_with_promises(self, playlist: Playlist, name: Optional[str] = None) -> Optional[Deferred]:
        """
        Play every track of playlist in order as a chain of Deferreds.

        Each step starts its track (crossfading after the first when enabled)
        without the end-of-track timer, then waits the track's duration
        (30s when unknown) on a scheduler timer. The chain publishes
        PLAYLIST_END when every track has played.

        Returns:
            The Deferred for the whole chain, or None if rejected
        """
        if not self._require("process_playlist_with_promises"):
            return None
        if self.scheduler is None:
            self._report(SoundStageError("A task scheduler is required for promise playback"),
                         "process_playlist_with_promises")
            return None
        if not self.set_current_playlist(playlist, name):
            return None

        scheduler = self.scheduler
        chain = Deferred.resolved()
        for position, track in enumerate(playlist.tracks, start=1):
            chain = chain.then(lambda _, p=position, t=track: self._promise_step(scheduler, p, t))

        def finished(_):
            logger.info(f"[ENGINE] Playlist '{self.playlist.name}' completed via promises")
            self.events.publish(EventType.PLAYLIST_END, {
                "name": self.playlist.name,
                "track_count": self.playlist.track_count,
            })
            return True

        def failed(error):
            logger.error(f"[ENGINE] Playlist promise error: {error}")
            self.events.publish_error(error, "process_playlist_with_promises")
            return False

        return chain.then(finished, failed)

    def _promise_step(self, scheduler: TaskScheduler, position: int, track: Track) -> Deferred:
        def start():
            if position > 1 and self.crossfader.enabled:
                ok = self.crossfader.crossfade(track, monitor=False)
            else:
                ok = self.controller.play(track, monitor=False)
            if not ok:
                raise SoundStageError(f"Failed to play: {track.song_id}")
            return position

        def wait_for_end(_):
            done = scheduler.new_deferred()

            def elapsed():
                done.resolve(position)
                return 0

            scheduler.schedule_timer(track.duration_seconds or UNKNOWN_TRACK_WAIT, elapsed)
            return done

        # Playback blocks during crossfades, so it runs as a task rather than on the timer thread
        return scheduler.add_task(start, name=f"soundstage-track-{position}").then(wait_for_end)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, source: str) -> bool:
        if self.initialized:
            return True
        return self._report(NotInitializedError("SoundStage engine not initialized"), source)

    def _report(self, error: SoundStageError, source: str) -> bool:
        logger.warning(f"[ENGINE] {source}: {error}")
        self.events.publish_error(error, source)
        return False

    def _coerce_track(self, track: TrackInput, duration: Optional[float], source: str) -> Optional[Track]:
        try:
            if isinstance(track, Track):
                return track
            if isinstance(track, str):
                return Track(song_id=track, duration_seconds=duration or 0.0)
            if isinstance(track, Mapping):
                return Track.from_dict(track)
            raise InvalidTrackError(f"Unsupported track value: {track!r}")
        except InvalidTrackError as e:
            self._report(e, source)
            return None

    def _on_device_failure(self, failure: DeviceFailure) -> None:
        self.events.publish_error(failure, "output", device_id=failure.device_id, action=failure.action)
