"""
Shared pytest fixtures for SoundStage tests.

Tests use test doubles (stub devices, a virtual-clock executor) to avoid
real speakers and wall-clock waits. No environment variables or real files
are used unless a test sets them up explicitly.
"""

import random
import threading

import pytest

from soundstage.app.engine import AudioEngine
from soundstage.broadcast_core.crossfade import CrossfadeEngine
from soundstage.broadcast_core.playback_controller import PlaybackController
from soundstage.broadcast_core.track import Track, create_playlist
from soundstage.config import EngineConfig
from soundstage.events.event_bus import EventBus
from soundstage.music_logic.playlist_manager import PlaylistManager
from soundstage.outputs.output_layer import OutputLayer
from soundstage.state.playback_state import PlaybackStateManager
from soundstage.volume.volume_controller import VolumeController
from soundstage.tests.contracts.test_doubles import (
    EventRecorder,
    ManualExecutor,
    StubOutputDevice,
)


class Rig:
    """Components wired the same way AudioEngine wires them, exposed for tests."""

    def __init__(self, executor, devices, volume=1.0, looping=False, crossfade=True, crossfade_duration=2.0):
        self.executor = executor
        self.events = EventBus()
        self.recorder = EventRecorder(self.events)
        self.output = OutputLayer()
        for device in devices:
            self.output.register(device)
        self.devices = devices
        self.state = PlaybackStateManager(clock=executor.now)
        self.volume = VolumeController(self.output, self.events, executor, self.state, level=volume)
        self.playlist = PlaylistManager(self.events, looping=looping, rng=random.Random(7))
        self.controller = PlaybackController(
            self.output, self.events, self.volume, self.playlist, self.state, executor
        )
        self.crossfader = CrossfadeEngine(
            self.controller, self.output, self.events, self.volume, self.state, executor,
            duration=crossfade_duration, enabled=crossfade,
        )
        self.controller.crossfader = self.crossfader


@pytest.fixture
def manual_executor():
    """Executor with a virtual clock and manually fired timers."""
    return ManualExecutor()


@pytest.fixture
def stub_devices():
    """Three recording output devices."""
    return [StubOutputDevice("speaker-1"), StubOutputDevice("speaker-2"), StubOutputDevice("speaker-3")]


@pytest.fixture
def rig(manual_executor, stub_devices):
    """Fully wired components on the manual executor."""
    return Rig(manual_executor, stub_devices)


@pytest.fixture
def track_a():
    return Track("minecraft:music_disc.cat", duration_seconds=10.0)


@pytest.fixture
def track_b():
    return Track("minecraft:music_disc.blocks", duration_seconds=5.0)


@pytest.fixture
def two_track_playlist(track_a, track_b):
    return create_playlist("Discs", [track_a, track_b])


@pytest.fixture
def engine(manual_executor, stub_devices):
    """Initialized engine on the manual executor, looping off."""
    config = EngineConfig(looping=False)
    audio = AudioEngine(config, executor=manual_executor, rng=random.Random(3))
    audio.recorder = EventRecorder(audio.events)
    assert audio.initialize(stub_devices)
    yield audio
    audio.shutdown()


@pytest.fixture(autouse=False)
def thread_leak_guard():
    """
    Optional fixture to detect non-daemon thread leaks between tests.

    Request it explicitly in tests that start real threads.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = [t for t in threading.enumerate() if t.ident in after - before and not t.daemon]
    if leaked:
        thread_info = "\n".join(f"  - {t.name} (daemon={t.daemon})" for t in leaked)
        assert False, f"Thread leak detected - shutdown incomplete.\nLeaked threads:\n{thread_info}"
