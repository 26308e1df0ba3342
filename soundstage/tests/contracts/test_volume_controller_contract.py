"""
Tests for the volume controller: clamping, fades, cancellation and mute.
"""

import time

import pytest

from soundstage.events.event_bus import EventType
from soundstage.scheduler.executor import DirectExecutor, step_plan
from soundstage.tests.contracts.conftest import Rig
from soundstage.tests.contracts.test_doubles import StubOutputDevice


class Test1_SetVolume:
    @pytest.mark.parametrize("requested, stored", [(1.5, 1.0), (-0.2, 0.0), (0.35, 0.35)])
    def test_set_volume_clamps(self, rig, requested, stored):
        assert rig.volume.set_volume(requested) == stored
        assert rig.volume.get_volume() == stored

    def test_set_volume_publishes_volume_change(self, rig):
        rig.volume.set_volume(0.4)
        assert rig.recorder.payloads(EventType.VOLUME_CHANGE)[-1] == {"volume": 0.4, "is_muted": False}

    def test_set_volume_rerenders_live_track(self, rig, track_a):
        rig.controller.play(track_a)
        rig.volume.set_volume(0.3)
        for device in rig.devices:
            assert device.last_play == (track_a.song_id, pytest.approx(0.3))

    def test_rerender_stops_before_play(self, rig, track_a):
        rig.controller.play(track_a)
        for device in rig.devices:
            device.reset()
        rig.volume.set_volume(0.6)
        for device in rig.devices:
            assert device.commands == [("stop",), ("play", track_a.song_id, pytest.approx(0.6))]

    def test_set_volume_idle_issues_no_commands(self, rig):
        rig.volume.set_volume(0.3)
        assert all(device.commands == [] for device in rig.devices)

    def test_rerender_skipped_while_outputs_held(self, rig, track_a):
        rig.controller.play(track_a)
        for device in rig.devices:
            device.reset()
        rig.volume.hold_outputs()
        rig.volume.set_volume(0.3)
        assert all(device.commands == [] for device in rig.devices)
        rig.volume.release_outputs()
        assert rig.volume.get_volume() == 0.3


class Test2_StepPlan:
    @pytest.mark.parametrize("duration, steps", [(2.0, 20), (0.3, 5), (0.0, 5), (1.05, 10), (-1.0, 5)])
    def test_step_count(self, duration, steps):
        assert step_plan(duration)[0] == steps

    def test_step_duration_divides_total(self):
        steps, step_duration = step_plan(2.0)
        assert step_duration * steps == pytest.approx(2.0)


class Test3_Fade:
    def test_fade_ends_exactly_at_target(self, rig):
        rig.volume.set_volume(0.8)
        job = rig.volume.fade_volume(0.2, 2.0)
        assert job.wait(1.0)
        assert job.completed
        assert rig.volume.get_volume() == 0.2
        assert rig.recorder.payloads(EventType.VOLUME_CHANGE)[-1] == {"volume": 0.2, "is_muted": False}

    def test_fade_suspends_once_per_step(self, rig, manual_executor):
        rig.volume.fade_volume(0.0, 2.0)
        assert manual_executor.sleeps == [pytest.approx(0.1)] * 20

    def test_fade_target_clamped(self, rig):
        job = rig.volume.fade_volume(4.0, 0.5)
        assert job.target == 1.0
        assert rig.volume.get_volume() == 1.0

    def test_fade_renders_each_step_and_final(self, rig, track_a):
        rig.controller.play(track_a)
        device = rig.devices[0]
        device.reset()
        rig.volume.fade_volume(0.5, 0.5)
        volumes = [volume for _, volume in device.plays]
        assert len(volumes) == 6
        assert all(later <= earlier + 1e-9 for earlier, later in zip(volumes, volumes[1:]))
        assert volumes[0] == pytest.approx(0.9)
        assert volumes[-1] == 0.5

    def test_cancelled_fade_stops_midway(self, rig, manual_executor):
        rig.volume.set_volume(1.0)
        rig.recorder.clear()

        def cancel_at_third_step(count):
            if count == 2:
                rig.volume.cancel_fade()

        manual_executor.on_sleep = cancel_at_third_step
        job = rig.volume.fade_volume(0.0, 1.0)

        assert job.cancelled
        assert not job.completed
        assert 0.0 < rig.volume.get_volume() < 1.0
        assert rig.recorder.of(EventType.VOLUME_CHANGE) == []

    def test_cancel_fade_without_active_fade(self, rig):
        assert rig.volume.cancel_fade() is False

    def test_second_fade_cancels_first(self):
        executor = DirectExecutor()
        rig = Rig(executor, [StubOutputDevice("a")])
        rig.volume.set_volume(1.0)

        first = rig.volume.fade_volume(0.0, 1.0)
        time.sleep(0.05)
        second = rig.volume.fade_volume(0.2, 0.1)

        assert second.wait(2.0)
        assert first.wait(2.0)
        assert first.cancelled and not first.completed
        assert second.completed
        assert rig.volume.get_volume() == 0.2

    def test_set_volume_then_fade_scenario(self):
        executor = DirectExecutor()
        rig = Rig(executor, [StubOutputDevice("a")])
        rig.volume.set_volume(0.8)
        job = rig.volume.fade_volume(0.2, 0.2)
        assert job.wait(2.0)
        assert rig.volume.get_volume() == 0.2

    def test_active_fade_reported_in_state(self):
        executor = DirectExecutor()
        rig = Rig(executor, [StubOutputDevice("a")])
        job = rig.volume.fade_volume(0.0, 0.5)
        assert rig.volume.get_state().active_fade is job
        job.cancel()
        job.wait(2.0)
        assert rig.volume.get_state().active_fade is None


class Test4_Mute:
    def test_mute_and_unmute_restore_level(self, rig):
        rig.volume.set_volume(0.6)

        assert rig.volume.toggle_mute() is True
        assert rig.volume.is_muted
        assert rig.volume.get_volume() == 0.0
        assert rig.volume.render_level == 0.0
        assert rig.volume.get_state().last_unmuted_level == 0.6

        assert rig.volume.toggle_mute() is False
        assert rig.volume.get_volume() == 0.6

    def test_mute_change_events(self, rig):
        rig.volume.set_volume(0.6)
        rig.volume.toggle_mute()
        rig.volume.toggle_mute()
        assert rig.recorder.payloads(EventType.MUTE_CHANGE) == [
            {"is_muted": True, "volume": 0.0},
            {"is_muted": False, "volume": 0.6},
        ]

    def test_render_level_zero_while_muted(self, rig, track_a):
        rig.volume.toggle_mute()
        rig.controller.play(track_a)
        assert rig.devices[0].last_play == (track_a.song_id, 0.0)
