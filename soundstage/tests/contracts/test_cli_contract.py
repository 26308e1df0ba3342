"""
Tests for the command-line helpers (argument parsing and config overrides).
"""

import argparse

import pytest

from soundstage.app.cli import apply_overrides, build_devices, build_parser, parse_track
from soundstage.config import EngineConfig
from soundstage.errors import ConfigError
from soundstage.outputs.http_device import HttpSpeakerDevice
from soundstage.outputs.null_device import NullDevice


class Test1_ParseTrack:
    def test_song_with_seconds(self):
        track = parse_track("minecraft:music_disc.cat=185")
        assert track.song_id == "minecraft:music_disc.cat"
        assert track.duration_seconds == 185.0

    def test_song_without_seconds(self):
        assert parse_track("minecraft:music_disc.cat").duration_seconds == 0.0

    @pytest.mark.parametrize("value", ["=10", "a:b=soon", "a:b=-3"])
    def test_invalid_tracks(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_track(value)


class Test2_Overrides:
    def test_flags_override_config(self):
        args = build_parser().parse_args([
            "--devices", "2", "--left", "speaker-1", "--right", "speaker-2",
            "--no-crossfade", "--volume", "0.4", "--loop", "--track", "a:b=3",
        ])
        config = apply_overrides(EngineConfig(), args)
        assert config.left_speaker == "speaker-1"
        assert config.right_speaker == "speaker-2"
        assert config.crossfade_enabled is False
        assert config.default_volume == 0.4
        assert config.looping is True

    def test_looping_off_without_flag(self):
        args = build_parser().parse_args(["--devices", "1"])
        assert apply_overrides(EngineConfig(looping=True), args).looping is False

    def test_invalid_override_rejected(self):
        args = build_parser().parse_args(["--volume", "3"])
        with pytest.raises(ConfigError):
            apply_overrides(EngineConfig(), args)


class Test3_Devices:
    def test_null_and_http_devices(self):
        args = build_parser().parse_args(["--devices", "2", "--http", "http://porch.local:8080"])
        devices = build_devices(args, EngineConfig(http_timeout=1.5))
        try:
            assert [d.device_id for d in devices] == ["speaker-1", "speaker-2", "http-1"]
            assert isinstance(devices[0], NullDevice)
            assert isinstance(devices[2], HttpSpeakerDevice)
            assert devices[2].timeout == 1.5
        finally:
            devices[2].close()
