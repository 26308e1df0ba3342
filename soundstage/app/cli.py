"""
Command-line entry point for SoundStage.

Builds an engine from configuration, attaches the requested devices, plays
the given tracks as a playlist and runs until PLAYLIST_END or SIGINT/SIGTERM.

    python -m soundstage --devices 2 --left speaker-1 --right speaker-2 \\
        --track minecraft:music_disc.cat=185 --track minecraft:music_disc.blocks=345
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import threading
from typing import List, Optional

from soundstage.app.engine import AudioEngine
from soundstage.broadcast_core.track import Track
from soundstage.config import EngineConfig, load_config
from soundstage.errors import ConfigError, InvalidTrackError
from soundstage.events.event_bus import Event, EventType
from soundstage.outputs.base_device import BaseOutputDevice
from soundstage.outputs.http_device import HttpSpeakerDevice
from soundstage.outputs.null_device import NullDevice

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config: EngineConfig) -> None:
    """Console logging at the configured level, plus a rotation-tolerant file log when set."""
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if not config.log_file:
        return
    try:
        handler = logging.handlers.WatchedFileHandler(config.log_file, mode="a")
    except OSError as e:
        logger.warning(f"[ENGINE] Cannot open log file {config.log_file}: {e}")
        return
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    original_emit = handler.emit

    def safe_emit(record):
        try:
            original_emit(record)
        except (IOError, OSError):
            # Logging failures degrade silently
            pass

    handler.emit = safe_emit
    logging.getLogger().addHandler(handler)


def parse_track(value: str) -> Track:
    """Parse SONG_ID[=SECONDS] into a Track."""
    song_id, sep, seconds = value.rpartition("=")
    if not sep:
        song_id, seconds = value, "0"
    try:
        return Track(song_id=song_id, duration_seconds=float(seconds))
    except (ValueError, InvalidTrackError) as e:
        raise argparse.ArgumentTypeError(f"invalid track {value!r}: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="soundstage", description="SoundStage - multi-speaker playback engine")
    parser.add_argument("--devices", type=int, default=0, metavar="N",
                        help="attach N logging null devices (speaker-1 .. speaker-N)")
    parser.add_argument("--http", action="append", default=[], metavar="URL",
                        help="attach a remote HTTP speaker (repeatable)")
    parser.add_argument("--left", help="device id for the left speaker")
    parser.add_argument("--right", help="device id for the right speaker")
    parser.add_argument("--track", action="append", default=[], type=parse_track, metavar="SONG_ID=SECONDS",
                        help="add a track to the playlist (repeatable)")
    parser.add_argument("--name", default=None, help="playlist name")
    parser.add_argument("--loop", action="store_true", help="loop the playlist")
    parser.add_argument("--shuffle", action="store_true", help="shuffle the playlist")
    parser.add_argument("--no-crossfade", action="store_true", help="disable crossfades between tracks")
    parser.add_argument("--crossfade-duration", type=float, default=None, metavar="SECONDS")
    parser.add_argument("--volume", type=float, default=None, help="initial volume (0.0-1.0)")
    parser.add_argument("--scheduler", action="store_true",
                        help="run transitions on the background task scheduler")
    return parser


def build_devices(args: argparse.Namespace, config: EngineConfig) -> List[BaseOutputDevice]:
    devices: List[BaseOutputDevice] = [
        NullDevice(f"speaker-{i}", log_commands=True) for i in range(1, args.devices + 1)
    ]
    for i, url in enumerate(args.http, start=1):
        devices.append(HttpSpeakerDevice(f"http-{i}", url, timeout=config.http_timeout))
    return devices


def apply_overrides(config: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    overrides = {"looping": args.loop}
    if args.left:
        overrides["left_speaker"] = args.left
    if args.right:
        overrides["right_speaker"] = args.right
    if args.no_crossfade:
        overrides["crossfade_enabled"] = False
    if args.crossfade_duration is not None:
        overrides["crossfade_duration"] = args.crossfade_duration
    if args.volume is not None:
        overrides["default_volume"] = args.volume
    if args.scheduler:
        overrides["use_scheduler"] = True
    merged = {**config.__dict__, **overrides}
    return EngineConfig.from_mapping(merged)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_overrides(load_config(), args)
    except ConfigError as e:
        parser.error(str(e))
    configure_logging(config)

    devices = build_devices(args, config)
    if not devices:
        parser.error("at least one device is required (--devices N or --http URL)")
    if not args.track:
        parser.error("at least one --track is required")

    engine = AudioEngine(config)
    finished = threading.Event()
    engine.add_event_listener(EventType.PLAYLIST_END, lambda event: finished.set())
    engine.add_event_listener(
        EventType.ERROR,
        lambda event: logger.error(f"[ENGINE] {event.payload.get('source')}: {event.payload.get('message')}"),
    )

    def on_song_start(event: Event) -> None:
        logger.info(f"[ENGINE] Now playing: {event.payload['name']}")

    engine.add_event_listener(EventType.SONG_START, on_song_start)

    shutdown_initiated = False

    def signal_handler(sig, frame):
        nonlocal shutdown_initiated
        if shutdown_initiated:
            logger.debug("[ENGINE] Shutdown already in progress, ignoring duplicate signal")
            return
        shutdown_initiated = True
        signal_name = "SIGTERM" if sig == signal.SIGTERM else "SIGINT"
        logger.info(f"[ENGINE] Received {signal_name} signal - shutting down")
        finished.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not engine.initialize(devices):
        return 1

    playlist = engine.create_playlist(args.name, args.track)
    if playlist is None or not engine.set_current_playlist(playlist):
        engine.shutdown()
        return 1
    if args.shuffle:
        engine.toggle_shuffle()

    if not engine.play_current():
        engine.shutdown()
        return 1

    try:
        while not finished.wait(timeout=0.5):
            pass
    finally:
        engine.shutdown()
        for device in devices:
            if isinstance(device, HttpSpeakerDevice):
                device.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
