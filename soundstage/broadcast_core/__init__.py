"""
Broadcast Core module for SoundStage.

This package contains the track model, the playback state machine and
the crossfade engine.
"""

from soundstage.broadcast_core.track import (
    DEFAULT_PLAYLIST_NAME,
    Playlist,
    Track,
    create_playlist,
    format_track_name,
)

__all__ = ["DEFAULT_PLAYLIST_NAME", "Playlist", "Track", "create_playlist", "format_track_name"]
