"""
Track and Playlist models for SoundStage.

A Track is the playable unit: an opaque sound identifier the output devices
understand, a display name, and the expected duration used to arm the
end-of-track timer.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from soundstage.errors import InvalidPlaylistError, InvalidTrackError

DEFAULT_PLAYLIST_NAME = "Untitled Playlist"

_WORD_START = re.compile(r"[a-z][A-Za-z0-9]*")


def format_track_name(song_id: Optional[str]) -> str:
    """
    Derive a human-readable name from a sound identifier.

    "namespace:path" identifiers lose the namespace, dots and underscores in
    the path become spaces, and each word starting with a lowercase letter
    gets that letter capitalised ("minecraft:music_disc.cat" -> "Music Disc Cat").
    Identifiers without a namespace are returned unchanged.

    Args:
        song_id: Sound identifier (may be None)

    Returns:
        Display name
    """
    if not song_id:
        return "Unknown"

    namespace, sep, path = song_id.partition(":")
    if not sep or not namespace or not path:
        return song_id

    path = path.replace(".", " ").replace("_", " ")
    return _WORD_START.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:], path)


@dataclass(frozen=True)
class Track:
    """
    A playable unit.

    Attributes:
        song_id: Opaque sound identifier sent to the output devices
        display_name: Human-readable name (derived from song_id when omitted)
        duration_seconds: Expected duration; 0 means unknown (no end-of-track timer)
    """
    song_id: str
    display_name: Optional[str] = None
    duration_seconds: float = 0.0

    def __post_init__(self):
        if not isinstance(self.song_id, str) or not self.song_id.strip():
            raise InvalidTrackError(f"Track requires a non-empty song_id, got {self.song_id!r}")
        try:
            duration = float(self.duration_seconds or 0.0)
        except (TypeError, ValueError):
            raise InvalidTrackError(f"Invalid duration for {self.song_id}: {self.duration_seconds!r}")
        if duration < 0:
            raise InvalidTrackError(f"Duration must be >= 0 for {self.song_id}, got {duration}")
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "duration_seconds", duration)
        if not self.display_name:
            object.__setattr__(self, "display_name", format_track_name(self.song_id))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Track":
        """
        Build a Track from plain data.

        Accepts either the long keys (song_id, display_name, duration_seconds)
        or the short ones used by stored playlists (song, name, duration).

        Raises:
            InvalidTrackError: If the mapping has no song id or a bad duration
        """
        if not isinstance(data, Mapping):
            raise InvalidTrackError(f"Track entry must be a mapping, got {type(data).__name__}")
        song_id = data.get("song_id", data.get("song"))
        if song_id is None:
            raise InvalidTrackError("Track entry is missing 'song'")
        return cls(
            song_id=song_id,
            display_name=data.get("display_name", data.get("name")),
            duration_seconds=data.get("duration_seconds", data.get("duration", 0.0)) or 0.0,
        )

    def to_dict(self) -> dict:
        return {
            "song": self.song_id,
            "name": self.display_name,
            "duration": self.duration_seconds,
        }


@dataclass
class Playlist:
    """
    Named, ordered collection of tracks.

    Attributes:
        name: Playlist name
        tracks: Tracks in play order
        created_at: Wall-clock creation timestamp
        modified_at: Wall-clock timestamp of the last change
    """
    name: str
    tracks: Tuple[Track, ...]
    created_at: float = field(default_factory=time.time)
    modified_at: float = field(default_factory=time.time)

    def __len__(self) -> int:
        return len(self.tracks)

    def total_duration(self) -> float:
        return sum(track.duration_seconds for track in self.tracks)


TrackLike = Union[Track, Mapping[str, Any]]


def create_playlist(name: Optional[str], tracks: Iterable[TrackLike]) -> Playlist:
    """
    Create a validated playlist.

    Args:
        name: Playlist name (defaults to "Untitled Playlist")
        tracks: Track instances or mappings accepted by Track.from_dict

    Returns:
        Playlist instance

    Raises:
        InvalidPlaylistError: If tracks is not iterable or empty
        InvalidTrackError: If an entry is malformed (position is 1-based)
    """
    if tracks is None or isinstance(tracks, (str, bytes, Mapping)):
        raise InvalidPlaylistError("Playlist tracks must be a sequence of tracks")

    validated = []
    for position, entry in enumerate(tracks, start=1):
        if isinstance(entry, Track):
            validated.append(entry)
            continue
        try:
            validated.append(Track.from_dict(entry))
        except InvalidTrackError as e:
            raise InvalidTrackError(f"Invalid track at position {position}: {e}", position=position)

    if not validated:
        raise InvalidPlaylistError("Playlist must contain at least one track")

    now = time.time()
    return Playlist(
        name=name or DEFAULT_PLAYLIST_NAME,
        tracks=tuple(validated),
        created_at=now,
        modified_at=now,
    )
