"""
Playlist Manager for SoundStage.

Holds the current playlist cursor: ordered tracks, 1-based index, loop and
shuffle modes, and a bounded history of previously played positions.

Advance rules:
- index < len: move to index + 1
- index == len and looping: wrap to 1
- index == len and not looping: exhausted (nothing changes)

Every transition pushes the previous (track, index) onto history; the oldest
entry is evicted once history holds max_history entries.
"""

import logging
import random
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

from soundstage.broadcast_core.track import Playlist, Track
from soundstage.errors import InvalidPlaylistError
from soundstage.events.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)

MAX_HISTORY = 20


@dataclass(frozen=True)
class HistoryEntry:
    track: Track
    index: int


@dataclass(frozen=True)
class AdvanceResult:
    """
    Outcome of PlaylistManager.advance().

    Attributes:
        track: Track now current (None when exhausted)
        index: 1-based index now current
        wrapped: True if the cursor looped back to the first track
        exhausted: True if the end was reached without looping
    """
    track: Optional[Track]
    index: int
    wrapped: bool = False
    exhausted: bool = False


@dataclass(frozen=True)
class PlaylistCursor:
    """Saved index and history, restored when a transition is rejected."""
    tracks: Tuple[Track, ...]
    index: int
    history: Tuple[HistoryEntry, ...]


class PlaylistManager:
    """
    Thread-safe playlist cursor.
    """

    def __init__(
        self,
        events: EventBus,
        looping: bool = True,
        max_history: int = MAX_HISTORY,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize playlist manager.

        Args:
            events: Bus for PLAYLIST_START / PLAYLIST_LOOP
            looping: Initial loop mode
            max_history: History capacity
            rng: Random source for shuffling (tests inject a seeded one)
        """
        self._events = events
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._name: Optional[str] = None
        self._tracks: List[Track] = []
        self._index = 1
        self._looping = bool(looping)
        self._shuffled = False
        self._history: Deque[HistoryEntry] = deque(maxlen=max_history)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def name(self) -> Optional[str]:
        with self._lock:
            return self._name

    @property
    def tracks(self) -> Tuple[Track, ...]:
        with self._lock:
            return tuple(self._tracks)

    @property
    def track_count(self) -> int:
        with self._lock:
            return len(self._tracks)

    @property
    def index(self) -> int:
        with self._lock:
            return self._index

    @property
    def current_track(self) -> Optional[Track]:
        with self._lock:
            if not self._tracks:
                return None
            return self._tracks[self._index - 1]

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def is_looping(self) -> bool:
        with self._lock:
            return self._looping

    @property
    def is_shuffled(self) -> bool:
        with self._lock:
            return self._shuffled

    def get_status(self) -> dict:
        with self._lock:
            return {
                "name": self._name,
                "track_count": len(self._tracks),
                "index": self._index,
                "is_looping": self._looping,
                "is_shuffled": self._shuffled,
                "history_size": len(self._history),
            }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_current_playlist(self, playlist: Playlist, name: Optional[str] = None) -> bool:
        """
        Make playlist current.

        Resets the index to 1 and clears history; re-shuffles when shuffle
        mode is on.

        Raises:
            InvalidPlaylistError: If playlist is not a non-empty Playlist
        """
        if not isinstance(playlist, Playlist):
            raise InvalidPlaylistError(f"Expected a Playlist, got {type(playlist).__name__}")
        if len(playlist) == 0:
            raise InvalidPlaylistError("Playlist must contain at least one track")

        with self._lock:
            self._tracks = list(playlist.tracks)
            self._name = name or playlist.name
            self._index = 1
            self._history.clear()
            if self._shuffled:
                self._shuffle_locked()
            name, count = self._name, len(self._tracks)

        logger.info(f"[PLAYLIST] Current playlist '{name}' ({count} tracks)")
        self._events.publish(EventType.PLAYLIST_START, {"name": name, "track_count": count})
        return True

    def shuffle(self) -> bool:
        """
        Shuffle the current playlist in place and reset the index to 1.

        Returns:
            False when there is nothing to shuffle (one track or fewer)
        """
        with self._lock:
            if len(self._tracks) <= 1:
                return False
            self._shuffle_locked()
        logger.info(f"[PLAYLIST] Shuffled {self.track_count} tracks")
        return True

    def toggle_shuffle(self) -> bool:
        """Flip shuffle mode, shuffling immediately when turned on. Returns the new mode."""
        with self._lock:
            self._shuffled = not self._shuffled
            shuffled = self._shuffled
            if shuffled and len(self._tracks) > 1:
                self._shuffle_locked()
        logger.info(f"[PLAYLIST] Shuffle {'on' if shuffled else 'off'}")
        return shuffled

    def set_looping(self, looping: bool) -> bool:
        looping = bool(looping)
        with self._lock:
            changed = looping != self._looping
            self._looping = looping
        if changed:
            logger.info(f"[PLAYLIST] Looping {'enabled' if looping else 'disabled'}")
            self._events.publish(EventType.PLAYLIST_LOOP, {"is_looping": looping})
        return looping

    def set_index(self, index: int) -> bool:
        """Jump to a 1-based index without touching history."""
        with self._lock:
            if not self._tracks or not isinstance(index, int) or not 1 <= index <= len(self._tracks):
                logger.warning(f"[PLAYLIST] Index {index} out of range (1..{len(self._tracks)})")
                return False
            self._index = index
        return True

    def advance(self) -> AdvanceResult:
        """Move to the next track according to the advance rules."""
        with self._lock:
            if not self._tracks:
                return AdvanceResult(track=None, index=self._index, exhausted=True)
            wrapped = False
            if self._index < len(self._tracks):
                target = self._index + 1
            elif self._looping:
                target = 1
                wrapped = True
            else:
                return AdvanceResult(track=None, index=self._index, exhausted=True)
            self._push_history_locked()
            self._index = target
            track = self._tracks[target - 1]

        if wrapped:
            logger.info("[PLAYLIST] Reached end of playlist, looping to first track")
        return AdvanceResult(track=track, index=target, wrapped=wrapped)

    def retreat(self) -> Optional[Track]:
        """
        Move back to the previously played track.

        Restores the most recent history entry's index, or wraps to index 1
        when history is empty.
        """
        with self._lock:
            if not self._tracks:
                return None
            if self._history:
                entry = self._history.pop()
                self._index = min(entry.index, len(self._tracks))
            else:
                self._index = 1
            return self._tracks[self._index - 1]

    def cursor(self) -> PlaylistCursor:
        with self._lock:
            return PlaylistCursor(tracks=tuple(self._tracks), index=self._index, history=tuple(self._history))

    def restore(self, cursor: PlaylistCursor, expected: Optional[PlaylistCursor] = None) -> bool:
        """
        Put index and history back to a saved cursor.

        Args:
            cursor: Cursor to return to
            expected: Only restore if the live cursor still equals this one

        Returns:
            False (nothing changed) if the track list or, when given, the
            expected cursor no longer matches
        """
        with self._lock:
            if tuple(self._tracks) != cursor.tracks:
                return False
            if expected is not None and (self._index, tuple(self._history)) != (expected.index, expected.history):
                return False
            self._index = cursor.index
            self._history.clear()
            self._history.extend(cursor.history)
        logger.debug(f"[PLAYLIST] Cursor restored to index {cursor.index}")
        return True

    def _push_history_locked(self) -> None:
        self._history.append(HistoryEntry(track=self._tracks[self._index - 1], index=self._index))

    def _shuffle_locked(self) -> None:
        # Fisher-Yates, last position first
        tracks = self._tracks
        for i in range(len(tracks) - 1, 0, -1):
            j = self._rng.randint(0, i)
            tracks[i], tracks[j] = tracks[j], tracks[i]
        self._index = 1
