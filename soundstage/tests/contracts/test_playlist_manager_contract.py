"""
Tests for the playlist manager: ordering, shuffle, loop, index and history.
"""

import random
from collections import Counter

import pytest

from soundstage.broadcast_core.track import Track, create_playlist
from soundstage.errors import InvalidPlaylistError
from soundstage.events.event_bus import EventBus, EventType
from soundstage.music_logic.playlist_manager import MAX_HISTORY, PlaylistManager
from soundstage.tests.contracts.test_doubles import EventRecorder


def make_playlist(count, name="Mix"):
    return create_playlist(name, [Track(f"mix:track_{i}", duration_seconds=i + 1) for i in range(count)])


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def manager(bus):
    return PlaylistManager(bus, looping=False, rng=random.Random(42))


class Test1_SetCurrentPlaylist:
    def test_resets_cursor_and_announces(self, manager, recorder):
        assert manager.set_current_playlist(make_playlist(3), name="Evening")
        assert manager.index == 1
        assert manager.name == "Evening"
        assert manager.track_count == 3
        assert manager.current_track.song_id == "mix:track_0"
        assert recorder.payloads(EventType.PLAYLIST_START) == [{"name": "Evening", "track_count": 3}]

    def test_name_defaults_to_playlist_name(self, manager):
        manager.set_current_playlist(make_playlist(2, name="Morning"))
        assert manager.name == "Morning"

    def test_clears_history(self, manager):
        manager.set_current_playlist(make_playlist(3))
        manager.advance()
        manager.set_current_playlist(make_playlist(3))
        assert manager.history == ()

    def test_rejects_non_playlist(self, manager):
        with pytest.raises(InvalidPlaylistError):
            manager.set_current_playlist([Track("a:b")])

    def test_reshuffles_when_shuffle_mode_on(self, manager):
        manager.set_current_playlist(make_playlist(10))
        manager.toggle_shuffle()
        playlist = make_playlist(10)
        manager.set_current_playlist(playlist)
        assert manager.is_shuffled
        assert Counter(manager.tracks) == Counter(playlist.tracks)
        assert manager.tracks != playlist.tracks


class Test2_Shuffle:
    def test_shuffle_preserves_multiset(self, manager):
        playlist = make_playlist(12)
        manager.set_current_playlist(playlist)
        manager.advance()
        assert manager.shuffle()
        assert Counter(manager.tracks) == Counter(playlist.tracks)
        assert manager.index == 1

    def test_shuffle_with_duplicates_preserves_counts(self, manager):
        a, b = Track("x:a"), Track("x:b")
        manager.set_current_playlist(create_playlist("dupes", [a, a, b, a, b]))
        manager.shuffle()
        assert Counter(t.song_id for t in manager.tracks) == {"x:a": 3, "x:b": 2}

    def test_shuffle_single_track_is_noop(self, manager):
        manager.set_current_playlist(make_playlist(1))
        assert manager.shuffle() is False

    def test_shuffle_deterministic_with_seeded_rng(self, bus):
        first = PlaylistManager(bus, rng=random.Random(5))
        second = PlaylistManager(bus, rng=random.Random(5))
        for manager in (first, second):
            manager.set_current_playlist(make_playlist(8))
            manager.shuffle()
        assert first.tracks == second.tracks

    def test_toggle_shuffle(self, manager):
        manager.set_current_playlist(make_playlist(5))
        assert manager.toggle_shuffle() is True
        assert manager.toggle_shuffle() is False


class Test3_Advance:
    def test_advance_moves_forward(self, manager):
        manager.set_current_playlist(make_playlist(3))
        result = manager.advance()
        assert result.track.song_id == "mix:track_1"
        assert result.index == 2
        assert not result.wrapped and not result.exhausted

    def test_advance_wraps_when_looping(self, manager):
        manager.set_current_playlist(make_playlist(2))
        manager.set_looping(True)
        manager.advance()
        result = manager.advance()
        assert result.wrapped
        assert result.index == 1
        assert manager.current_track.song_id == "mix:track_0"

    def test_advance_exhausts_without_mutation(self, manager):
        manager.set_current_playlist(make_playlist(2))
        manager.advance()
        history_before = manager.history
        result = manager.advance()
        assert result.exhausted
        assert result.track is None
        assert manager.index == 2
        assert manager.history == history_before

    def test_advance_on_empty_manager(self, manager):
        assert manager.advance().exhausted


class Test4_History:
    def test_history_records_previous_position(self, manager):
        manager.set_current_playlist(make_playlist(3))
        manager.advance()
        entry = manager.history[-1]
        assert entry.index == 1
        assert entry.track.song_id == "mix:track_0"

    def test_history_bounded_fifo(self, manager):
        manager.set_current_playlist(make_playlist(3))
        manager.set_looping(True)
        for _ in range(MAX_HISTORY + 5):
            manager.advance()
        history = manager.history
        assert len(history) == MAX_HISTORY
        # 25 transitions from index 1 cycling 1,2,3: oldest retained is transition 6
        expected = [((i % 3) + 1) for i in range(5, MAX_HISTORY + 5)]
        assert [entry.index for entry in history] == expected

    def test_retreat_pops_history(self, manager):
        manager.set_current_playlist(make_playlist(3))
        manager.advance()
        manager.advance()
        track = manager.retreat()
        assert track.song_id == "mix:track_1"
        assert manager.index == 2
        assert len(manager.history) == 1

    def test_retreat_with_empty_history_goes_to_first(self, manager):
        manager.set_current_playlist(make_playlist(3))
        manager.set_index(3)
        assert manager.retreat().song_id == "mix:track_0"
        assert manager.index == 1

    def test_retreat_without_playlist(self, manager):
        assert manager.retreat() is None

    def test_restore_rewinds_advance(self, manager):
        manager.set_current_playlist(make_playlist(3))
        before = manager.cursor()
        manager.advance()
        assert manager.restore(before)
        assert manager.index == 1
        assert manager.history == ()

    def test_restore_skipped_when_cursor_moved_again(self, manager):
        manager.set_current_playlist(make_playlist(3))
        before = manager.cursor()
        manager.advance()
        moved = manager.cursor()
        manager.set_index(3)
        assert manager.restore(before, expected=moved) is False
        assert manager.index == 3

    def test_restore_skipped_after_playlist_change(self, manager):
        manager.set_current_playlist(make_playlist(3))
        manager.advance()
        before = manager.cursor()
        manager.set_current_playlist(make_playlist(2, name="Other"))
        assert manager.restore(before) is False
        assert manager.index == 1


class Test5_LoopAndIndex:
    def test_loop_event_only_on_change(self, manager, recorder):
        manager.set_looping(False)
        manager.set_looping(True)
        manager.set_looping(True)
        assert recorder.payloads(EventType.PLAYLIST_LOOP) == [{"is_looping": True}]

    @pytest.mark.parametrize("index, accepted", [(1, True), (3, True), (0, False), (4, False)])
    def test_set_index_bounds(self, manager, index, accepted):
        manager.set_current_playlist(make_playlist(3))
        assert manager.set_index(index) is accepted

    def test_status(self, manager):
        manager.set_current_playlist(make_playlist(3), name="Evening")
        status = manager.get_status()
        assert status["name"] == "Evening"
        assert status["track_count"] == 3
        assert status["index"] == 1
