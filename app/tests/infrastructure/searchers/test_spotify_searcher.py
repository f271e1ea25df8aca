from unittest.mock import Mock

import pytest
from spotipy.exceptions import SpotifyException

from app.domain.entities import Platform
from app.domain.errors import PermanentFailure, RateLimited, TemporaryFailure
from app.infrastructure.searchers.spotify import SpotifySearcher


def _track(track_id="sp-1", name="Test Song", artists=("Test Artist",), isrc="USABC1234567"):
    return {
        'id': track_id,
        'name': name,
        'artists': [{'name': a} for a in artists],
        'album': {'name': 'Test Album'},
        'duration_ms': 180400,
        'external_ids': {'isrc': isrc},
    }


class TestSpotifySearcher:
    """Tests for the spotipy-backed searcher."""

    def setup_method(self):
        self.client = Mock()
        self.searcher = SpotifySearcher("token", client=self.client, search_limit=5, market="DE")

    def test_search_by_isrc(self):
        """ISRC lookups use the isrc: field filter."""
        self.client.search.return_value = {'tracks': {'items': [_track()]}}

        candidates = self.searcher.search_by_isrc("USABC1234567")

        self.client.search.assert_called_once_with('isrc:USABC1234567', type='track', limit=5, market='DE')
        assert len(candidates) == 1
        c = candidates[0]
        assert c.platform == Platform.SPOTIFY
        assert c.platform_id == "sp-1"
        assert c.isrc == "USABC1234567"
        assert c.duration == 180
        assert c.url == "spotify:track:sp-1"

    def test_title_artist_search_joins_artists(self):
        self.client.search.return_value = {'tracks': {'items': [_track(artists=("A1", "A2")), None]}}

        candidates = self.searcher.search_by_title_artist("Test Song", "A1")

        assert self.client.search.call_args[0][0] == 'track:"Test Song" artist:"A1"'
        assert [c.artist for c in candidates] == ["A1, A2"]

    def test_falls_back_to_free_text(self):
        """An empty field query is retried as free text."""
        self.client.search.side_effect = [
            {'tracks': {'items': []}},
            {'tracks': {'items': [_track()]}},
        ]

        candidates = self.searcher.search_by_title_artist("Test Song", "Test Artist")

        assert self.client.search.call_count == 2
        assert self.client.search.call_args[0][0] == 'Test Song Test Artist'
        assert len(candidates) == 1

    def test_tracks_without_id_are_dropped(self):
        self.client.search.return_value = {'tracks': {'items': [_track(track_id=None)]}}

        assert self.searcher.search_by_isrc("X") == []

    def test_rate_limit(self):
        self.client.search.side_effect = SpotifyException(429, -1, "rate limited", headers={'Retry-After': '2'})

        with pytest.raises(RateLimited) as exc:
            self.searcher.search_by_isrc("X")
        assert exc.value.retry_after_ms == 2000

    def test_unauthorized_is_permanent(self):
        self.client.search.side_effect = SpotifyException(401, -1, "token expired")

        with pytest.raises(PermanentFailure):
            self.searcher.search_by_isrc("X")

    def test_server_error_is_temporary(self):
        self.client.search.side_effect = SpotifyException(502, -1, "bad gateway")

        with pytest.raises(TemporaryFailure):
            self.searcher.search_by_isrc("X")

    def test_network_error_is_temporary(self):
        self.client.search.side_effect = ConnectionError("reset")

        with pytest.raises(TemporaryFailure):
            self.searcher.search_by_title_artist("Test Song", "Test Artist")
