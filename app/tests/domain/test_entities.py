import pytest

from app.domain.entities import (
    ExportableSong,
    MatchCandidate,
    MatchConfidence,
    MatchStatus,
    Platform,
    SelectedMatch,
    SongMatchResult,
    UNKNOWN_ARTIST,
    UNKNOWN_TITLE,
)


class TestSongMatchResult:
    """Tests for the per-song match outcome."""

    def setup_method(self):
        self.song = ExportableSong(title="Song A", artist="Artist A", album="Album")
        self.candidate = MatchCandidate(
            platform=Platform.NAVIDROME, platform_id="nd-1", title="Song A", artist="Artist A",
            match_score=95, confidence=MatchConfidence.EXACT, match_reason="Title matches closely",
        )

    def test_matched_requires_selected_match(self):
        with pytest.raises(ValueError):
            SongMatchResult(original_song=self.song, matches=[self.candidate], status=MatchStatus.MATCHED)

    def test_top_match_is_first_candidate(self):
        result = SongMatchResult(original_song=self.song, matches=[self.candidate],
                                 status=MatchStatus.PENDING_REVIEW)
        assert result.top_match == self.candidate
        assert SongMatchResult(original_song=self.song).top_match is None

    def test_json_shape_is_camel_case(self):
        result = SongMatchResult(
            original_song=self.song,
            matches=[self.candidate],
            selected_match=SelectedMatch(platform=Platform.NAVIDROME, platform_id="nd-1"),
            status=MatchStatus.MATCHED,
        )
        data = result.to_json()

        assert data["originalSong"] == {"title": "Song A", "artist": "Artist A", "album": "Album"}
        assert data["selectedMatch"] == {"platform": "navidrome", "platformId": "nd-1"}
        assert data["matches"][0]["matchScore"] == 95
        assert data["matches"][0]["confidence"] == "exact"
        assert data["status"] == "matched"

        restored = SongMatchResult.from_json(data)
        assert restored.selected_match.platform_id == "nd-1"
        assert restored.matches[0].match_reason == "Title matches closely"

    def test_from_json_fills_placeholders(self):
        result = SongMatchResult.from_json({"originalSong": {"title": ""}, "status": "skipped"})

        assert result.original_song.title == UNKNOWN_TITLE
        assert result.original_song.artist == UNKNOWN_ARTIST
        assert result.status == MatchStatus.SKIPPED

    def test_from_json_rejects_matched_without_selection(self):
        with pytest.raises(ValueError):
            SongMatchResult.from_json({"originalSong": {"title": "T", "artist": "A"}, "status": "matched"})
