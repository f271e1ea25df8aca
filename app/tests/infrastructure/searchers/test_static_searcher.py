import json

from app.domain.entities import Platform
from app.infrastructure.searchers.static import StaticSearcher
from app.tests.fakes import candidate


class TestStaticSearcher:
    def setup_method(self):
        self.searcher = StaticSearcher([
            candidate("1", "Song A", "Artist A", platform=Platform.LOCAL, isrc="US-ABC-12-34567"),
            candidate("2", "Another Tune", "Artist B", platform=Platform.LOCAL),
            candidate("3", "Song A (Live)", "Somebody Else", platform=Platform.LOCAL),
        ])

    def test_isrc_lookup_ignores_formatting(self):
        assert [c.platform_id for c in self.searcher.search_by_isrc("usabc1234567")] == ["1"]

    def test_title_artist_lookup_requires_overlap_on_both(self):
        assert [c.platform_id for c in self.searcher.search_by_title_artist("Song A", "Artist A")] == ["1"]
        assert self.searcher.search_by_title_artist("Unknown", "Nobody") == []

    def test_from_file(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps([
            {"id": 7, "title": "Song A", "artist": "Artist A", "album": "Album A", "duration": 200},
        ]), encoding="utf-8")

        searcher = StaticSearcher.from_file(str(path), platform=Platform.NAVIDROME)

        assert searcher.platform == Platform.NAVIDROME
        c = searcher.songs[0]
        assert (c.platform, c.platform_id, c.album, c.duration) == (Platform.NAVIDROME, "7", "Album A", 200)
