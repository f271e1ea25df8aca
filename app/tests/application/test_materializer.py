from unittest.mock import patch

import pytest

from app.application.materializer import PlaylistMaterializer, matched_song_rows, song_label
from app.crosscutting.logging import playlist_id_var
from app.domain.entities import ImportJob, JobStatus, MatchStatus, Platform, PlaylistFormat, new_id
from app.domain.errors import DuplicatePlaylistName
from app.infrastructure.persistence import SqlAlchemyImportJobRepository, SqlAlchemyPlaylistRepository
from app.tests.fakes import matched, unmatched


def _job(user_id: str = "user-1", name: str = "Road Trip") -> ImportJob:
    return ImportJob(
        id=new_id(),
        user_id=user_id,
        format=PlaylistFormat.M3U,
        target_platform=Platform.NAVIDROME,
        playlist_name=name,
        playlist_description="Songs for the car",
        status=JobStatus.COMPLETED,
    )


class TestMatchedSongRows:
    def test_label_is_artist_dash_title(self):
        assert song_label(matched("Song A", "Artist A", "nd-1")) == "Artist A - Song A"

    def test_only_matched_results_in_order_without_duplicates(self):
        results = [
            matched("Song A", "Artist A", "nd-1"),
            unmatched("Song B", "Artist B"),
            matched("Song C", "Artist C", "nd-3"),
            matched("Song A (Live)", "Artist A", "nd-1"),
            matched("Song A", "Artist A", "nd-1").with_decision(MatchStatus.SKIPPED),
        ]

        assert matched_song_rows(results) == [
            ("nd-1", "Artist A - Song A"),
            ("nd-3", "Artist C - Song C"),
        ]


class TestPlaylistMaterializer:
    """Tests for creating and appending playlist rows."""

    @pytest.fixture(autouse=True)
    def _repos(self, engine):
        self.jobs = SqlAlchemyImportJobRepository(engine)
        self.playlists = SqlAlchemyPlaylistRepository(engine)
        self.materializer = PlaylistMaterializer(self.playlists, self.jobs)

    def test_create_links_playlist_to_job(self):
        job = _job()
        self.jobs.add(job)
        job.match_results = [
            matched("Song A", "Artist A", "nd-1"),
            unmatched("Song B", "Artist B"),
            matched("Song C", "Artist C", "nd-3"),
        ]

        playlist = self.materializer.create(job)

        assert playlist.song_count == 2
        assert playlist.name == "Road Trip"
        assert playlist.description == "Songs for the car"
        assert job.created_playlist_id == playlist.id
        assert self.jobs.get(job.id).created_playlist_id == playlist.id
        assert self.playlists.songs(playlist.id) == [
            (0, "nd-1", "Artist A - Song A"),
            (1, "nd-3", "Artist C - Song C"),
        ]

    def test_create_with_taken_name_raises(self):
        first = _job()
        second = _job()
        self.jobs.add(first)
        self.jobs.add(second)
        first.match_results = [matched("Song A", "Artist A", "nd-1")]
        second.match_results = [matched("Song B", "Artist B", "nd-2")]
        self.materializer.create(first)

        with pytest.raises(DuplicatePlaylistName):
            self.materializer.create(second)
        assert second.created_playlist_id is None

    def test_same_name_for_other_user_is_allowed(self):
        first = _job(user_id="user-1")
        second = _job(user_id="user-2")
        self.jobs.add(first)
        self.jobs.add(second)

        self.materializer.create(first, [matched("Song A", "Artist A", "nd-1")])
        playlist = self.materializer.create(second, [matched("Song A", "Artist A", "nd-1")])

        assert playlist.user_id == "user-2"

    def test_append_skips_existing_and_continues_positions(self):
        job = _job()
        self.jobs.add(job)
        playlist = self.materializer.create(job, [
            matched("Song A", "Artist A", "nd-1"),
            matched("Song B", "Artist B", "nd-2"),
        ])

        added = self.materializer.append(playlist.id, [
            matched("Song B", "Artist B", "nd-2"),
            matched("Song C", "Artist C", "nd-3"),
            matched("Song C again", "Artist C", "nd-3"),
            unmatched("Song D", "Artist D"),
        ])

        assert added == 1
        assert [row[:2] for row in self.playlists.songs(playlist.id)] == [(0, "nd-1"), (1, "nd-2"), (2, "nd-3")]
        assert self.playlists.get(playlist.id).song_count == 3

    def test_append_nothing_new(self):
        job = _job()
        self.jobs.add(job)
        playlist = self.materializer.create(job, [matched("Song A", "Artist A", "nd-1")])

        assert self.materializer.append(playlist.id, [matched("Song A", "Artist A", "nd-1")]) == 0
        assert self.playlists.get(playlist.id).song_count == 1

    def test_log_lines_are_bound_to_playlist(self):
        job = _job()
        self.jobs.add(job)
        bound = []

        with patch("app.application.materializer.logger") as log:
            log.info.side_effect = lambda message: bound.append(playlist_id_var.get())
            playlist = self.materializer.create(job, [matched("Song A", "Artist A", "nd-1")])
            self.materializer.append(playlist.id, [matched("Song B", "Artist B", "nd-2")])

        assert bound == [playlist.id, playlist.id]
        assert playlist_id_var.get() is None
