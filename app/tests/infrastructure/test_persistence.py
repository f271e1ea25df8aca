import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from app.domain.entities import ExportableSong, ImportJob, JobStatus, Platform, Playlist, PlaylistFormat, new_id
from app.domain.errors import DuplicatePlaylistName
from app.infrastructure.persistence import (
    SqlAlchemyImportJobRepository,
    SqlAlchemyPlaylistRepository,
    create_all_tables,
    create_engine_for,
)
from app.tests.fakes import matched, unmatched


def _job(**overrides) -> ImportJob:
    values = dict(
        id=new_id(),
        user_id="user-1",
        format=PlaylistFormat.M3U,
        target_platform=Platform.NAVIDROME,
        playlist_name="Road Trip",
        total_songs=2,
        songs=[ExportableSong(title="Song A", artist="Artist A"), ExportableSong(title="Song B", artist="Artist B")],
    )
    values.update(overrides)
    return ImportJob(**values)


class TestImportJobRepository:
    """Tests for import job rows."""

    def setup_method(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    @pytest.fixture(autouse=True)
    def _repo(self, engine):
        self.repo = SqlAlchemyImportJobRepository(engine)

    def test_add_and_get_round_trip(self):
        job = _job(auto_match=False, create_playlist=False, playlist_description="desc")
        self.repo.add(job)

        loaded = self.repo.get(job.id)

        assert loaded.user_id == "user-1"
        assert loaded.status == JobStatus.PROCESSING
        assert loaded.playlist_description == "desc"
        assert [s.title for s in loaded.songs] == ["Song A", "Song B"]
        assert loaded.auto_match is False
        assert loaded.create_playlist is False

    def test_get_is_scoped_to_owner(self):
        job = _job()
        self.repo.add(job)

        assert self.repo.get(job.id, user_id="user-1") is not None
        assert self.repo.get(job.id, user_id="user-2") is None
        assert self.repo.get("missing") is None

    def test_save_progress_persists_results(self):
        job = _job()
        self.repo.add(job)
        job.match_results = [matched("Song A", "Artist A", "nd-1")]
        job.processed_songs = 1
        job.matched_songs = 1

        self.repo.save_progress(job)

        loaded = self.repo.get(job.id)
        assert loaded.processed_songs == 1
        assert loaded.matched_songs == 1
        assert loaded.match_results[0].selected_match.platform_id == "nd-1"

    def test_save_progress_does_not_touch_terminal_jobs(self):
        job = _job()
        self.repo.add(job)
        job.status = JobStatus.COMPLETED
        job.processed_songs = 2
        self.repo.save(job)

        job.status = JobStatus.PROCESSING
        job.processed_songs = 1
        self.repo.save_progress(job)

        loaded = self.repo.get(job.id)
        assert loaded.status == JobStatus.COMPLETED
        assert loaded.processed_songs == 2

    def test_save_writes_status_and_error(self):
        job = _job()
        self.repo.add(job)
        job.status = JobStatus.FAILED
        job.error_message = "boom"
        job.match_results = [unmatched("Song A", "Artist A")]

        self.repo.save(job)

        loaded = self.repo.get(job.id)
        assert loaded.status == JobStatus.FAILED
        assert loaded.error_message == "boom"
        assert len(loaded.match_results) == 1

    def test_list_by_status_filters_on_updated_at(self):
        old = _job(created_at=self.now - timedelta(hours=2), updated_at=self.now - timedelta(hours=1))
        fresh = _job(created_at=self.now, updated_at=self.now)
        done = _job(status=JobStatus.COMPLETED, updated_at=self.now - timedelta(hours=3))
        for job in (old, fresh, done):
            self.repo.add(job)

        processing = self.repo.list_by_status("processing")
        stale = self.repo.list_by_status("processing", updated_before=self.now - timedelta(minutes=30))

        assert [j.id for j in processing] == [old.id, fresh.id]
        assert [j.id for j in stale] == [old.id]


class TestPlaylistRepository:
    """Tests for playlist and playlist song rows."""

    @pytest.fixture(autouse=True)
    def _repo(self, engine):
        self.repo = SqlAlchemyPlaylistRepository(engine)

    def _playlist(self, name="Road Trip", user_id="user-1") -> Playlist:
        return Playlist(id=new_id(), user_id=user_id, name=name)

    def test_create_with_songs(self):
        playlist = self.repo.create_with_songs(self._playlist(), [("nd-1", "A - 1"), ("nd-2", "B - 2")])

        assert playlist.song_count == 2
        assert self.repo.get(playlist.id).song_count == 2
        assert self.repo.find_by_name("user-1", "Road Trip").id == playlist.id
        assert self.repo.find_by_name("user-2", "Road Trip") is None
        assert [row[1] for row in self.repo.songs(playlist.id)] == ["nd-1", "nd-2"]

    def test_create_empty_playlist(self):
        playlist = self.repo.create_with_songs(self._playlist(), [])

        assert playlist.song_count == 0
        assert self.repo.songs(playlist.id) == []

    def test_duplicate_name_raises_and_leaves_no_rows(self):
        first = self.repo.create_with_songs(self._playlist(), [("nd-1", "A - 1")])

        with pytest.raises(DuplicatePlaylistName):
            self.repo.create_with_songs(self._playlist(), [("nd-9", "Z - 9")])

        assert self.repo.get(first.id).song_count == 1
        assert self.repo.songs(first.id) == [(0, "nd-1", "A - 1")]

    def test_append_continues_positions(self):
        playlist = self.repo.create_with_songs(self._playlist(), [("nd-1", "A - 1")])

        added = self.repo.append_songs(playlist.id, [("nd-2", "B - 2"), ("nd-3", "C - 3")])

        assert added == 2
        assert self.repo.songs(playlist.id) == [(0, "nd-1", "A - 1"), (1, "nd-2", "B - 2"), (2, "nd-3", "C - 3")]
        assert self.repo.get(playlist.id).song_count == 3

    def test_append_nothing(self):
        playlist = self.repo.create_with_songs(self._playlist(), [])

        assert self.repo.append_songs(playlist.id, []) == 0

    def test_append_skips_songs_already_present(self):
        playlist = self.repo.create_with_songs(self._playlist(), [("nd-1", "A - 1"), ("nd-2", "B - 2")])

        added = self.repo.append_songs(playlist.id, [("nd-2", "B - 2"), ("nd-3", "C - 3")])

        assert added == 1
        assert self.repo.songs(playlist.id) == [(0, "nd-1", "A - 1"), (1, "nd-2", "B - 2"), (2, "nd-3", "C - 3")]
        assert self.repo.get(playlist.id).song_count == 3


class TestConcurrentAppend:
    """Appends racing on one playlist against a file database."""

    @pytest.fixture(autouse=True)
    def _repo(self, tmp_path):
        self.engine = create_engine_for(f"sqlite:///{tmp_path / 'setlist.db'}")
        create_all_tables(self.engine)
        self.repo = SqlAlchemyPlaylistRepository(self.engine)
        yield
        self.engine.dispose()

    def test_racing_appends_write_each_song_once(self):
        playlist = self.repo.create_with_songs(
            Playlist(id=new_id(), user_id="user-1", name="Road Trip"),
            [("nd-1", "A - 1"), ("nd-2", "B - 2")],
        )
        rows = [("nd-2", "B - 2"), ("nd-3", "C - 3"), ("nd-4", "D - 4")]
        barrier = threading.Barrier(4)

        def append():
            barrier.wait()
            return self.repo.append_songs(playlist.id, rows)

        with ThreadPoolExecutor(max_workers=4) as pool:
            added = [f.result() for f in [pool.submit(append) for _ in range(4)]]

        assert sorted(added) == [0, 0, 0, 2]
        assert self.repo.songs(playlist.id) == [
            (0, "nd-1", "A - 1"), (1, "nd-2", "B - 2"), (2, "nd-3", "C - 3"), (3, "nd-4", "D - 4"),
        ]
        assert self.repo.get(playlist.id).song_count == 4
