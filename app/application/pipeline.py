import time
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence
import logging

from app.application.matching import MatchOptions, SongMatcher
from app.application.materializer import PlaylistMaterializer
from app.application.parsing import parse_playlist
from app.crosscutting.logging import CorrelationContext, log_error, log_job_complete, log_job_start
from app.domain.entities import (
    DEFAULT_PLAYLIST_NAME,
    ImportJob,
    JobStatus,
    MatchStatus,
    Platform,
    PlaylistFormat,
    SongMatchResult,
    new_id,
)
from app.domain.errors import (
    DuplicatePlaylistName,
    JobInProgress,
    JobNotFound,
    ValidationError,
)
from app.domain.ports import ImportJobRepository, PlatformSearcher, PlaylistRepository


logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)


@dataclass
class ImportRequest:
    """Caller input for a new import job."""

    user_id: str
    content: str
    format: Optional[PlaylistFormat] = None
    playlist_name: Optional[str] = None
    target_platform: Platform = Platform.NAVIDROME
    auto_match: bool = True
    create_playlist: bool = True


@dataclass
class ConfirmResult:
    success: bool
    playlist_id: Optional[str]
    songs_added: int

    def to_json(self) -> Dict[str, object]:
        return {"success": self.success, "playlistId": self.playlist_id, "songsAdded": self.songs_added}


class SynchronousExecutor(Executor):
    """Runs submitted work inline. Used by the CLI and in tests."""

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


def apply_counts(job: ImportJob) -> None:
    """Recompute status counters from the job's match results."""
    counts = {status: 0 for status in MatchStatus}
    for result in job.match_results:
        counts[result.status] += 1
    job.matched_songs = counts[MatchStatus.MATCHED]
    job.unmatched_songs = counts[MatchStatus.NO_MATCH]
    job.pending_review_songs = counts[MatchStatus.PENDING_REVIEW]
    job.skipped_songs = counts[MatchStatus.SKIPPED]


def _bump(job: ImportJob, status: MatchStatus) -> None:
    if status == MatchStatus.MATCHED:
        job.matched_songs += 1
    elif status == MatchStatus.NO_MATCH:
        job.unmatched_songs += 1
    elif status == MatchStatus.PENDING_REVIEW:
        job.pending_review_songs += 1
    elif status == MatchStatus.SKIPPED:
        job.skipped_songs += 1


class ProgressTracker:
    """Accumulates results for a running job and checkpoints them in batches.

    A write happens every ``every`` processed songs or once ``interval_sec``
    has elapsed since the last write, whichever comes first.
    """

    def __init__(self, job: ImportJob, jobs: ImportJobRepository,
                 every: int = 10, interval_sec: float = 5.0,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize progress tracker.

        Args:
            job: Job being matched; its results and counters are mutated in place
            jobs: Repository receiving checkpoint writes
            every: Song count between forced writes
            interval_sec: Wall-clock interval between forced writes
            clock: Monotonic clock, replaceable in tests
        """
        self.job = job
        self.jobs = jobs
        self.every = max(1, every)
        self.interval_sec = interval_sec
        self._clock = clock
        self._since_write = 0
        self._last_write = clock()
        self.writes = 0
        apply_counts(job)

    def record(self, processed: int, result: SongMatchResult) -> bool:
        """Record one song's result. Returns True when a checkpoint was written."""
        job = self.job
        job.match_results.append(result)
        job.processed_songs = max(job.processed_songs, processed)
        _bump(job, result.status)
        self._since_write += 1

        now = self._clock()
        if self._since_write >= self.every or now - self._last_write >= self.interval_sec:
            self.flush()
            return True
        return False

    def flush(self) -> None:
        self.jobs.save_progress(self.job)
        self.writes += 1
        self._since_write = 0
        self._last_write = self._clock()
        pct = (self.job.processed_songs / self.job.total_songs) * 100 if self.job.total_songs else 100.0
        logger.info(f"Progress: {self.job.processed_songs}/{self.job.total_songs} songs ({pct:.1f}%). "
                    f"Matched: {self.job.matched_songs}, Pending review: {self.job.pending_review_songs}, "
                    f"No match: {self.job.unmatched_songs}")


class ImportPipeline:
    """Runs playlist imports: job creation, detached matching, confirmation and recovery.

    Exactly one background task owns a job while it is processing. The job
    row is the only coordination point; nothing here survives a restart
    except what is persisted through the repositories.
    """

    def __init__(self, jobs: ImportJobRepository, playlists: PlaylistRepository,
                 searchers: Sequence[PlatformSearcher],
                 options: Optional[MatchOptions] = None,
                 executor: Optional[Executor] = None,
                 workers: int = 4,
                 song_delay_sec: float = 0.1,
                 progress_every: int = 10,
                 progress_interval_sec: float = 5.0,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize import pipeline.

        Args:
            jobs: Import job repository
            playlists: Playlist repository
            searchers: Ordered searcher set; each job only queries its target platform
            options: Base matching options
            executor: Executor running background matching
            workers: Pool size when no executor is given
            song_delay_sec: Pacing delay between songs
            progress_every: Songs between checkpoint writes
            progress_interval_sec: Seconds between checkpoint writes
        """
        self.jobs = jobs
        self.playlists = playlists
        self.searchers = list(searchers)
        self.options = options or MatchOptions()
        self.executor = executor or ThreadPoolExecutor(max_workers=workers, thread_name_prefix="setlist-import")
        self.song_delay_sec = song_delay_sec
        self.progress_every = progress_every
        self.progress_interval_sec = progress_interval_sec
        self.materializer = PlaylistMaterializer(playlists, jobs)
        self._sleep = sleep
        self._clock = clock
        self._running = set()
        self._lock = threading.Lock()

    def start_import(self, request: ImportRequest) -> ImportJob:
        """Parse content, persist a processing job and schedule matching.

        Returns:
            The freshly persisted job

        Raises:
            ParseError: If the content cannot be parsed
            UnsupportedFormat: If the format is unknown
            DuplicatePlaylistName: If the user already owns a playlist with that name
        """
        parsed = parse_playlist(request.content, request.format)
        playlist = parsed.playlist
        name = request.playlist_name or playlist.name or DEFAULT_PLAYLIST_NAME

        if self.playlists.find_by_name(request.user_id, name) is not None:
            raise DuplicatePlaylistName("A playlist with this name already exists")

        now = datetime.utcnow()
        job = ImportJob(
            id=new_id(),
            user_id=request.user_id,
            format=parsed.format,
            target_platform=request.target_platform,
            playlist_name=name,
            playlist_description=playlist.description,
            status=JobStatus.PROCESSING,
            total_songs=len(playlist.songs),
            songs=list(playlist.songs),
            auto_match=request.auto_match,
            create_playlist=request.create_playlist,
            started_at=now,
            created_at=now,
            updated_at=now,
        )
        self.jobs.add(job)
        log_job_start(logger, job.id, job.user_id, job.total_songs, job.target_platform.value,
                      format=job.format.value, auto_match=job.auto_match)

        # The worker gets its own copy; the returned job stays a snapshot of the accepted request
        self._schedule(replace(job, songs=list(job.songs), match_results=[]))
        return job

    def _schedule(self, job: ImportJob) -> bool:
        with self._lock:
            if job.id in self._running:
                return False
            self._running.add(job.id)
        self.executor.submit(self.run_matching, job)
        return True

    def run_matching(self, job: ImportJob) -> ImportJob:
        """Background body: match remaining songs, checkpoint, then complete or fail the job.

        Matching starts at ``job.processed_songs`` so that a resumed job keeps
        its persisted result prefix.
        """
        try:
            with CorrelationContext(import_job_id=job.id, user_id=job.user_id, stage="matching"):
                try:
                    self._match(job)
                    self._complete(job)
                except Exception as e:
                    self._fail(job, e)
            return job
        finally:
            with self._lock:
                self._running.discard(job.id)

    def _match(self, job: ImportJob) -> None:
        start = job.processed_songs
        job.match_results = list(job.match_results[:start])
        remaining = job.songs[start:]
        tracker = ProgressTracker(job, self.jobs, self.progress_every, self.progress_interval_sec, self._clock)

        if not job.auto_match:
            for offset, song in enumerate(remaining):
                tracker.record(start + offset + 1, SongMatchResult(original_song=song, status=MatchStatus.NO_MATCH))
            return

        matcher = SongMatcher(
            replace(self.options, target_platforms=[job.target_platform]),
            song_delay_sec=self.song_delay_sec,
            sleep=self._sleep,
        )
        matcher.match_songs(
            remaining,
            self.searchers,
            on_progress=lambda processed, total, result: tracker.record(processed, result),
            start_index=start,
        )

    def _complete(self, job: ImportJob) -> None:
        apply_counts(job)
        if job.create_playlist and job.matched_songs > 0 and not job.created_playlist_id:
            with CorrelationContext(stage="materialize"):
                self.materializer.create(job)
        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.utcnow()
        self.jobs.save(job)
        log_job_complete(logger, job.id, job.matched_songs, job.unmatched_songs, job.pending_review_songs,
                         total_songs=job.total_songs, created_playlist_id=job.created_playlist_id)

    def _fail(self, job: ImportJob, error: Exception) -> None:
        log_error(logger, f"Import job {job.id} failed", error, processed_songs=job.processed_songs)
        apply_counts(job)
        job.status = JobStatus.FAILED
        job.error_message = str(error) or type(error).__name__
        job.completed_at = datetime.utcnow()
        try:
            self.jobs.save(job)
        except Exception as e:
            log_error(logger, f"Could not record failure of import job {job.id}", e)

    def get_import_job(self, job_id: str, user_id: str) -> ImportJob:
        """Return the caller's job; foreign and unknown ids are indistinguishable."""
        job = self.jobs.get(job_id, user_id=user_id)
        if job is None:
            raise JobNotFound("Import job not found")
        return job

    def confirm_import(self, job_id: str, user_id: str,
                       match_results: Sequence[SongMatchResult]) -> ConfirmResult:
        """Apply the caller's final decisions and materialize matched songs.

        The job becomes completed even when nothing is added. A job that
        already owns a playlist gets the new songs appended to it.

        Raises:
            JobNotFound: Unknown or foreign job
            JobInProgress: Matching has not finished yet
            ValidationError: More results than songs in the job
        """
        job = self.get_import_job(job_id, user_id)
        if job.status == JobStatus.PROCESSING:
            raise JobInProgress("Import job is still processing")
        if len(match_results) > job.total_songs:
            raise ValidationError(
                f"Received {len(match_results)} match results for {job.total_songs} songs"
            )

        with CorrelationContext(import_job_id=job.id, user_id=user_id, stage="confirm"):
            job.match_results = list(match_results)
            job.processed_songs = max(job.processed_songs, len(match_results))
            apply_counts(job)

            songs_added = 0
            if job.matched_songs > 0:
                if job.created_playlist_id:
                    songs_added = self.materializer.append(job.created_playlist_id, job.match_results)
                else:
                    playlist = self.materializer.create(job)
                    songs_added = playlist.song_count
            else:
                logger.info(f"All songs of import job {job.id} were skipped or unmatched")

            job.status = JobStatus.COMPLETED
            job.error_message = None
            job.completed_at = datetime.utcnow()
            self.jobs.save(job)

        return ConfirmResult(success=True, playlist_id=job.created_playlist_id, songs_added=songs_added)

    def resume_job(self, job_id: str) -> bool:
        """Reschedule a processing job from its persisted ``processed_songs``.

        Returns:
            True if the job was scheduled, False if it is terminal or already running
        """
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFound("Import job not found")
        if job.is_terminal:
            return False
        logger.info(f"Resuming import job {job.id} at song {job.processed_songs}/{job.total_songs}")
        return self._schedule(job)

    def resume_interrupted_jobs(self) -> List[str]:
        """Resume every job left in processing by a previous process."""
        resumed = []
        for job in self.jobs.list_by_status(JobStatus.PROCESSING.value):
            if self._schedule(job):
                logger.info(f"Resuming interrupted import job {job.id} at song {job.processed_songs}")
                resumed.append(job.id)
        return resumed

    def find_stale_jobs(self, older_than: timedelta = DEFAULT_STALE_AFTER,
                        now: Optional[datetime] = None) -> List[ImportJob]:
        """List processing jobs with no progress write for longer than ``older_than``."""
        cutoff = (now or datetime.utcnow()) - older_than
        stale = self.jobs.list_by_status(JobStatus.PROCESSING.value, updated_before=cutoff)
        for job in stale:
            logger.warning(f"Import job {job.id} has been processing without progress since {job.updated_at}")
        return stale

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
