import logging
from typing import List, Optional, Sequence, Tuple

from app.crosscutting.logging import CorrelationContext
from app.domain.entities import ImportJob, MatchStatus, Playlist, SongMatchResult, new_id
from app.domain.ports import ImportJobRepository, PlaylistRepository


logger = logging.getLogger(__name__)


def song_label(result: SongMatchResult) -> str:
    """Denormalized ``Artist - Title`` label stored next to each playlist entry."""
    song = result.original_song
    return f"{song.artist} - {song.title}"


def matched_song_rows(results: Sequence[SongMatchResult]) -> List[Tuple[str, str]]:
    """Return ``(song_id, label)`` for matched results, in import order, without duplicates."""
    rows: List[Tuple[str, str]] = []
    seen = set()
    for result in results:
        if result.status != MatchStatus.MATCHED or result.selected_match is None:
            continue
        song_id = result.selected_match.platform_id
        if song_id in seen:
            continue
        seen.add(song_id)
        rows.append((song_id, song_label(result)))
    return rows


class PlaylistMaterializer:
    """Turns matched results into rows of a new or existing playlist."""

    def __init__(self, playlists: PlaylistRepository, jobs: ImportJobRepository):
        self.playlists = playlists
        self.jobs = jobs

    def create(self, job: ImportJob, results: Optional[Sequence[SongMatchResult]] = None) -> Playlist:
        """Create the job's playlist from its matched songs and link it to the job.

        Args:
            job: Import job owning the playlist name, description and user
            results: Results to use instead of ``job.match_results``

        Returns:
            The created playlist
        """
        rows = matched_song_rows(results if results is not None else job.match_results)
        playlist = self.playlists.create_with_songs(
            Playlist(
                id=new_id(),
                user_id=job.user_id,
                name=job.playlist_name,
                description=job.playlist_description,
            ),
            rows,
        )
        job.created_playlist_id = playlist.id
        with CorrelationContext(playlist_id=playlist.id):
            self.jobs.save(job)
            logger.info(f"Materialized playlist '{playlist.name}' with {len(rows)} songs "
                        f"for import job {job.id}")
        return playlist

    def append(self, playlist_id: str, results: Sequence[SongMatchResult]) -> int:
        """Append matched songs not already in the playlist.

        Positions continue after the current last entry.

        Returns:
            Number of songs actually written
        """
        rows = matched_song_rows(results)
        with CorrelationContext(playlist_id=playlist_id):
            added = self.playlists.append_songs(playlist_id, rows)
            logger.info(f"Appended {added} of {len(rows)} matched songs to playlist {playlist_id}")
        return added
