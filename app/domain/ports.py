from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from .entities import ImportJob, Platform, Playlist, MatchCandidate


class PlatformSearcher(Protocol):
    """Port for catalog search capabilities consumed by the matcher.

    Implementations that cannot look songs up by ISRC return an empty list
    instead of failing.
    """

    platform: Platform

    def search_by_isrc(self, isrc: str) -> List[MatchCandidate]:
        """Return catalog songs carrying the given ISRC."""

    def search_by_title_artist(self, title: str, artist: str,
                               album: Optional[str] = None) -> List[MatchCandidate]:
        """Return catalog songs resembling the given title/artist pair."""


class ImportJobRepository(Protocol):
    """Port for persisted import jobs. Every method is one transactional write or read."""

    def add(self, job: ImportJob) -> None:
        """Insert a new job row."""

    def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[ImportJob]:
        """Return the job, scoped to ``user_id`` when given."""

    def save_progress(self, job: ImportJob) -> None:
        """Persist counters and match results of a running job."""

    def save(self, job: ImportJob) -> None:
        """Persist the whole job row."""

    def list_by_status(self, status: str, updated_before: Optional[datetime] = None) -> List[ImportJob]:
        """Return jobs in the given status, optionally only those idle since ``updated_before``."""


class PlaylistRepository(Protocol):
    """Port for playlists and their ordered songs."""

    def get(self, playlist_id: str) -> Optional[Playlist]:
        """Return the playlist or None."""

    def find_by_name(self, user_id: str, name: str) -> Optional[Playlist]:
        """Return the user's playlist with the given name, if any."""

    def create_with_songs(self, playlist: Playlist, song_rows: Sequence[tuple]) -> Playlist:
        """Create a playlist together with ``(song_id, label)`` rows at positions 0..N-1."""

    def append_songs(self, playlist_id: str, song_rows: Sequence[tuple]) -> int:
        """Append ``(song_id, label)`` rows not yet in the playlist; return how many were written."""

    def songs(self, playlist_id: str) -> List[tuple]:
        """Return ``(position, song_id, label)`` entries ordered by position."""
