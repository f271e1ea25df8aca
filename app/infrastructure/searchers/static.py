import json
from pathlib import Path
from typing import Iterable, List, Optional

from app.domain.entities import MatchCandidate, Platform
from app.domain.normalization import normalize_artist, normalize_isrc, normalize_title


class StaticSearcher:
    """In-memory catalog, loaded from a list of candidates or a JSON file.

    Title/artist search returns every song sharing at least one normalized
    word with the query title and one with the query artist; scoring is left
    to the matcher.
    """

    def __init__(self, songs: Iterable[MatchCandidate], platform: Platform = Platform.LOCAL):
        self.platform = platform
        self.songs: List[MatchCandidate] = list(songs)

    @classmethod
    def from_file(cls, path: str, platform: Platform = Platform.LOCAL) -> "StaticSearcher":
        """Load a catalog file: a JSON array of ``{id, title, artist, album?, duration?, isrc?}``."""
        with open(Path(path), "r", encoding="utf-8") as f:
            entries = json.load(f)
        songs = [
            MatchCandidate(
                platform=platform,
                platform_id=str(entry["id"]),
                title=entry.get("title", ""),
                artist=entry.get("artist", ""),
                album=entry.get("album"),
                duration=entry.get("duration"),
                isrc=entry.get("isrc"),
            )
            for entry in entries
        ]
        return cls(songs, platform)

    def search_by_isrc(self, isrc: str) -> List[MatchCandidate]:
        wanted = normalize_isrc(isrc)
        return [s for s in self.songs if s.isrc and normalize_isrc(s.isrc) == wanted]

    def search_by_title_artist(self, title: str, artist: str,
                               album: Optional[str] = None) -> List[MatchCandidate]:
        title_words = set(normalize_title(title).split())
        artist_words = set(normalize_artist(artist).split())
        return [
            s for s in self.songs
            if title_words & set(normalize_title(s.title).split())
            and artist_words & set(normalize_artist(s.artist).split())
        ]
