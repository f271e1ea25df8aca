from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_ARTIST = "Unknown Artist"
DEFAULT_PLAYLIST_NAME = "Imported Playlist"


def new_id() -> str:
    return str(uuid.uuid4())


class PlaylistFormat(str, Enum):
    """Textual playlist encodings understood by the parser."""

    M3U = "m3u"
    XSPF = "xspf"
    JSON = "json"
    CSV = "csv"
    UNKNOWN = "unknown"


class Platform(str, Enum):
    """Catalogs a song can be matched against."""

    NAVIDROME = "navidrome"
    SPOTIFY = "spotify"
    YOUTUBE_MUSIC = "youtube_music"
    LOCAL = "local"


class MatchConfidence(str, Enum):
    EXACT = "exact"
    HIGH = "high"
    LOW = "low"
    NONE = "none"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    PENDING_REVIEW = "pending_review"
    NO_MATCH = "no_match"
    SKIPPED = "skipped"


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _optional_platform(value: Optional[str]) -> Optional[Platform]:
    if not value:
        return None
    try:
        return Platform(value)
    except ValueError:
        return None


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class ExportableSong:
    """Song stub produced by the format parser, independent of any catalog."""

    title: str
    artist: str
    album: Optional[str] = None
    duration: Optional[int] = None  # seconds
    track: Optional[int] = None
    isrc: Optional[str] = None
    platform: Optional[Platform] = None
    platform_id: Optional[str] = None
    url: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return _drop_none({
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration,
            "track": self.track,
            "isrc": self.isrc,
            "platform": self.platform.value if self.platform else None,
            "platformId": self.platform_id,
            "url": self.url,
        })

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ExportableSong":
        return cls(
            title=data.get("title") or UNKNOWN_TITLE,
            artist=data.get("artist") or UNKNOWN_ARTIST,
            album=data.get("album"),
            duration=data.get("duration"),
            track=data.get("track"),
            isrc=data.get("isrc"),
            platform=_optional_platform(data.get("platform")),
            platform_id=data.get("platformId"),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class ExportablePlaylist:
    """Canonical in-memory playlist: name, description and ordered song stubs."""

    name: str
    songs: List[ExportableSong] = field(default_factory=list)
    description: Optional[str] = None
    creator: Optional[str] = None
    platform: Optional[Platform] = None


@dataclass(frozen=True)
class MatchCandidate:
    """Catalog song returned by a searcher, scored against the imported song."""

    platform: Platform
    platform_id: str
    title: str
    artist: str
    album: Optional[str] = None
    duration: Optional[int] = None
    isrc: Optional[str] = None
    url: Optional[str] = None
    match_score: int = 0
    confidence: MatchConfidence = MatchConfidence.NONE
    match_reason: str = ""

    def to_json(self) -> Dict[str, Any]:
        return _drop_none({
            "platform": self.platform.value,
            "platformId": self.platform_id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration,
            "confidence": self.confidence.value,
            "matchScore": self.match_score,
            "matchReason": self.match_reason,
        })

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MatchCandidate":
        return cls(
            platform=Platform(data["platform"]),
            platform_id=str(data["platformId"]),
            title=data.get("title") or UNKNOWN_TITLE,
            artist=data.get("artist") or UNKNOWN_ARTIST,
            album=data.get("album"),
            duration=data.get("duration"),
            match_score=int(data.get("matchScore", 0)),
            confidence=MatchConfidence(data.get("confidence", MatchConfidence.NONE.value)),
            match_reason=data.get("matchReason", ""),
        )


@dataclass(frozen=True)
class SelectedMatch:
    platform: Platform
    platform_id: str

    def to_json(self) -> Dict[str, Any]:
        return {"platform": self.platform.value, "platformId": self.platform_id}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SelectedMatch":
        return cls(platform=Platform(data["platform"]), platform_id=str(data["platformId"]))


@dataclass(frozen=True)
class SongMatchResult:
    """Outcome of matching one imported song.

    A result with status ``matched`` always carries a ``selected_match``.
    """

    original_song: ExportableSong
    matches: List[MatchCandidate] = field(default_factory=list)
    selected_match: Optional[SelectedMatch] = None
    status: MatchStatus = MatchStatus.NO_MATCH

    def __post_init__(self):
        if self.status == MatchStatus.MATCHED and self.selected_match is None:
            raise ValueError("A matched result requires a selected match")

    @property
    def top_match(self) -> Optional[MatchCandidate]:
        return self.matches[0] if self.matches else None

    def with_decision(self, status: MatchStatus,
                      selected_match: Optional[SelectedMatch] = None) -> "SongMatchResult":
        return replace(self, status=status, selected_match=selected_match)

    def to_json(self) -> Dict[str, Any]:
        return {
            "originalSong": self.original_song.to_json(),
            "matches": [m.to_json() for m in self.matches],
            "selectedMatch": self.selected_match.to_json() if self.selected_match else None,
            "status": self.status.value,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SongMatchResult":
        selected = data.get("selectedMatch")
        return cls(
            original_song=ExportableSong.from_json(data.get("originalSong") or {}),
            matches=[MatchCandidate.from_json(m) for m in data.get("matches") or []],
            selected_match=SelectedMatch.from_json(selected) if selected else None,
            status=MatchStatus(data.get("status", MatchStatus.NO_MATCH.value)),
        )


@dataclass
class ImportJob:
    """Persisted import job.

    Mutated only by the background matching task that owns it and, later, by
    the confirmation step.
    """

    id: str
    user_id: str
    format: PlaylistFormat
    target_platform: Platform
    playlist_name: str
    playlist_description: Optional[str] = None
    status: JobStatus = JobStatus.PROCESSING
    total_songs: int = 0
    processed_songs: int = 0
    matched_songs: int = 0
    unmatched_songs: int = 0
    pending_review_songs: int = 0
    skipped_songs: int = 0
    match_results: List[SongMatchResult] = field(default_factory=list)
    songs: List[ExportableSong] = field(default_factory=list)
    auto_match: bool = True
    create_playlist: bool = True
    created_playlist_id: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "playlistName": self.playlist_name,
            "playlistDescription": self.playlist_description,
            "format": self.format.value,
            "targetPlatform": self.target_platform.value,
            "status": self.status.value,
            "totalSongs": self.total_songs,
            "processedSongs": self.processed_songs,
            "matchedSongs": self.matched_songs,
            "unmatchedSongs": self.unmatched_songs,
            "pendingReviewSongs": self.pending_review_songs,
            "skippedSongs": self.skipped_songs,
            "createdPlaylistId": self.created_playlist_id,
            "errorMessage": self.error_message,
            "matchResults": [r.to_json() for r in self.match_results],
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Playlist:
    """Target playlist aggregate. ``song_count`` is a cached counter."""

    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    song_count: int = 0


@dataclass(frozen=True)
class PlaylistSong:
    playlist_id: str
    song_id: str
    position: int
    song_artist_title: Optional[str] = None
