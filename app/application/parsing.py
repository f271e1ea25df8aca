"""Playlist format parsing.

Turns M3U, XSPF, JSON and CSV playlist text into one canonical
``ExportablePlaylist``. Malformed entries are skipped and reported as
warnings; only content that cannot be read structurally raises.
"""

import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree as ET

import pandas as pd

from app.domain.entities import (
    DEFAULT_PLAYLIST_NAME,
    UNKNOWN_ARTIST,
    UNKNOWN_TITLE,
    ExportablePlaylist,
    ExportableSong,
    Platform,
    PlaylistFormat,
)
from app.domain.errors import ParseError, UnsupportedFormat


logger = logging.getLogger(__name__)

CANONICAL_JSON_FORMAT = "setlist-playlist"

_EXTINF_PATTERN = re.compile(r"#EXTINF:\s*(-?\d+)[^,]*,(.*)")
_EXTPID_PATTERN = re.compile(r"#EXTPID:(\w+):(.+)")
_ARTIST_TITLE_SEPARATOR = " - "

TITLE_COLUMNS = ("track name", "title", "track", "song", "song name", "name")
ARTIST_COLUMNS = ("artist name", "artist name(s)", "artist", "artists", "artist(s) name")
ALBUM_COLUMNS = ("album name", "album")
DURATION_COLUMNS = ("duration", "duration (s)", "length")
ISRC_COLUMNS = ("isrc",)


@dataclass
class ParseResult:
    """Parsed playlist together with the detected format and any per-entry warnings."""

    playlist: ExportablePlaylist
    format: PlaylistFormat
    parse_warnings: List[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    song_count: Optional[int] = None
    format: Optional[PlaylistFormat] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "songCount": self.song_count,
            "format": self.format.value if self.format else None,
        }


def _normalize_column(name: Any) -> str:
    return str(name).strip().lower().replace("_", " ")


def _looks_like_csv_header(line: str) -> bool:
    cells = {_normalize_column(c).strip('"') for c in re.split(r"[,;\t|]", line)}
    return bool(cells & set(TITLE_COLUMNS)) and bool(cells & set(ARTIST_COLUMNS))


def detect_format(content: str) -> PlaylistFormat:
    """Sniff the playlist format from the leading content.

    Never raises; returns ``PlaylistFormat.UNKNOWN`` when nothing matches.
    """
    trimmed = (content or "").lstrip("\ufeff").strip()
    if not trimmed:
        return PlaylistFormat.UNKNOWN
    if trimmed.startswith("#EXTM3U") or trimmed.startswith("#"):
        return PlaylistFormat.M3U
    if trimmed.startswith("<?xml") or trimmed.startswith("<playlist"):
        return PlaylistFormat.XSPF
    if trimmed.startswith("{") or trimmed.startswith("["):
        return PlaylistFormat.JSON
    first_line = trimmed.splitlines()[0]
    if _looks_like_csv_header(first_line):
        return PlaylistFormat.CSV
    return PlaylistFormat.UNKNOWN


def _split_artist_title(text: str):
    separator_index = text.find(_ARTIST_TITLE_SEPARATOR)
    if separator_index > 0:
        artist = text[:separator_index].strip()
        title = text[separator_index + len(_ARTIST_TITLE_SEPARATOR):].strip()
        return artist or None, title or None
    return None, text.strip() or None


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> Optional[str]:
    """Return scalar JSON values as stripped text; objects, arrays and booleans become None."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return str(value).strip() or None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _platform(value: Any) -> Optional[Platform]:
    try:
        return Platform(value) if value else None
    except (TypeError, ValueError):
        return None


def _song(title: Any, artist: Any, **extra) -> ExportableSong:
    if isinstance(artist, list):
        names = (_text(a.get("name")) if isinstance(a, dict) else _text(a) for a in artist)
        artist = ", ".join(name for name in names if name)
    title = str(title).strip() if title else ""
    artist = str(artist).strip() if artist else ""
    return ExportableSong(
        title=title or UNKNOWN_TITLE,
        artist=artist or UNKNOWN_ARTIST,
        **extra,
    )


def parse_m3u(content: str) -> ParseResult:
    """Parse (extended) M3U content."""
    songs: List[ExportableSong] = []
    warnings: List[str] = []
    name = DEFAULT_PLAYLIST_NAME
    description = None
    pending: Dict[str, Any] = {}

    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip().lstrip("\ufeff")
        if not line or line.startswith("#EXTM3U"):
            continue

        if line.startswith("#PLAYLIST:"):
            name = line[len("#PLAYLIST:"):].strip() or name
        elif line.startswith("#EXTDESC:"):
            description = line[len("#EXTDESC:"):].strip() or None
        elif line.startswith("#EXTINF:"):
            match = _EXTINF_PATTERN.match(line)
            if not match:
                warnings.append(f"Line {line_number}: Malformed EXTINF entry")
                pending = {}
                continue
            artist, title = _split_artist_title(match.group(2))
            pending = {"title": title, "artist": artist}
            duration = int(match.group(1))
            if duration > 0:
                pending["duration"] = duration
        elif line.startswith("#EXTALB:"):
            pending["album"] = line[len("#EXTALB:"):].strip() or None
        elif line.startswith("#EXTISRC:"):
            pending["isrc"] = line[len("#EXTISRC:"):].strip() or None
        elif line.startswith("#EXTPID:"):
            match = _EXTPID_PATTERN.match(line)
            if match:
                pending["platform"] = _platform(match.group(1))
                pending["platform_id"] = match.group(2).strip()
        elif line.startswith("#"):
            continue
        elif pending.get("title"):
            songs.append(_song(
                pending.pop("title"), pending.pop("artist", None), url=line, **pending
            ))
            pending = {}
        else:
            # Bare path: try "Artist - Title.ext" from the file name
            filename = re.split(r"[/\\]", line)[-1]
            stem = re.sub(r"\.[^.]+$", "", filename)
            artist, title = _split_artist_title(stem)
            pending.pop("title", None)
            pending.pop("artist", None)
            if artist and title:
                songs.append(_song(title, artist, url=line, **pending))
            else:
                warnings.append(f"Line {line_number}: Could not parse song info from \"{line}\"")
            pending = {}

    return ParseResult(
        playlist=ExportablePlaylist(name=name, description=description, songs=songs),
        format=PlaylistFormat.M3U,
        parse_warnings=warnings,
    )


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def parse_xspf(content: str) -> ParseResult:
    """Parse XSPF (XML Shareable Playlist Format) content."""
    try:
        root = ET.fromstring(content.strip().lstrip("\ufeff").encode("utf-8"))
    except ET.ParseError as e:
        raise ParseError(f"Failed to parse XSPF: {e}")

    if _local_name(root.tag) != "playlist":
        raise ParseError("Failed to parse XSPF: root element is not <playlist>")

    songs: List[ExportableSong] = []
    warnings: List[str] = []

    track_list = _child(root, "trackList")
    tracks = [t for t in track_list if _local_name(t.tag) == "track"] if track_list is not None else []

    for index, track in enumerate(tracks, start=1):
        title = _child_text(track, "title")
        creator = _child_text(track, "creator")
        if not title or not creator:
            warnings.append(f"Track {index}: Missing required title or artist")
            continue

        extra: Dict[str, Any] = {
            "album": _child_text(track, "album"),
            "track": _to_int(_child_text(track, "trackNum")),
            "url": _child_text(track, "location"),
        }
        duration_ms = _to_int(_child_text(track, "duration"))
        if duration_ms:
            extra["duration"] = duration_ms // 1000

        extension = _child(track, "extension")
        if extension is not None:
            extra["isrc"] = _child_text(extension, "isrc")
            platform_id = _child(extension, "platformId")
            if platform_id is not None and platform_id.text:
                extra["platform"] = _platform(platform_id.get("platform"))
                extra["platform_id"] = platform_id.text.strip()

        songs.append(_song(title, creator, **extra))

    return ParseResult(
        playlist=ExportablePlaylist(
            name=_child_text(root, "title") or DEFAULT_PLAYLIST_NAME,
            description=_child_text(root, "annotation"),
            creator=_child_text(root, "creator"),
            songs=songs,
        ),
        format=PlaylistFormat.XSPF,
        parse_warnings=warnings,
    )


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def _songs_from_items(items: List[Any], warnings: List[str]) -> List[ExportableSong]:
    songs: List[ExportableSong] = []
    for index, item in enumerate(items, start=1):
        if isinstance(item, str):
            artist, title = _split_artist_title(item)
            if title:
                songs.append(_song(title, artist))
            else:
                warnings.append(f"Item {index}: Empty song entry")
            continue

        if not isinstance(item, dict):
            warnings.append(f"Item {index}: Unsupported entry type {type(item).__name__}")
            continue

        title = _first(item, "title", "name", "track", "songTitle")
        if not title or not isinstance(title, str):
            warnings.append(f"Item {index}: Skipped item without title: {json.dumps(item)[:100]}")
            continue

        songs.append(_song(
            title,
            _first(item, "artist", "artists", "songArtist"),
            album=item.get("album") if isinstance(item.get("album"), str) else None,
            duration=_to_int(item.get("duration")),
            track=_to_int(item.get("track")) if not isinstance(item.get("track"), str) else None,
            isrc=_text(item.get("isrc")),
            platform=_platform(item.get("platform")),
            platform_id=_text(item.get("platformId")),
            url=_text(item.get("url")),
        ))
    return songs


def _spotify_songs(items: List[Any], warnings: List[str]) -> List[ExportableSong]:
    songs: List[ExportableSong] = []
    for index, item in enumerate(items, start=1):
        track = item.get("track") if isinstance(item, dict) and isinstance(item.get("track"), dict) else item
        if not isinstance(track, dict) or not _text(track.get("name")):
            warnings.append(f"Item {index}: Skipped track without name")
            continue
        album = _as_dict(track.get("album"))
        duration_ms = _to_int(track.get("duration_ms"))
        songs.append(_song(
            _text(track.get("name")),
            track.get("artists") or None,
            album=_text(album.get("name")),
            duration=duration_ms // 1000 if duration_ms else None,
            isrc=_text(_as_dict(track.get("external_ids")).get("isrc")),
            platform=Platform.SPOTIFY,
            platform_id=_text(track.get("id")),
        ))
    return songs


def parse_json(content: str) -> ParseResult:
    """Parse JSON playlist content in one of the recognised shapes."""
    warnings: List[str] = []
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse JSON: {e}")

    if isinstance(data, dict) and data.get("format") == CANONICAL_JSON_FORMAT and isinstance(data.get("playlist"), dict):
        playlist = data["playlist"]
        items = playlist.get("songs") or []
        if not isinstance(items, list):
            raise ParseError("Failed to parse JSON: playlist songs must be an array")
        songs = _songs_from_items(items, warnings)
        return ParseResult(
            playlist=ExportablePlaylist(
                name=_text(playlist.get("name")) or DEFAULT_PLAYLIST_NAME,
                description=_text(playlist.get("description")),
                creator=_text(playlist.get("creator")),
                platform=_platform(playlist.get("platform")),
                songs=songs,
            ),
            format=PlaylistFormat.JSON,
            parse_warnings=warnings,
        )

    if isinstance(data, list):
        return ParseResult(
            playlist=ExportablePlaylist(name=DEFAULT_PLAYLIST_NAME, songs=_songs_from_items(data, warnings)),
            format=PlaylistFormat.JSON,
            parse_warnings=warnings,
        )

    if not isinstance(data, dict):
        raise ParseError("Failed to parse JSON: expected an object or an array")

    if data.get("tracks") is not None or data.get("items") is not None:
        tracks = data.get("tracks")
        if isinstance(tracks, dict):
            items = tracks.get("items") or []
        else:
            items = tracks or data.get("items") or []
        if not isinstance(items, list):
            raise ParseError("Failed to parse JSON: tracks must be an array")
        return ParseResult(
            playlist=ExportablePlaylist(
                name=_text(data.get("name")) or DEFAULT_PLAYLIST_NAME,
                description=_text(data.get("description")),
                platform=Platform.SPOTIFY,
                songs=_spotify_songs(items, warnings),
            ),
            format=PlaylistFormat.JSON,
            parse_warnings=warnings,
        )

    if data.get("playlistItems") is not None or data.get("videoIds") is not None:
        items = data.get("playlistItems") or data.get("videoIds") or []
        if not isinstance(items, list):
            raise ParseError("Failed to parse JSON: playlistItems must be an array")
        songs = []
        for index, item in enumerate(items, start=1):
            if isinstance(item, str):
                item = {"videoId": item}
            if not isinstance(item, dict):
                warnings.append(f"Item {index}: Unsupported entry type {type(item).__name__}")
                continue
            snippet = _as_dict(item.get("snippet"))
            songs.append(_song(
                _text(item.get("title")) or _text(snippet.get("title")),
                _text(item.get("artist")) or _text(snippet.get("channelTitle")),
                platform=Platform.YOUTUBE_MUSIC,
                platform_id=_text(item.get("videoId")) or _text(item.get("id")),
            ))
        snippet = _as_dict(data.get("snippet"))
        return ParseResult(
            playlist=ExportablePlaylist(
                name=_text(data.get("title")) or _text(snippet.get("title")) or DEFAULT_PLAYLIST_NAME,
                description=_text(data.get("description")) or _text(snippet.get("description")),
                platform=Platform.YOUTUBE_MUSIC,
                songs=songs,
            ),
            format=PlaylistFormat.JSON,
            parse_warnings=warnings,
        )

    if isinstance(data.get("songs"), list):
        return ParseResult(
            playlist=ExportablePlaylist(
                name=_text(data.get("name")) or _text(data.get("playlistName")) or DEFAULT_PLAYLIST_NAME,
                description=_text(data.get("description")),
                songs=_songs_from_items(data["songs"], warnings),
            ),
            format=PlaylistFormat.JSON,
            parse_warnings=warnings,
        )

    raise ParseError(
        "Failed to parse JSON: Unrecognized JSON format. "
        "Expected array of songs or object with songs/tracks array."
    )


def _find_column(columns: Dict[str, str], aliases) -> Optional[str]:
    for alias in aliases:
        if alias in columns:
            return columns[alias]
    return None


def parse_csv(content: str) -> ParseResult:
    """Parse a tabular export whose header names title and artist columns."""
    try:
        dataframe = pd.read_csv(
            io.StringIO(content.strip().lstrip("\ufeff")),
            sep=None,
            engine="python",
            dtype=str,
            keep_default_na=False,
        )
    except Exception as e:
        raise ParseError(f"Failed to parse CSV: {e}")

    columns = {_normalize_column(c): c for c in dataframe.columns}
    title_column = _find_column(columns, TITLE_COLUMNS)
    artist_column = _find_column(columns, ARTIST_COLUMNS)
    if not title_column or not artist_column:
        raise ParseError("Failed to parse CSV: header must name a title and an artist column")

    album_column = _find_column(columns, ALBUM_COLUMNS)
    duration_column = _find_column(columns, DURATION_COLUMNS)
    isrc_column = _find_column(columns, ISRC_COLUMNS)

    songs: List[ExportableSong] = []
    warnings: List[str] = []
    for row_number, row in enumerate(dataframe.to_dict(orient="records"), start=2):
        title = str(row.get(title_column, "")).strip()
        artist = str(row.get(artist_column, "")).strip()
        if not title or not artist:
            warnings.append(f"Row {row_number}: Missing title or artist")
            continue
        songs.append(_song(
            title,
            artist,
            album=str(row[album_column]).strip() or None if album_column else None,
            duration=_to_int(row.get(duration_column)) if duration_column else None,
            isrc=str(row[isrc_column]).strip() or None if isrc_column else None,
        ))

    logger.debug(f"Parsed {len(dataframe)} CSV rows into {len(songs)} songs")
    return ParseResult(
        playlist=ExportablePlaylist(name=DEFAULT_PLAYLIST_NAME, songs=songs),
        format=PlaylistFormat.CSV,
        parse_warnings=warnings,
    )


_PARSERS = {
    PlaylistFormat.M3U: parse_m3u,
    PlaylistFormat.XSPF: parse_xspf,
    PlaylistFormat.JSON: parse_json,
    PlaylistFormat.CSV: parse_csv,
}


def parse_playlist(content: str, format: Optional[PlaylistFormat] = None) -> ParseResult:
    """Parse playlist content, detecting the format when no hint is given.

    Args:
        content: Raw playlist text
        format: Optional format hint

    Returns:
        ParseResult with the canonical playlist and per-entry warnings

    Raises:
        UnsupportedFormat: If the format cannot be detected
        ParseError: If the content is structurally unreadable
    """
    if format is None:
        format = detect_format(content)
    elif not isinstance(format, PlaylistFormat):
        try:
            format = PlaylistFormat(format)
        except (TypeError, ValueError):
            raise UnsupportedFormat(f"Unsupported import format: {format}")

    parser = _PARSERS.get(format)
    if parser is None:
        raise UnsupportedFormat("Could not detect playlist format")

    result = parser(content or "")
    logger.info(f"Parsed {format.value} playlist '{result.playlist.name}' with "
                f"{len(result.playlist.songs)} songs and {len(result.parse_warnings)} warnings")
    return result


def validate_playlist_content(content: str, format: Optional[PlaylistFormat] = None) -> ValidationResult:
    """Pre-flight check of playlist content. Pure and never raises."""
    if not content or not content.strip():
        return ValidationResult(valid=False, errors=["Playlist content is empty"])

    try:
        result = parse_playlist(content, format)
    except (ParseError, UnsupportedFormat) as e:
        return ValidationResult(valid=False, errors=[e.message])

    errors: List[str] = []
    warnings: List[str] = []
    if not result.playlist.songs:
        errors.append("Playlist contains no songs")
    for index, song in enumerate(result.playlist.songs, start=1):
        if song.title == UNKNOWN_TITLE:
            errors.append(f"Song {index}: Missing title")
        if song.artist == UNKNOWN_ARTIST:
            warnings.append(f"Song {index}: Missing artist")
    if result.playlist.name == DEFAULT_PLAYLIST_NAME:
        warnings.append("Playlist name is missing, will use default")
    warnings.extend(result.parse_warnings)

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        song_count=len(result.playlist.songs),
        format=result.format,
    )
