import hashlib
import logging
import secrets
from typing import Any, Dict, List, Optional

import requests

from app.domain.entities import MatchCandidate, Platform
from app.domain.errors import PermanentFailure, RateLimited, TemporaryFailure

logger = logging.getLogger(__name__)

API_VERSION = "1.16.1"
CLIENT_NAME = "setlist"
# Subsonic error codes for bad credentials / missing authorization
_AUTH_ERROR_CODES = (40, 41, 50)


class NavidromeSearcher:
    """Searches the local Navidrome library through the Subsonic ``search3`` endpoint.

    The Subsonic API has no ISRC lookup, so ``search_by_isrc`` always returns
    an empty list and matching falls through to title and artist.
    """

    platform = Platform.NAVIDROME

    def __init__(self, base_url: str, username: str, password: str,
                 song_count: int = 20, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self.song_count = song_count
        self.timeout = timeout
        self._session = session or requests.Session()

    def _auth_params(self) -> Dict[str, str]:
        salt = secrets.token_hex(8)
        token = hashlib.md5((self._password + salt).encode("utf-8")).hexdigest()
        return {"u": self.username, "t": token, "s": salt, "v": API_VERSION, "c": CLIENT_NAME, "f": "json"}

    def _get(self, endpoint: str, **params) -> Dict[str, Any]:
        url = f"{self.base_url}/rest/{endpoint}"
        try:
            response = self._session.get(url, params={**self._auth_params(), **params}, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TemporaryFailure(f"Navidrome unreachable: {e}")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimited(retry_after_ms=int(retry_after) * 1000 if retry_after and retry_after.isdigit() else 1000)
        if response.status_code >= 500:
            raise TemporaryFailure(f"Navidrome returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise PermanentFailure(f"Navidrome returned HTTP {response.status_code}")

        try:
            body = response.json()["subsonic-response"]
        except (ValueError, KeyError) as e:
            raise TemporaryFailure(f"Unexpected Navidrome response: {e}")

        if body.get("status") != "ok":
            error = body.get("error") or {}
            message = error.get("message", "unknown error")
            if error.get("code") in _AUTH_ERROR_CODES:
                raise PermanentFailure(f"Navidrome authentication failed: {message}")
            raise TemporaryFailure(f"Navidrome error: {message}")
        return body

    def search_by_isrc(self, isrc: str) -> List[MatchCandidate]:
        return []

    def search_by_title_artist(self, title: str, artist: str,
                               album: Optional[str] = None) -> List[MatchCandidate]:
        query = f"{artist} {title}".strip()
        logger.debug(f"Searching Navidrome: {query}")
        body = self._get("search3", query=query, songCount=self.song_count, artistCount=0, albumCount=0)
        songs = (body.get("searchResult3") or {}).get("song") or []
        return [self._to_candidate(song) for song in songs if song.get("id")]

    @staticmethod
    def _to_candidate(song: Dict[str, Any]) -> MatchCandidate:
        return MatchCandidate(
            platform=Platform.NAVIDROME,
            platform_id=str(song["id"]),
            title=song.get("title", ""),
            artist=song.get("artist", ""),
            album=song.get("album") or None,
            duration=song.get("duration") or None,
            isrc=song.get("isrc") or None,
        )
