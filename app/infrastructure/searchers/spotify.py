import logging
import os
from typing import Any, Dict, List, Optional

import spotipy
from spotipy.exceptions import SpotifyException

from app.domain.entities import MatchCandidate, Platform
from app.domain.errors import PermanentFailure, RateLimited, TemporaryFailure

logger = logging.getLogger(__name__)


class SpotifySearcher:
    """Spotify catalog search backed by spotipy."""

    platform = Platform.SPOTIFY

    def __init__(self, access_token: str, client: Optional[spotipy.Spotify] = None,
                 search_limit: Optional[int] = None, market: Optional[str] = None):
        """Initialize Spotify searcher.

        Args:
            access_token: Spotify access token
            client: Preconfigured spotipy client, replaceable in tests
            search_limit: Results requested per query
            market: Market code passed to the search endpoint
        """
        self._client = client or spotipy.Spotify(auth=access_token)
        self._search_limit = search_limit or int(os.getenv('SETLIST_SPOTIFY_SEARCH_LIMIT', '10'))
        self._market = market or os.getenv('SETLIST_SPOTIFY_MARKET') or None

    def _search(self, query: str) -> List[Dict[str, Any]]:
        logger.debug(f"Searching Spotify: {query} (market={self._market}, limit={self._search_limit})")
        try:
            results = self._client.search(query, type='track', limit=self._search_limit, market=self._market)
        except SpotifyException as e:
            if e.http_status == 429:
                retry_after = (e.headers or {}).get('Retry-After')
                raise RateLimited(retry_after_ms=int(retry_after) * 1000 if retry_after else 1000)
            if e.http_status in (401, 403):
                raise PermanentFailure(f"Spotify rejected the request: {e.msg}")
            raise TemporaryFailure(str(e))
        except Exception as e:
            raise TemporaryFailure(str(e))

        if results and 'tracks' in results and 'items' in results['tracks']:
            return [item for item in results['tracks']['items'] if item]
        return []

    def search_by_isrc(self, isrc: str) -> List[MatchCandidate]:
        return [c for c in (self._to_candidate(item) for item in self._search(f'isrc:{isrc}')) if c]

    def search_by_title_artist(self, title: str, artist: str,
                               album: Optional[str] = None) -> List[MatchCandidate]:
        # Strict field query first, free text as a fallback
        items = self._search(f'track:"{title}" artist:"{artist}"')
        if not items:
            items = self._search(f'{title} {artist}')
        return [c for c in (self._to_candidate(item) for item in items) if c]

    @staticmethod
    def _to_candidate(spotify_track: Dict[str, Any]) -> Optional[MatchCandidate]:
        track_id = spotify_track.get('id')
        if not track_id:
            return None

        artists = spotify_track.get('artists', [])
        artist_names = [artist.get('name', '') for artist in artists if artist.get('name')]
        album = spotify_track.get('album') or {}
        duration_ms = spotify_track.get('duration_ms')

        return MatchCandidate(
            platform=Platform.SPOTIFY,
            platform_id=track_id,
            title=spotify_track.get('name', ''),
            artist=', '.join(artist_names),
            album=album.get('name') or None,
            duration=round(duration_ms / 1000) if duration_ms else None,
            isrc=(spotify_track.get('external_ids') or {}).get('isrc') or None,
            url=f"spotify:track:{track_id}",
        )
