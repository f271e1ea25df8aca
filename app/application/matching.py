import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from app.domain.entities import (
    UNKNOWN_ARTIST,
    UNKNOWN_TITLE,
    ExportableSong,
    MatchCandidate,
    MatchConfidence,
    MatchStatus,
    Platform,
    SelectedMatch,
    SongMatchResult,
)
from app.domain.errors import MatchNotFound, RateLimited
from app.domain.normalization import normalize_artist, normalize_isrc, normalize_string, normalize_title
from app.domain.ports import PlatformSearcher


logger = logging.getLogger(__name__)

MAX_SCORE = 100
ISRC_REASON = "ISRC code match"

ProgressCallback = Callable[[int, int, SongMatchResult], None]


@dataclass
class MatchOptions:
    """Configuration for a matching run.

    Attributes:
        target_platforms: Only searchers for these platforms are queried
        use_isrc: Query searchers by ISRC first when the song carries one
        use_fuzzy_match: Use edit-distance similarity instead of exact comparison
        min_confidence_score: Candidates scoring below this are dropped
        auto_accept_score: Top candidates at or above this are selected automatically
        max_matches_per_song: Cap on candidates retained per song
    """

    target_platforms: List[Platform] = field(default_factory=lambda: [Platform.NAVIDROME])
    use_isrc: bool = True
    use_fuzzy_match: bool = True
    min_confidence_score: int = 50
    auto_accept_score: int = 70
    max_matches_per_song: int = 5
    rate_limit_retries: int = 2


def string_similarity(a: str, b: str, fuzzy: bool = True) -> float:
    """Similarity of two already-normalized strings in the range 0..1."""
    if a == b:
        return 1.0
    if not a or not b or not fuzzy:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def confidence_for_score(score: float) -> MatchConfidence:
    if score >= 90:
        return MatchConfidence.EXACT
    if score >= 70:
        return MatchConfidence.HIGH
    if score >= 50:
        return MatchConfidence.LOW
    return MatchConfidence.NONE


def calculate_match_score(source: ExportableSong, candidate: MatchCandidate,
                          fuzzy: bool = True) -> MatchCandidate:
    """Score a candidate against the imported song.

    Title and artist weigh 40 points each, album 10 and duration 10. An ISRC
    match is definitive and scores the maximum.

    Returns:
        A copy of the candidate with score, confidence and reason filled in
    """
    if source.isrc and candidate.isrc and normalize_isrc(source.isrc) == normalize_isrc(candidate.isrc):
        return replace(candidate, match_score=MAX_SCORE,
                       confidence=MatchConfidence.EXACT, match_reason=ISRC_REASON)

    score = 0.0
    reasons = []

    title_similarity = string_similarity(
        normalize_title(source.title), normalize_title(candidate.title), fuzzy
    )
    score += title_similarity * 40
    if title_similarity > 0.9:
        reasons.append("Title matches closely")
    elif title_similarity > 0.7:
        reasons.append("Title similar")

    artist_similarity = string_similarity(
        normalize_artist(source.artist), normalize_artist(candidate.artist), fuzzy
    )
    score += artist_similarity * 40
    if artist_similarity > 0.9:
        reasons.append("Artist matches closely")
    elif artist_similarity > 0.7:
        reasons.append("Artist similar")

    if source.album and candidate.album:
        album_similarity = string_similarity(
            normalize_string(source.album), normalize_string(candidate.album), fuzzy
        )
        score += album_similarity * 10
        if album_similarity > 0.8:
            reasons.append("Album matches")

    if source.duration and candidate.duration:
        duration_diff = abs(source.duration - candidate.duration)
        if duration_diff <= 3:
            score += 10
            reasons.append("Duration matches")
        elif duration_diff <= 10:
            score += 5
            reasons.append("Duration close")

    rounded = int(round(score))
    return replace(
        candidate,
        match_score=rounded,
        confidence=confidence_for_score(rounded),
        match_reason=", ".join(reasons) if reasons else "Partial match",
    )


def _placeholder_song(song: ExportableSong) -> ExportableSong:
    return replace(
        song,
        title=song.title or UNKNOWN_TITLE,
        artist=song.artist or UNKNOWN_ARTIST,
    )


def classify(song: ExportableSong, candidates: Sequence[MatchCandidate],
             options: MatchOptions) -> SongMatchResult:
    """Rank candidates and turn them into a SongMatchResult."""
    ranked = sorted(candidates, key=lambda c: c.match_score, reverse=True)
    ranked = ranked[:max(0, options.max_matches_per_song)]

    if not ranked:
        return SongMatchResult(original_song=_placeholder_song(song), status=MatchStatus.NO_MATCH)

    top = ranked[0]
    if top.match_score >= options.auto_accept_score:
        return SongMatchResult(
            original_song=_placeholder_song(song),
            matches=ranked,
            selected_match=SelectedMatch(platform=top.platform, platform_id=top.platform_id),
            status=MatchStatus.MATCHED,
        )

    return SongMatchResult(
        original_song=_placeholder_song(song),
        matches=ranked,
        status=MatchStatus.PENDING_REVIEW,
    )


class SongMatcher:
    """Matches imported songs against one or more catalogs.

    For every song each configured searcher is queried, ISRC first, then by
    title and artist. An exact ISRC hit stops the search for that song.
    A failing searcher is logged and skipped; it never aborts a batch.
    """

    def __init__(self, options: Optional[MatchOptions] = None,
                 song_delay_sec: float = 0.1,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the matcher.

        Args:
            options: Matching options, defaults apply when omitted
            song_delay_sec: Pause between songs in ``match_songs`` to pace search backends
            sleep: Sleep function, replaceable in tests
        """
        self.options = options or MatchOptions()
        self.song_delay_sec = song_delay_sec
        self._sleep = sleep

    def _call(self, searcher: PlatformSearcher, operation: str, *args) -> List[MatchCandidate]:
        attempt = 0
        while True:
            try:
                return list(getattr(searcher, operation)(*args) or [])
            except RateLimited as e:
                attempt += 1
                if attempt > self.options.rate_limit_retries:
                    raise
                logger.warning(f"Rate limited by {searcher.platform.value}, waiting {e.retry_after_ms}ms")
                self._sleep(e.retry_after_ms / 1000.0)

    def _searchers_for(self, searchers: Sequence[PlatformSearcher]) -> List[PlatformSearcher]:
        return [s for s in searchers if s.platform in self.options.target_platforms]

    def match_song(self, song: ExportableSong, searchers: Sequence[PlatformSearcher]) -> SongMatchResult:
        """Match a single song across all configured searchers.

        Args:
            song: Imported song stub
            searchers: Ordered searcher set

        Returns:
            SongMatchResult with candidates ranked best first
        """
        options = self.options
        scored: List[MatchCandidate] = []

        for searcher in self._searchers_for(searchers):
            if options.use_isrc and song.isrc:
                try:
                    isrc_hits = self._call(searcher, "search_by_isrc", song.isrc)
                    isrc_hits = [calculate_match_score(song, replace(c, isrc=c.isrc or song.isrc))
                                 for c in isrc_hits]
                except Exception as e:
                    logger.warning(f"ISRC lookup of {song.isrc} on {searcher.platform.value} failed: {e}")
                    isrc_hits = []
                exact = [c for c in isrc_hits if c.match_reason == ISRC_REASON]
                if exact:
                    logger.debug(f"ISRC {song.isrc} matched on {searcher.platform.value}")
                    return classify(song, exact, options)

            try:
                candidates = self._call(searcher, "search_by_title_artist", song.title, song.artist, song.album)
            except Exception as e:
                logger.error(f"Error searching {searcher.platform.value} for "
                             f"'{song.artist} - {song.title}': {e}")
                continue

            for candidate in candidates:
                candidate = calculate_match_score(song, candidate, fuzzy=options.use_fuzzy_match)
                if candidate.match_reason == ISRC_REASON or candidate.match_score >= options.min_confidence_score:
                    scored.append(candidate)

        return classify(song, _dedupe(scored), options)

    def match_songs(self, songs: Sequence[ExportableSong], searchers: Sequence[PlatformSearcher],
                    on_progress: Optional[ProgressCallback] = None,
                    start_index: int = 0) -> List[SongMatchResult]:
        """Match songs sequentially, preserving input order.

        Args:
            songs: Songs to match
            searchers: Ordered searcher set
            on_progress: Called with (processed count, total, result) after each song
            start_index: Index of ``songs[0]`` within the whole playlist, used when resuming

        Returns:
            One SongMatchResult per input song
        """
        results: List[SongMatchResult] = []
        total = start_index + len(songs)

        for i, song in enumerate(songs):
            try:
                result = self.match_song(song, searchers)
            except Exception as e:
                logger.error(f"Error matching song '{song.artist} - {song.title}': {e}")
                result = SongMatchResult(original_song=_placeholder_song(song), status=MatchStatus.NO_MATCH)
            results.append(result)

            if on_progress:
                on_progress(start_index + i + 1, total, result)

            if self.song_delay_sec > 0 and i < len(songs) - 1:
                self._sleep(self.song_delay_sec)

        return results


def _dedupe(candidates: List[MatchCandidate]) -> List[MatchCandidate]:
    best = {}
    for candidate in candidates:
        key = (candidate.platform, candidate.platform_id)
        if key not in best or candidate.match_score > best[key].match_score:
            best[key] = candidate
    return list(best.values())


def update_match_selection(result: SongMatchResult, platform_id: str, platform: Platform) -> SongMatchResult:
    """Select one of the retained candidates as the user's choice."""
    for match in result.matches:
        if match.platform_id == platform_id and match.platform == platform:
            return result.with_decision(MatchStatus.MATCHED, SelectedMatch(platform=platform, platform_id=platform_id))
    raise MatchNotFound("Selected match not found in match results")


def skip_song(result: SongMatchResult) -> SongMatchResult:
    """Mark a song as intentionally left out."""
    return result.with_decision(MatchStatus.SKIPPED, None)
