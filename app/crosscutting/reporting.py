import csv
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from app.domain.entities import MatchConfidence, MatchStatus, SongMatchResult


@dataclass
class MatchSummary:
    """Counts of match results by status."""

    total: int = 0
    matched: int = 0
    pending_review: int = 0
    no_match: int = 0
    skipped: int = 0

    def to_json(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "matched": self.matched,
            "pendingReview": self.pending_review,
            "noMatch": self.no_match,
            "skipped": self.skipped,
        }


@dataclass
class MatchReport:
    """Summary of a matching run for display and audit."""

    summary: MatchSummary
    by_confidence: Dict[str, int] = field(default_factory=dict)
    unmatched_songs: List[Dict[str, Any]] = field(default_factory=list)
    pending_review_songs: List[Dict[str, Any]] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        """Serialize report to JSON."""
        return {
            "summary": self.summary.to_json(),
            "byConfidence": dict(self.by_confidence),
            "unmatchedSongs": list(self.unmatched_songs),
            "pendingReviewSongs": list(self.pending_review_songs),
        }


def _song_ref(result: SongMatchResult) -> Dict[str, Any]:
    song = result.original_song
    ref = {"title": song.title, "artist": song.artist}
    if song.album:
        ref["album"] = song.album
    return ref


def summarize(results: Iterable[SongMatchResult]) -> MatchSummary:
    summary = MatchSummary()
    for result in results:
        summary.total += 1
        if result.status == MatchStatus.MATCHED:
            summary.matched += 1
        elif result.status == MatchStatus.PENDING_REVIEW:
            summary.pending_review += 1
        elif result.status == MatchStatus.NO_MATCH:
            summary.no_match += 1
        elif result.status == MatchStatus.SKIPPED:
            summary.skipped += 1
    return summary


def generate_match_report(results: List[SongMatchResult]) -> MatchReport:
    """Build a report with status totals, confidence histogram and the songs needing attention."""
    by_confidence = {c.value: 0 for c in MatchConfidence}
    unmatched: List[Dict[str, Any]] = []
    pending: List[Dict[str, Any]] = []

    for result in results:
        top = result.top_match
        if result.status in (MatchStatus.MATCHED, MatchStatus.PENDING_REVIEW) and top:
            by_confidence[top.confidence.value] += 1
        if result.status == MatchStatus.PENDING_REVIEW and top:
            entry = _song_ref(result)
            entry["topMatchScore"] = top.match_score
            entry["topMatchReason"] = top.match_reason
            pending.append(entry)
        elif result.status == MatchStatus.NO_MATCH:
            by_confidence[MatchConfidence.NONE.value] += 1
            unmatched.append(_song_ref(result))

    return MatchReport(
        summary=summarize(results),
        by_confidence=by_confidence,
        unmatched_songs=unmatched,
        pending_review_songs=pending,
    )


CSV_HEADERS = [
    "Original Title",
    "Original Artist",
    "Original Album",
    "Status",
    "Match Platform",
    "Match Title",
    "Match Artist",
    "Confidence",
    "Score",
    "Reason",
]


def export_match_results_csv(results: Iterable[SongMatchResult]) -> str:
    """Render match results as CSV, one row per imported song with its top candidate."""
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for result in results:
        top = result.top_match
        writer.writerow([
            result.original_song.title,
            result.original_song.artist,
            result.original_song.album or "",
            result.status.value,
            top.platform.value if top else "",
            top.title if top else "",
            top.artist if top else "",
            top.confidence.value if top else "",
            str(top.match_score) if top else "",
            top.match_reason if top else "",
        ])
    return output.getvalue().rstrip("\n")
