from __future__ import annotations

import re
import unicodedata


_NON_WORD_SPACE_PATTERN = re.compile(r"[^\w\s]", re.UNICODE)
_MULTISPACE_PATTERN = re.compile(r"\s+")
_ARTIST_JOINERS_PATTERN = re.compile(
    r"\b(feat|ft|featuring|with|vs|versus|and)\b", re.IGNORECASE
)
_BRACKETED_PATTERN = re.compile(r"\s*[\(\[][^\)\]]*[\)\]]")
_VERSION_WORDS = (
    r"remaster|remastered|deluxe|extended|live|acoustic|demo|remix|edit|radio|"
    r"single|album|bonus|version|ver|mix"
)
_VERSION_PARENS_PATTERN = re.compile(r"\s*\((?:%s)[^)]*\)" % _VERSION_WORDS, re.IGNORECASE)
_VERSION_BRACKETS_PATTERN = re.compile(r"\s*\[(?:%s)[^\]]*\]" % _VERSION_WORDS, re.IGNORECASE)
_VERSION_DASH_PATTERN = re.compile(r"\s+-\s+(?:%s)\b.*$" % _VERSION_WORDS, re.IGNORECASE)


def _strip_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def normalize_string(value: str) -> str:
    """Case-fold, strip diacritics and punctuation, collapse whitespace."""
    value = value or ""
    value = _strip_diacritics(value)
    value = value.lower()
    value = _NON_WORD_SPACE_PATTERN.sub(" ", value)
    # Replace underscores that \w preserved
    value = value.replace("_", " ")
    return _MULTISPACE_PATTERN.sub(" ", value).strip()


def normalize_title(title: str) -> str:
    """Normalize a title, dropping version suffixes like "(Remastered 2011)" or "- Radio Edit"."""
    value = title or ""
    value = _VERSION_PARENS_PATTERN.sub("", value)
    value = _VERSION_BRACKETS_PATTERN.sub("", value)
    value = _VERSION_DASH_PATTERN.sub("", value)
    return normalize_string(value)


def normalize_artist(artist: str) -> str:
    """Normalize an artist credit, dropping featuring/joiner words and bracketed notes."""
    value = artist or ""
    value = _BRACKETED_PATTERN.sub("", value)
    value = value.replace("&", " ")
    value = normalize_string(value)
    value = _ARTIST_JOINERS_PATTERN.sub(" ", value)
    return _MULTISPACE_PATTERN.sub(" ", value).strip()


def normalize_isrc(isrc: str) -> str:
    return str(isrc or "").replace("-", "").strip().upper()
