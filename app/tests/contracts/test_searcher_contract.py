from typing import List
from unittest.mock import Mock

import pytest

from app.domain.entities import MatchCandidate, Platform
from app.domain.ports import PlatformSearcher
from app.infrastructure.searchers.navidrome import NavidromeSearcher
from app.infrastructure.searchers.spotify import SpotifySearcher
from app.infrastructure.searchers.static import StaticSearcher
from app.tests.fakes import candidate


def _navidrome() -> NavidromeSearcher:
    session = Mock()
    response = Mock(status_code=200, headers={})
    response.json.return_value = {"subsonic-response": {"status": "ok", "searchResult3": {"song": [
        {"id": "nd-1", "title": "Song A", "artist": "Artist A"},
    ]}}}
    session.get.return_value = response
    return NavidromeSearcher("http://navidrome", "u", "p", session=session)


def _spotify() -> SpotifySearcher:
    client = Mock()
    client.search.return_value = {'tracks': {'items': [
        {'id': 'sp-1', 'name': 'Song A', 'artists': [{'name': 'Artist A'}], 'external_ids': {'isrc': 'X1'}},
    ]}}
    return SpotifySearcher("token", client=client, search_limit=5)


def _static() -> StaticSearcher:
    return StaticSearcher([candidate("l-1", "Song A", "Artist A", platform=Platform.LOCAL, isrc="X1")])


@pytest.mark.parametrize("factory", [_navidrome, _spotify, _static])
def test_contract_operations_return_candidates_of_own_platform(factory):
    searcher: PlatformSearcher = factory()

    for found in (searcher.search_by_isrc("X1"), searcher.search_by_title_artist("Song A", "Artist A")):
        assert isinstance(found, list)
        assert all(isinstance(c, MatchCandidate) for c in found)
        assert all(c.platform == searcher.platform for c in found)
        assert all(c.platform_id for c in found)

    titles: List[str] = [c.title for c in searcher.search_by_title_artist("Song A", "Artist A")]
    assert titles == ["Song A"]
