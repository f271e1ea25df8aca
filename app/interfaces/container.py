import logging
from concurrent.futures import Executor
from typing import List, Optional, Sequence

from app.application.matching import MatchOptions
from app.application.pipeline import ImportPipeline
from app.crosscutting.config import Settings
from app.domain.ports import PlatformSearcher
from app.infrastructure.persistence import (
    SqlAlchemyImportJobRepository,
    SqlAlchemyPlaylistRepository,
    create_all_tables,
    create_engine_for,
)
from app.infrastructure.searchers.navidrome import NavidromeSearcher
from app.infrastructure.searchers.spotify import SpotifySearcher


logger = logging.getLogger(__name__)


def build_searchers(settings: Settings) -> List[PlatformSearcher]:
    """Create searchers for every catalog that has credentials configured."""
    searchers: List[PlatformSearcher] = []
    if settings.has_navidrome:
        searchers.append(NavidromeSearcher(settings.navidrome_url, settings.navidrome_user,
                                           settings.navidrome_password))
    if settings.spotify_access_token:
        searchers.append(SpotifySearcher(settings.spotify_access_token))
    if not searchers:
        logger.warning("No catalog searchers configured; imports will produce no matches")
    return searchers


def build_pipeline(settings: Settings,
                   searchers: Optional[Sequence[PlatformSearcher]] = None,
                   executor: Optional[Executor] = None) -> ImportPipeline:
    """Wire repositories, searchers and matching options into an ImportPipeline."""
    engine = create_engine_for(settings.database_uri)
    create_all_tables(engine)

    options = MatchOptions(
        use_fuzzy_match=settings.use_fuzzy_match,
        min_confidence_score=settings.min_confidence_score,
        auto_accept_score=settings.auto_accept_score,
        max_matches_per_song=settings.max_matches_per_song,
    )
    return ImportPipeline(
        SqlAlchemyImportJobRepository(engine),
        SqlAlchemyPlaylistRepository(engine),
        searchers if searchers is not None else build_searchers(settings),
        options=options,
        executor=executor,
        workers=settings.workers,
        song_delay_sec=settings.song_delay_sec,
        progress_every=settings.progress_every,
        progress_interval_sec=settings.progress_interval_sec,
    )
