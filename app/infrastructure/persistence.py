"""
SQLAlchemy Core tables and repositories for import jobs and playlists.

Every public repository method runs inside its own ``engine.begin()``
transaction, so a progress write either lands completely or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy import engine as sa_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from app.domain.entities import (
    ExportableSong,
    ImportJob,
    JobStatus,
    Platform,
    Playlist,
    PlaylistFormat,
    SongMatchResult,
)
from app.domain.errors import DuplicatePlaylistName

log = logging.getLogger(__name__)


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

user_playlists_table = Table(
    "user_playlists",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("name", String, nullable=False),
    Column("description", Text),
    Column("song_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow),
    UniqueConstraint("user_id", "name"),
)

playlist_songs_table = Table(
    "playlist_songs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("playlist_id", String(36), ForeignKey("user_playlists.id", ondelete="CASCADE"), nullable=False),
    Column("song_id", String, nullable=False),
    Column("song_artist_title", String),
    Column("position", Integer, nullable=False),
    Column("added_at", DateTime, nullable=False, default=datetime.utcnow),
    UniqueConstraint("playlist_id", "song_id"),
)

import_jobs_table = Table(
    "playlist_import_jobs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("format", String, nullable=False),
    Column("target_platform", String, nullable=False),
    Column("playlist_name", String, nullable=False),
    Column("playlist_description", Text),
    Column("status", String, nullable=False, index=True),
    Column("total_songs", Integer, nullable=False, default=0),
    Column("processed_songs", Integer, nullable=False, default=0),
    Column("matched_songs", Integer, nullable=False, default=0),
    Column("unmatched_songs", Integer, nullable=False, default=0),
    Column("pending_review_songs", Integer, nullable=False, default=0),
    Column("skipped_songs", Integer, nullable=False, default=0),
    Column("match_results", JSON, nullable=False, default=list),
    Column("source_songs", JSON, nullable=False, default=list),
    Column("auto_match", Boolean, nullable=False, default=True),
    Column("create_playlist", Boolean, nullable=False, default=True),
    Column("created_playlist_id", String(36), ForeignKey("user_playlists.id", ondelete="SET NULL")),
    Column("error_message", Text),
    Column("started_at", DateTime),
    Column("completed_at", DateTime),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow),
)


def create_engine_for(uri: str) -> sa_engine.Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if uri.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if uri in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(uri, **kwargs)
    return create_engine(uri, pool_pre_ping=True)


def create_all_tables(engine: sa_engine.Engine) -> None:
    """Create all tables."""
    log.info("Creating all tables")
    metadata.create_all(engine)


def _job_values(job: ImportJob) -> dict:
    return {
        "status": job.status.value,
        "total_songs": job.total_songs,
        "processed_songs": job.processed_songs,
        "matched_songs": job.matched_songs,
        "unmatched_songs": job.unmatched_songs,
        "pending_review_songs": job.pending_review_songs,
        "skipped_songs": job.skipped_songs,
        "match_results": [r.to_json() for r in job.match_results],
        "created_playlist_id": job.created_playlist_id,
        "error_message": job.error_message,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "updated_at": job.updated_at,
    }


def _row_to_job(row) -> ImportJob:
    return ImportJob(
        id=row.id,
        user_id=row.user_id,
        format=PlaylistFormat(row.format),
        target_platform=Platform(row.target_platform),
        playlist_name=row.playlist_name,
        playlist_description=row.playlist_description,
        status=JobStatus(row.status),
        total_songs=row.total_songs,
        processed_songs=row.processed_songs,
        matched_songs=row.matched_songs,
        unmatched_songs=row.unmatched_songs,
        pending_review_songs=row.pending_review_songs,
        skipped_songs=row.skipped_songs,
        match_results=[SongMatchResult.from_json(r) for r in row.match_results or []],
        songs=[ExportableSong.from_json(s) for s in row.source_songs or []],
        auto_match=row.auto_match,
        create_playlist=row.create_playlist,
        created_playlist_id=row.created_playlist_id,
        error_message=row.error_message,
        started_at=row.started_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_playlist(row) -> Playlist:
    return Playlist(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        song_count=row.song_count,
    )


class SqlAlchemyImportJobRepository:
    def __init__(self, engine: sa_engine.Engine) -> None:
        self.engine = engine

    def add(self, job: ImportJob) -> None:
        values = _job_values(job)
        values.update({
            "id": job.id,
            "user_id": job.user_id,
            "format": job.format.value,
            "target_platform": job.target_platform.value,
            "playlist_name": job.playlist_name,
            "playlist_description": job.playlist_description,
            "created_at": job.created_at,
            "source_songs": [s.to_json() for s in job.songs],
            "auto_match": job.auto_match,
            "create_playlist": job.create_playlist,
        })
        with self.engine.begin() as conn:
            conn.execute(insert(import_jobs_table).values(**values))

    def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[ImportJob]:
        stmt = select(import_jobs_table).where(import_jobs_table.c.id == job_id)
        if user_id is not None:
            stmt = stmt.where(import_jobs_table.c.user_id == user_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).one_or_none()
        return _row_to_job(row) if row is not None else None

    def save_progress(self, job: ImportJob) -> None:
        """Write counters and results, but only while the row is still processing."""
        job.updated_at = datetime.utcnow()
        stmt = (
            update(import_jobs_table)
            .where(import_jobs_table.c.id == job.id)
            .where(import_jobs_table.c.status == JobStatus.PROCESSING.value)
            .values(**_job_values(job))
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def save(self, job: ImportJob) -> None:
        job.updated_at = datetime.utcnow()
        stmt = (
            update(import_jobs_table)
            .where(import_jobs_table.c.id == job.id)
            .values(**_job_values(job))
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def list_by_status(self, status: str, updated_before: Optional[datetime] = None) -> List[ImportJob]:
        stmt = select(import_jobs_table).where(import_jobs_table.c.status == JobStatus(status).value)
        if updated_before is not None:
            stmt = stmt.where(import_jobs_table.c.updated_at < updated_before)
        stmt = stmt.order_by(import_jobs_table.c.created_at)
        with self.engine.connect() as conn:
            return [_row_to_job(row) for row in conn.execute(stmt)]


class SqlAlchemyPlaylistRepository:
    def __init__(self, engine: sa_engine.Engine) -> None:
        self.engine = engine

    def get(self, playlist_id: str) -> Optional[Playlist]:
        stmt = select(user_playlists_table).where(user_playlists_table.c.id == playlist_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).one_or_none()
        return _row_to_playlist(row) if row is not None else None

    def find_by_name(self, user_id: str, name: str) -> Optional[Playlist]:
        stmt = select(user_playlists_table).where(
            (user_playlists_table.c.user_id == user_id) & (user_playlists_table.c.name == name)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).one_or_none()
        return _row_to_playlist(row) if row is not None else None

    def create_with_songs(self, playlist: Playlist, song_rows: Sequence[tuple]) -> Playlist:
        now = datetime.utcnow()
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(user_playlists_table).values(
                    id=playlist.id,
                    user_id=playlist.user_id,
                    name=playlist.name,
                    description=playlist.description,
                    song_count=len(song_rows),
                    created_at=now,
                    updated_at=now,
                ))
                self._insert_songs(conn, playlist.id, song_rows, start=0)
        except IntegrityError as e:
            if self.find_by_name(playlist.user_id, playlist.name) is not None:
                raise DuplicatePlaylistName(f"A playlist named '{playlist.name}' already exists") from e
            raise
        log.info(f"Created playlist {playlist.id} with {len(song_rows)} songs")
        return Playlist(
            id=playlist.id,
            user_id=playlist.user_id,
            name=playlist.name,
            description=playlist.description,
            song_count=len(song_rows),
        )

    def append_songs(self, playlist_id: str, song_rows: Sequence[tuple]) -> int:
        """Append rows whose song id is not in the playlist yet, after the current last position.

        The playlist row is updated first, which serializes concurrent
        appends to the same playlist.
        """
        if not song_rows:
            return 0
        ids_stmt = select(playlist_songs_table.c.song_id).where(
            playlist_songs_table.c.playlist_id == playlist_id
        )
        with self.engine.begin() as conn:
            conn.execute(
                update(user_playlists_table)
                .where(user_playlists_table.c.id == playlist_id)
                .values(updated_at=datetime.utcnow())
            )
            existing = {row.song_id for row in conn.execute(ids_stmt)}
            rows = [row for row in song_rows if row[0] not in existing]
            self._insert_songs(conn, playlist_id, rows, start=len(existing))
            conn.execute(
                update(user_playlists_table)
                .where(user_playlists_table.c.id == playlist_id)
                .values(song_count=len(existing) + len(rows))
            )
        log.info(f"Appended {len(rows)} songs to playlist {playlist_id} ({len(existing)} already present)")
        return len(rows)

    def songs(self, playlist_id: str) -> List[tuple]:
        """Return ``(position, song_id, label)`` rows ordered by position."""
        stmt = (
            select(playlist_songs_table.c.position, playlist_songs_table.c.song_id,
                   playlist_songs_table.c.song_artist_title)
            .where(playlist_songs_table.c.playlist_id == playlist_id)
            .order_by(playlist_songs_table.c.position)
        )
        with self.engine.connect() as conn:
            return [tuple(row) for row in conn.execute(stmt)]

    @staticmethod
    def _insert_songs(conn, playlist_id: str, song_rows: Sequence[tuple], start: int) -> None:
        if not song_rows:
            return
        now = datetime.utcnow()
        conn.execute(insert(playlist_songs_table), [
            {
                "playlist_id": playlist_id,
                "song_id": song_id,
                "song_artist_title": label,
                "position": start + offset,
                "added_at": now,
            }
            for offset, (song_id, label) in enumerate(song_rows)
        ])
