import argparse
import json
import sys
import logging
import signal
import time
from datetime import timedelta
from typing import List, Optional

from app.application.parsing import validate_playlist_content
from app.application.pipeline import ImportPipeline, ImportRequest, SynchronousExecutor
from app.crosscutting.config import ConfigError, Settings, load_settings, setup_config
from app.crosscutting.logging import setup_logging
from app.crosscutting.reporting import export_match_results_csv, generate_match_report
from app.domain.entities import JobStatus, Platform, PlaylistFormat
from app.domain.errors import ServiceError
from app.infrastructure.searchers.static import StaticSearcher
from app.interfaces.container import build_pipeline


class CLI:
    """Command Line Interface for Setlist."""

    def __init__(self):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='setlist',
            description='Import playlist files and match them against music catalogs'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default=None,
            help='Set logging level (default from SETLIST_LOG_LEVEL or INFO)'
        )
        parser.add_argument(
            '--env-file',
            default='.env',
            help='Environment file to read settings from (default: .env)'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        formats = [f.value for f in PlaylistFormat if f != PlaylistFormat.UNKNOWN]

        # Validate command
        validate_parser = subparsers.add_parser('validate', help='Check a playlist file without importing it')
        validate_parser.add_argument('file', help='Playlist file (m3u, xspf, json or csv)')
        validate_parser.add_argument('--format', choices=formats, help='Format hint')

        # Import command
        import_parser = subparsers.add_parser('import', help='Import a playlist file and match its songs')
        import_parser.add_argument('file', help='Playlist file (m3u, xspf, json or csv)')
        import_parser.add_argument('--user', required=True, help='Owning user id')
        import_parser.add_argument('--format', choices=formats, help='Format hint')
        import_parser.add_argument('--name', help='Playlist name (default: name from the file)')
        import_parser.add_argument(
            '--target',
            choices=[p.value for p in Platform],
            default=None,
            help='Target platform (default: navidrome, or local with --catalog)'
        )
        import_parser.add_argument(
            '--catalog',
            help='JSON catalog file to match against instead of configured searchers'
        )
        import_parser.add_argument(
            '--no-auto-match',
            action='store_true',
            help='Skip matching; every song is left for manual review'
        )
        import_parser.add_argument(
            '--no-create-playlist',
            action='store_true',
            help='Do not create a playlist from matched songs'
        )
        import_parser.add_argument(
            '--report-csv',
            help='Write match results as CSV to this path'
        )

        # Status command
        status_parser = subparsers.add_parser('status', help='Show an import job')
        status_parser.add_argument('job_id', help='Import job id')
        status_parser.add_argument('--user', required=True, help='Owning user id')

        # Stale command
        stale_parser = subparsers.add_parser('stale', help='List import jobs stuck in processing')
        stale_parser.add_argument(
            '--minutes',
            type=int,
            default=None,
            help='Idle minutes before a job counts as stale (default from SETLIST_STALE_MINUTES or 30)'
        )

        # Serve command
        serve_parser = subparsers.add_parser('serve', help='Run the HTTP server')
        serve_parser.add_argument('--host', default=None, help='Bind address')
        serve_parser.add_argument('--port', type=int, default=None, help='Bind port')
        serve_parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            self._cleanup_resources()
            sys.exit(130)  # Standard exit code for signal termination

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Log execution time on exit."""
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")
            self._start_time = None

    @staticmethod
    def _read_file(path: str) -> str:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def _build_pipeline(self, settings: Settings, catalog: Optional[str] = None,
                        target: Optional[Platform] = None) -> ImportPipeline:
        searchers = None
        if catalog:
            searchers = [StaticSearcher.from_file(catalog, platform=target or Platform.LOCAL)]
        return build_pipeline(settings, searchers=searchers, executor=SynchronousExecutor())

    def _validate(self, args: argparse.Namespace, settings: Settings) -> int:
        """Validate a playlist file and print the result."""
        result = validate_playlist_content(self._read_file(args.file), args.format)
        print(json.dumps(result.to_json(), indent=2, ensure_ascii=False))
        return 0 if result.valid else 1

    def _import(self, args: argparse.Namespace, settings: Settings) -> int:
        """Run an import synchronously and print the match report."""
        logger = logging.getLogger(__name__)

        if args.target:
            target = Platform(args.target)
        else:
            target = Platform.LOCAL if args.catalog else Platform.NAVIDROME
        pipeline = self._build_pipeline(settings, args.catalog, target)

        accepted = pipeline.start_import(ImportRequest(
            user_id=args.user,
            content=self._read_file(args.file),
            format=args.format,
            playlist_name=args.name,
            target_platform=target,
            auto_match=not args.no_auto_match,
            create_playlist=not args.no_create_playlist,
        ))
        job = pipeline.get_import_job(accepted.id, args.user)
        report = generate_match_report(job.match_results)

        print(json.dumps({
            'importJobId': job.id,
            'playlistName': job.playlist_name,
            'status': job.status.value,
            'createdPlaylistId': job.created_playlist_id,
            'errorMessage': job.error_message,
            'report': report.to_json(),
        }, indent=2, ensure_ascii=False))

        if args.report_csv:
            with open(args.report_csv, 'w', encoding='utf-8', newline='') as f:
                f.write(export_match_results_csv(job.match_results))
            logger.info(f"Match results saved to: {args.report_csv}")

        return 0 if job.status == JobStatus.COMPLETED else 1

    def _status(self, args: argparse.Namespace, settings: Settings) -> int:
        """Print an import job together with the playlist it created."""
        pipeline = self._build_pipeline(settings)
        job = pipeline.get_import_job(args.job_id, args.user)
        output = job.to_json()

        playlist = pipeline.playlists.get(job.created_playlist_id) if job.created_playlist_id else None
        if playlist is not None:
            output['playlist'] = {
                'id': playlist.id,
                'name': playlist.name,
                'songCount': playlist.song_count,
                'songs': [
                    {'position': position, 'songId': song_id, 'label': label}
                    for position, song_id, label in pipeline.playlists.songs(playlist.id)
                ],
            }

        print(json.dumps(output, indent=2, ensure_ascii=False))
        return 0

    def _stale(self, args: argparse.Namespace, settings: Settings) -> int:
        """List processing jobs without recent progress."""
        minutes = args.minutes or settings.stale_minutes
        stale = self._build_pipeline(settings).find_stale_jobs(timedelta(minutes=minutes))

        print(f"Import jobs processing for more than {minutes} minutes without progress:")
        print("-" * 50)
        for job in stale:
            print(f"{job.id}: {job.playlist_name} user={job.user_id} "
                  f"({job.processed_songs}/{job.total_songs} songs, last update {job.updated_at.isoformat()})")
        return 1 if stale else 0

    def _serve(self, args: argparse.Namespace, settings: Settings) -> int:
        """Run the HTTP server until interrupted."""
        from app.interfaces.http import HTTPServer

        server = HTTPServer(settings=settings, host=args.host, port=args.port, debug=args.debug)
        server.run()
        return 0

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the process exit code."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return 1

        try:
            settings = setup_config(load_settings(args.env_file))
        except ConfigError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 2

        setup_logging(args.log_level or settings.log_level, settings.log_file)
        logger = logging.getLogger(__name__)

        commands = {
            'validate': self._validate,
            'import': self._import,
            'status': self._status,
            'stale': self._stale,
            'serve': self._serve,
        }

        try:
            return commands[args.command](args, settings)
        except ServiceError as e:
            logger.error(f"{e.code}: {e.message}")
            print(json.dumps(e.to_json()), file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        except OSError as e:
            logger.error(f"CLI error: {e}")
            return 1
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    cli._setup_signal_handlers()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
