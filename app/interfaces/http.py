import os
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from app.application.parsing import parse_playlist, validate_playlist_content
from app.application.pipeline import ImportPipeline, ImportRequest
from app.crosscutting.config import Settings, get_settings
from app.domain.entities import Platform, SongMatchResult
from app.domain.errors import ServiceError, Unauthorized, ValidationError


USER_HEADER = 'X-User-Id'
MAX_PLAYLIST_NAME_LENGTH = 100


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _require_content(body: Dict[str, Any]) -> str:
    content = body.get('content')
    if not isinstance(content, str) or not content:
        raise ValidationError("content is required")
    return content


def _optional_bool(body: Dict[str, Any], key: str, default: bool) -> bool:
    value = body.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _parse_match_results(raw: Any) -> List[SongMatchResult]:
    if not isinstance(raw, list):
        raise ValidationError("matchResults must be an array")
    results = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict) or not isinstance(item.get('originalSong'), dict):
            raise ValidationError(f"matchResults[{index}] must contain originalSong")
        try:
            results.append(SongMatchResult.from_json(item))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"matchResults[{index}] is invalid: {e}")
    return results


class HTTPServer:
    """HTTP server exposing playlist import endpoints and health checks."""

    def __init__(self, pipeline: Optional[ImportPipeline] = None,
                 settings: Optional[Settings] = None,
                 host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """Initialize HTTP server.

        Args:
            pipeline: Import pipeline; built from settings when omitted
            settings: Runtime settings, loaded from the environment when omitted
            host: Bind address, overrides settings
            port: Bind port, overrides settings
            debug: Flask debug mode
        """
        self.settings = settings or get_settings()
        self.host = host or self.settings.host
        self.port = port or self.settings.port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        if pipeline is None:
            from app.interfaces.container import build_pipeline
            pipeline = build_pipeline(self.settings)
        self.pipeline = pipeline

        # Version info
        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._setup_error_handlers()
        self._setup_routes()

    def _current_user(self) -> str:
        user_id = request.headers.get(USER_HEADER, '').strip()
        if not user_id:
            raise Unauthorized("Authentication required")
        return user_id

    def _setup_error_handlers(self) -> None:
        @self.app.errorhandler(ServiceError)
        def service_error(error: ServiceError):
            if error.status >= 500:
                self.logger.error(f"{request.method} {request.path} failed: {error.message}")
            else:
                self.logger.info(f"{request.method} {request.path} rejected: {error.code} {error.message}")
            return jsonify(error.to_json()), error.status

        @self.app.errorhandler(Exception)
        def unexpected_error(error: Exception):
            if isinstance(error, HTTPException):
                code = (error.name or 'error').upper().replace(' ', '_')
                return jsonify({'code': code, 'message': error.description}), error.code
            self.logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
            return jsonify({'code': 'INTERNAL_ERROR', 'message': 'Internal server error'}), 500

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'Setlist Playlist Import',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'import': '/import',
                    'validate': '/import/validate'
                }
            }), 200

        @self.app.route('/import/validate', methods=['POST'])
        def validate_import():
            """Pre-flight check of playlist content without creating a job."""
            self._current_user()
            body = _json_body()
            content = _require_content(body)
            format_hint = body.get('format')

            validation = validate_playlist_content(content, format_hint)
            payload = {
                'valid': validation.valid,
                'errors': validation.errors,
                'warnings': validation.warnings,
            }
            if validation.valid:
                parsed = parse_playlist(content, format_hint)
                payload['playlist'] = {
                    'name': parsed.playlist.name,
                    'description': parsed.playlist.description,
                    'songCount': len(parsed.playlist.songs),
                    'format': parsed.format.value,
                }
            return jsonify(payload), 200

        @self.app.route('/import', methods=['POST'])
        def start_import():
            """Create an import job; matching continues in the background."""
            user_id = self._current_user()
            body = _json_body()
            content = _require_content(body)

            playlist_name = body.get('playlistName')
            if playlist_name is not None:
                if not isinstance(playlist_name, str) or not 1 <= len(playlist_name) <= MAX_PLAYLIST_NAME_LENGTH:
                    raise ValidationError(
                        f"playlistName must be between 1 and {MAX_PLAYLIST_NAME_LENGTH} characters"
                    )
            try:
                target_platform = Platform(body.get('targetPlatform') or Platform.NAVIDROME.value)
            except ValueError:
                raise ValidationError(f"Unsupported target platform: {body.get('targetPlatform')}")

            job = self.pipeline.start_import(ImportRequest(
                user_id=user_id,
                content=content,
                format=body.get('format'),
                playlist_name=playlist_name,
                target_platform=target_platform,
                auto_match=_optional_bool(body, 'autoMatch', True),
                create_playlist=_optional_bool(body, 'createPlaylist', True),
            ))
            self.logger.info(f"Accepted import job {job.id} for user {user_id} ({job.total_songs} songs)")
            return jsonify({
                'importJobId': job.id,
                'playlistName': job.playlist_name,
                'status': job.status.value,
                'totalSongs': job.total_songs,
            }), 202

        @self.app.route('/import', methods=['GET'])
        def get_import():
            """Return the caller's import job with its match results."""
            user_id = self._current_user()
            job_id = request.args.get('importJobId')
            if not job_id:
                raise ValidationError("Import job ID is required")
            job = self.pipeline.get_import_job(job_id, user_id)
            return jsonify({'importJob': job.to_json()}), 200

        @self.app.route('/import', methods=['PUT'])
        def confirm_import():
            """Finalize a job with the caller's decisions and materialize the playlist."""
            user_id = self._current_user()
            body = _json_body()
            job_id = body.get('importJobId')
            if not isinstance(job_id, str) or not job_id:
                raise ValidationError("importJobId is required")
            results = _parse_match_results(body.get('matchResults'))

            outcome = self.pipeline.confirm_import(job_id, user_id, results)
            return jsonify(outcome.to_json()), 200

    def run(self) -> None:
        """Resume interrupted jobs, then run the HTTP server."""
        resumed = self.pipeline.resume_interrupted_jobs()
        if resumed:
            self.logger.info(f"Resumed {len(resumed)} interrupted import jobs")
        self.logger.info(f"Starting Setlist HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(pipeline: Optional[ImportPipeline] = None,
               settings: Optional[Settings] = None) -> Flask:
    """Create Flask app, e.g. for a WSGI server or tests."""
    server = HTTPServer(pipeline=pipeline, settings=settings)
    return server.app


if __name__ == '__main__':
    server = HTTPServer()
    server.run()
