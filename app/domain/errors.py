class ServiceError(Exception):
    """Error surfaced synchronously to callers as ``{code, message}``."""

    code = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str, code: str = None, status: int = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status:
            self.status = status

    def to_json(self) -> dict:
        return {"code": self.code, "message": self.message}


class ParseError(ServiceError):
    """Playlist content could not yield any songs."""

    code = "IMPORT_PARSE_ERROR"
    status = 400


class UnsupportedFormat(ServiceError):
    """Playlist format could not be detected or is not supported."""

    code = "IMPORT_FORMAT_ERROR"
    status = 400


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status = 400


class Unauthorized(ServiceError):
    code = "UNAUTHORIZED"
    status = 401


class DuplicatePlaylistName(ServiceError):
    code = "DUPLICATE_PLAYLIST_NAME"
    status = 409


class JobNotFound(ServiceError):
    """Unknown import job, or one owned by another user."""

    code = "NOT_FOUND"
    status = 404


class MatchNotFound(ServiceError):
    code = "MATCH_NOT_FOUND"
    status = 400


class RateLimited(Exception):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(Exception):
    """Transient provider or network failure. Retrying may succeed."""


class PermanentFailure(Exception):
    """Non-retriable failure due to invalid input or authorization issues."""


class JobInProgress(ServiceError):
    """Import job is still matching and cannot be confirmed yet."""

    code = "IMPORT_IN_PROGRESS"
    status = 409
