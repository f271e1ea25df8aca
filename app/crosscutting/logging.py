import json
import logging
import re
from datetime import datetime
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
import_job_id_var: ContextVar[Optional[str]] = ContextVar('import_job_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

_CORRELATION_FIELDS = (
    ('import_job_id', 'importJobId', import_job_id_var),
    ('user_id', 'userId', user_id_var),
    ('playlist_id', 'playlistId', playlist_id_var),
    ('stage', 'stage', stage_var),
)


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        self.patterns = [
            # Passwords, tokens and keys
            r'(?i)(token|key|secret|password|auth)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{6,})["\']?',
            # Subsonic salted token query parameters
            r'(?i)([?&]t)=([a-f0-9]{16,})',
            # Authorization headers
            r'(?i)(authorization|bearer)[\s]*[:=]?[\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]
        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        masked_text = text
        for pattern in self.compiled_patterns:
            def replace_match(match):
                prefix = match.group(1)
                secret = match.group(2)
                # Keep first 2 and last 2 characters of long secrets
                if len(secret) > 8:
                    masked_secret = secret[:2] + '*' * (len(secret) - 4) + secret[-2:]
                else:
                    masked_secret = '*' * len(secret)
                return f"{prefix}: {masked_secret}"

            masked_text = pattern.sub(replace_match, masked_text)

        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data

        masked_data = {}
        for key, value in data.items():
            if isinstance(value, str):
                if re.search(r'(?i)password|token|secret', key):
                    masked_data[key] = '*' * len(value)
                else:
                    masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                    else self.mask_secrets(item) if isinstance(item, str)
                                    else item for item in value]
            else:
                masked_data[key] = value

        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'ts': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for _, key, var in _CORRELATION_FIELDS:
            value = var.get()
            if value:
                log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            log_entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CorrelationContext:
    """Context manager binding import job, user, playlist and stage to log records."""

    def __init__(self, import_job_id: Optional[str] = None,
                 user_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        self.values = {
            'import_job_id': import_job_id,
            'user_id': user_id,
            'playlist_id': playlist_id,
            'stage': stage,
        }
        self._tokens = []

    def __enter__(self):
        for name, _, var in _CORRELATION_FIELDS:
            value = self.values[name]
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None) -> logging.Logger:
    """Setup structured logging on the ``setlist`` and ``app`` loggers."""
    formatter = StructuredFormatter()
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    for name in ('setlist', 'app'):
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level.upper()))
        logger.handlers.clear()
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False

    return logging.getLogger('setlist')


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs):
    """Log message with additional structured fields."""
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(getattr(logging, level.upper()), message,
               extra={'fields': merged}, exc_info=exc_info)


def log_job_start(logger: logging.Logger, import_job_id: str, user_id: str,
                  total_songs: int, target_platform: str, **kwargs):
    """Log import job start."""
    with CorrelationContext(import_job_id=import_job_id, user_id=user_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Import job started', {
            'total_songs': total_songs,
            'target_platform': target_platform,
            **kwargs
        })


def log_job_complete(logger: logging.Logger, import_job_id: str,
                     matched: int, unmatched: int, pending_review: int, **kwargs):
    """Log import job completion."""
    with CorrelationContext(import_job_id=import_job_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Import job completed', {
            'matched': matched,
            'unmatched': unmatched,
            'pending_review': pending_review,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
