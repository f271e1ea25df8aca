import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values


class ConfigError(Exception):
    """Configuration error."""
    pass


DEFAULT_DATABASE_URI = "sqlite:///setlist.db"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the import service.

    Values come from the process environment, optionally layered over a
    ``.env`` file. Environment variables win over the file.
    """

    database_uri: str = DEFAULT_DATABASE_URI
    log_level: str = "INFO"
    log_file: Optional[str] = None

    min_confidence_score: int = 50
    auto_accept_score: int = 70
    max_matches_per_song: int = 5
    use_fuzzy_match: bool = True
    song_delay_ms: int = 100

    progress_every: int = 10
    progress_interval_sec: float = 5.0
    stale_minutes: int = 30
    workers: int = 4

    navidrome_url: Optional[str] = None
    navidrome_user: Optional[str] = None
    navidrome_password: Optional[str] = None
    spotify_access_token: Optional[str] = None

    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def song_delay_sec(self) -> float:
        return self.song_delay_ms / 1000.0

    @property
    def has_navidrome(self) -> bool:
        return bool(self.navidrome_url and self.navidrome_user and self.navidrome_password)

    def summary(self) -> Dict[str, object]:
        """Get configuration summary (without sensitive data)."""
        return {
            "database_uri": self.database_uri,
            "log_level": self.log_level,
            "min_confidence_score": self.min_confidence_score,
            "auto_accept_score": self.auto_accept_score,
            "max_matches_per_song": self.max_matches_per_song,
            "workers": self.workers,
            "has_navidrome": self.has_navidrome,
            "has_spotify_token": bool(self.spotify_access_token),
        }


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def settings_from_mapping(env: Mapping[str, str]) -> Settings:
    """Build settings from a mapping of environment-style keys.

    Raises:
        ConfigError: If any value is malformed or out of range
    """
    log_level = (env.get("SETLIST_LOG_LEVEL") or "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"SETLIST_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}, got {log_level!r}")

    min_confidence = _int(env, "SETLIST_MIN_CONFIDENCE", 50)
    auto_accept = _int(env, "SETLIST_AUTO_ACCEPT", 70)
    for key, value in (("SETLIST_MIN_CONFIDENCE", min_confidence), ("SETLIST_AUTO_ACCEPT", auto_accept)):
        if value > 100:
            raise ConfigError(f"{key} must be between 0 and 100, got {value}")
    if auto_accept < min_confidence:
        raise ConfigError("SETLIST_AUTO_ACCEPT must not be lower than SETLIST_MIN_CONFIDENCE")

    return Settings(
        database_uri=env.get("DATABASE_URI") or DEFAULT_DATABASE_URI,
        log_level=log_level,
        log_file=env.get("SETLIST_LOG_FILE") or None,
        min_confidence_score=min_confidence,
        auto_accept_score=auto_accept,
        max_matches_per_song=_int(env, "SETLIST_MAX_MATCHES", 5, minimum=1),
        use_fuzzy_match=_bool(env, "SETLIST_FUZZY", True),
        song_delay_ms=_int(env, "SETLIST_SONG_DELAY_MS", 100),
        progress_every=_int(env, "SETLIST_PROGRESS_EVERY", 10, minimum=1),
        progress_interval_sec=_float(env, "SETLIST_PROGRESS_INTERVAL_SEC", 5.0),
        stale_minutes=_int(env, "SETLIST_STALE_MINUTES", 30, minimum=1),
        workers=_int(env, "SETLIST_WORKERS", 4, minimum=1),
        navidrome_url=env.get("NAVIDROME_URL") or None,
        navidrome_user=env.get("NAVIDROME_USER") or None,
        navidrome_password=env.get("NAVIDROME_PASSWORD") or None,
        spotify_access_token=env.get("SPOTIFY_ACCESS_TOKEN") or None,
        host=env.get("SETLIST_HOST") or "0.0.0.0",
        port=_int(env, "SETLIST_PORT", 8080, minimum=1),
    )


def load_settings(env_file: Optional[str] = ".env") -> Settings:
    """Load settings from the environment, layered over ``env_file`` when it exists."""
    values: Dict[str, str] = {}
    if env_file and Path(env_file).exists():
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(os.environ)
    return settings_from_mapping(values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def setup_config(settings: Optional[Settings] = None) -> Settings:
    """Replace the global settings, e.g. with explicit values in tests."""
    global _settings
    _settings = settings or load_settings()
    return _settings
