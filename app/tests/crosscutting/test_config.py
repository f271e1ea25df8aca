import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from app.crosscutting.config import (
    ConfigError,
    Settings,
    get_settings,
    load_settings,
    settings_from_mapping,
    setup_config,
)


class TestSettingsFromMapping:
    """Tests for settings parsing and validation."""

    def test_defaults(self):
        """Empty environment yields documented defaults."""
        settings = settings_from_mapping({})

        assert settings == Settings()
        assert settings.min_confidence_score == 50
        assert settings.auto_accept_score == 70
        assert settings.max_matches_per_song == 5
        assert settings.song_delay_sec == 0.1
        assert settings.has_navidrome is False

    def test_overrides(self):
        settings = settings_from_mapping({
            "DATABASE_URI": "sqlite://",
            "SETLIST_LOG_LEVEL": "debug",
            "SETLIST_MIN_CONFIDENCE": "40",
            "SETLIST_AUTO_ACCEPT": "90",
            "SETLIST_FUZZY": "no",
            "SETLIST_SONG_DELAY_MS": "0",
            "SETLIST_WORKERS": "2",
            "NAVIDROME_URL": "http://nd",
            "NAVIDROME_USER": "u",
            "NAVIDROME_PASSWORD": "p",
        })

        assert settings.database_uri == "sqlite://"
        assert settings.log_level == "DEBUG"
        assert (settings.min_confidence_score, settings.auto_accept_score) == (40, 90)
        assert settings.use_fuzzy_match is False
        assert settings.song_delay_sec == 0
        assert settings.workers == 2
        assert settings.has_navidrome is True

    @pytest.mark.parametrize("env", [
        {"SETLIST_LOG_LEVEL": "LOUD"},
        {"SETLIST_MIN_CONFIDENCE": "abc"},
        {"SETLIST_AUTO_ACCEPT": "101"},
        {"SETLIST_MIN_CONFIDENCE": "80", "SETLIST_AUTO_ACCEPT": "70"},
        {"SETLIST_MAX_MATCHES": "0"},
        {"SETLIST_WORKERS": "0"},
        {"SETLIST_FUZZY": "maybe"},
        {"SETLIST_PROGRESS_INTERVAL_SEC": "-1"},
        {"SETLIST_SONG_DELAY_MS": "-5"},
    ])
    def test_invalid_values_raise(self, env):
        with pytest.raises(ConfigError):
            settings_from_mapping(env)

    def test_summary_hides_secrets(self):
        settings = settings_from_mapping({
            "NAVIDROME_URL": "http://nd",
            "NAVIDROME_USER": "u",
            "NAVIDROME_PASSWORD": "hunter22",
            "SPOTIFY_ACCESS_TOKEN": "BQDsecrettoken",
        })

        summary = settings.summary()

        assert summary["has_navidrome"] is True
        assert summary["has_spotify_token"] is True
        assert "hunter22" not in str(summary)
        assert "BQDsecrettoken" not in str(summary)


class TestLoadSettings:
    """Tests for .env layering."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.env_file = Path(self.temp_dir) / '.env'

    def teardown_method(self):
        import shutil
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_reads_env_file(self):
        self.env_file.write_text("SETLIST_MAX_MATCHES=3\nSETLIST_PORT=9000\n")

        settings = load_settings(str(self.env_file))

        assert settings.max_matches_per_song == 3
        assert settings.port == 9000

    def test_environment_wins_over_file(self):
        self.env_file.write_text("SETLIST_MAX_MATCHES=3\n")

        with patch.dict(os.environ, {"SETLIST_MAX_MATCHES": "7"}):
            settings = load_settings(str(self.env_file))

        assert settings.max_matches_per_song == 7

    def test_missing_file_is_ignored(self):
        settings = load_settings(str(Path(self.temp_dir) / 'missing.env'))

        assert settings.max_matches_per_song == 5


class TestGlobalSettings:
    def teardown_method(self):
        setup_config(Settings())

    def test_setup_config_replaces_global(self):
        custom = Settings(port=1234)

        assert setup_config(custom) is custom
        assert get_settings() is custom
