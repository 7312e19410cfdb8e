import pytest
from pydantic import ValidationError

from playstamp.config.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PREFERRED_COUNTRIES", raising=False)
        settings = Settings(_env_file=None)
        assert settings.TRACKER_INTERVAL_SECONDS == 30
        assert settings.STAMP_MIN_MS == 30_000
        assert settings.MUSICBRAINZ_RATE_PER_SECOND == 1.0
        assert settings.preferred_countries == ("XW", "US")
        assert settings.USERS_FILE is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TRACKER_INTERVAL_SECONDS", "10")
        monkeypatch.setenv("LASTFM_ENABLED", "true")
        monkeypatch.setenv("PREFERRED_COUNTRIES", " gb, jp ,")
        settings = Settings(_env_file=None)
        assert settings.TRACKER_INTERVAL_SECONDS == 10
        assert settings.LASTFM_ENABLED is True
        assert settings.preferred_countries == ("GB", "JP")

    def test_unknown_script_rejected(self, monkeypatch):
        monkeypatch.setenv("PREFERRED_SCRIPT", "Klingon")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PORT", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("PORT=9000\nSPOTIFY_ENABLED=false\n")
        settings = Settings(_env_file=env_file)
        assert settings.PORT == 9000
        assert settings.SPOTIFY_ENABLED is False
