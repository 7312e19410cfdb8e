"""
Environment-based configuration using pydantic-settings.
Loaded once in main.py and handed to each component through its constructor.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SCRIPTS = frozenset({"Latin", "Han", "Cyrillic", "Devanagari"})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # ── Core ────────────────────────────────────────────────────────────────
    ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    USERS_FILE: Optional[Path] = None     # JSON seed for the in-memory store

    # ── Tracker ─────────────────────────────────────────────────────────────
    TRACKER_INTERVAL_SECONDS: int = 30
    POLL_CONCURRENCY: int = 16
    MAX_SKIP_DELTA_MS: int = 30_000       # cap on progress credited at first sight
    MAX_DELTA_MS: int = 30_000            # cap on time credited between two polls
    STAMP_MIN_MS: int = 30_000

    # ── Spotify ─────────────────────────────────────────────────────────────
    SPOTIFY_ENABLED: bool = True
    SPOTIFY_CLIENT_ID: str = ""
    SPOTIFY_CLIENT_SECRET: str = ""

    # ── Last.fm ─────────────────────────────────────────────────────────────
    LASTFM_ENABLED: bool = False
    LASTFM_API_KEY: str = ""

    # ── Apple Music ─────────────────────────────────────────────────────────
    APPLE_MUSIC_ENABLED: bool = False
    APPLE_MUSIC_DEVELOPER_TOKEN: str = ""

    # ── plyr.fm ─────────────────────────────────────────────────────────────
    PLYRFM_ENABLED: bool = False
    PLYRFM_API_BASE_URL: str = "https://api.plyr.fm"

    # ── MusicBrainz ─────────────────────────────────────────────────────────
    MUSICBRAINZ_BASE_URL: str = "https://musicbrainz.org/ws/2"
    MUSICBRAINZ_USER_AGENT: str = "playstamp/0.1.0 ( https://github.com/playstamp/playstamp )"
    MUSICBRAINZ_RATE_PER_SECOND: float = 1.0
    METADATA_CACHE_TTL_SECONDS: int = 3600
    PREFERRED_SCRIPT: str = "Latin"
    PREFERRED_COUNTRIES: str = "XW,US"

    # ── Repository publishing ────────────────────────────────────────────────
    SUBMISSION_AGENT: str = "playstamp/v0.1.0"
    STATUS_EXPIRY_SECONDS: int = 600

    # ── Ingestion throttle ───────────────────────────────────────────────────
    INGEST_RATE_LIMIT_REQUESTS: int = 60
    INGEST_RATE_LIMIT_WINDOW_SECONDS: int = 60

    # ── HTTP client ──────────────────────────────────────────────────────────
    HTTP_TIMEOUT_SECONDS: int = 10
    HTTP_MAX_REDIRECTS: int = 3
    HTTP_RETRY_ATTEMPTS: int = 1
    HTTP_RETRY_BACKOFF: float = 1.5

    @field_validator("PREFERRED_COUNTRIES")
    @classmethod
    def normalise_countries(cls, v: str) -> str:
        return ",".join(c.strip().upper() for c in v.split(",") if c.strip())

    @field_validator("PREFERRED_SCRIPT")
    @classmethod
    def known_script(cls, v: str) -> str:
        if v not in _SCRIPTS:
            raise ValueError(f"PREFERRED_SCRIPT must be one of {sorted(_SCRIPTS)}")
        return v

    @property
    def preferred_countries(self) -> Tuple[str, ...]:
        return tuple(c for c in self.PREFERRED_COUNTRIES.split(",") if c)


@lru_cache
def get_settings() -> Settings:
    return Settings()
