"""
Tests for URL validation, track identities and rate limiting.
Run with: pytest tests/
"""
import pytest

from conftest import FakeClock
from playstamp.utils.hashing import (
    APPLE_UPLOADED_PREFIX,
    SPOTIFY_LOCAL_PREFIX,
    content_hash,
    local_track_id,
)
from playstamp.utils.urls import (
    URLValidationError,
    extract_spotify_track_id,
    is_private_host,
    service_domain,
    spotify_track_url,
    validate_url,
)


class TestValidateUrl:
    def test_valid_spotify(self):
        url = "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"
        assert validate_url(url) == url

    def test_strips_whitespace(self):
        assert validate_url("  https://plyr.fm/track/1 ") == "https://plyr.fm/track/1"

    def test_rejects_http_localhost(self):
        with pytest.raises(URLValidationError):
            validate_url("http://localhost/evil")

    def test_rejects_private_ip(self):
        with pytest.raises(URLValidationError):
            validate_url("http://192.168.1.1/steal-secrets")

    def test_private_allowed_when_asked(self):
        assert validate_url("http://127.0.0.1:2583", allow_private=True) == "http://127.0.0.1:2583"

    def test_rejects_too_long(self):
        with pytest.raises(URLValidationError):
            validate_url("https://open.spotify.com/" + "a" * 2048)

    def test_rejects_ftp_scheme(self):
        with pytest.raises(URLValidationError):
            validate_url("ftp://open.spotify.com/track/123")

    def test_rejects_relative(self):
        with pytest.raises(URLValidationError):
            validate_url("/track/123")

    def test_rejects_non_string(self):
        with pytest.raises(URLValidationError):
            validate_url(None)


@pytest.mark.parametrize("host,expected", [
    ("localhost", True),
    ("10.0.0.8", True),
    ("172.20.1.1", True),
    ("172.32.1.1", False),
    ("bsky.social", False),
    ("", False),
])
def test_is_private_host(host, expected):
    assert is_private_host(host) is expected


class TestSpotifyIds:
    def test_extract_from_url(self):
        url = "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"
        assert extract_spotify_track_id(url) == "4uLU6hMCjMI75M1A2tKUQC"

    def test_extract_from_intl_url(self):
        url = "https://open.spotify.com/intl-de/track/4uLU6hMCjMI75M1A2tKUQC?si=abc"
        assert extract_spotify_track_id(url) == "4uLU6hMCjMI75M1A2tKUQC"

    def test_playlist_is_not_a_track(self):
        assert extract_spotify_track_id("https://open.spotify.com/playlist/abc") is None

    @pytest.mark.parametrize("value", [
        "4uLU6hMCjMI75M1A2tKUQC",
        "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC",
        " 4uLU6hMCjMI75M1A2tKUQC ",
    ])
    def test_canonical_url(self, value):
        assert spotify_track_url(value) == "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"

    @pytest.mark.parametrize("value", ["", "short", "4uLU6hMCjMI75M1A2tKUQC-extra"])
    def test_invalid_id_raises(self, value):
        with pytest.raises(URLValidationError):
            spotify_track_url(value)


@pytest.mark.parametrize("url,expected", [
    ("https://open.spotify.com/track/x", "open.spotify.com"),
    ("https://PLYR.fm/t/1", "plyr.fm"),
    ("plyr.fm", ""),
    ("", ""),
])
def test_service_domain(url, expected):
    assert service_domain(url) == expected


class TestHashing:
    def test_stable(self):
        assert content_hash("Song", "Album", "Artist") == content_hash("Song", "Album", "Artist")

    def test_field_boundaries_matter(self):
        assert content_hash("ab", "c", "d") != content_hash("a", "bc", "d")

    def test_prefixes(self):
        assert local_track_id(SPOTIFY_LOCAL_PREFIX, "Song", "Album", "Artist").startswith("sp_local_")
        assert local_track_id(APPLE_UPLOADED_PREFIX, "Song", "Album", "Artist").startswith("am_uploaded_")

    def test_missing_artist_uses_placeholder(self):
        assert local_track_id(SPOTIFY_LOCAL_PREFIX, "Song", "", "") == local_track_id(
            SPOTIFY_LOCAL_PREFIX, "Song", "", "Unknown Artist"
        )


class TestRateLimiter:
    def test_allows_within_limit(self):
        from playstamp.utils.rate_limiter import RateLimiter
        rl = RateLimiter(max_requests=3, window_seconds=60)
        for _ in range(3):
            rl.check(user_id=9999)  # Should not raise

    def test_blocks_over_limit(self):
        from playstamp.utils.rate_limiter import RateLimiter, RateLimitExceeded
        rl = RateLimiter(max_requests=2, window_seconds=60)
        rl.check(1)
        rl.check(1)
        with pytest.raises(RateLimitExceeded) as exc_info:
            rl.check(1)
        assert 0 < exc_info.value.retry_after <= 60

    def test_different_users_independent(self):
        from playstamp.utils.rate_limiter import RateLimiter
        rl = RateLimiter(max_requests=1, window_seconds=60)
        rl.check(1)
        rl.check(2)  # different user, should not raise

    def test_reset(self):
        from playstamp.utils.rate_limiter import RateLimiter
        rl = RateLimiter(max_requests=1, window_seconds=60)
        rl.check(1)
        rl.reset(1)
        rl.check(1)


class TestTokenBucket:
    def test_one_token_per_interval(self):
        from playstamp.utils.rate_limiter import TokenBucket
        clock = FakeClock()
        bucket = TokenBucket(rate=1.0, clock=clock)
        assert bucket.try_acquire()
        assert not bucket.try_acquire()
        clock.advance(0.5)
        assert not bucket.try_acquire()
        clock.advance(0.5)
        assert bucket.try_acquire()

    def test_burst_caps_saved_tokens(self):
        from playstamp.utils.rate_limiter import TokenBucket
        clock = FakeClock()
        bucket = TokenBucket(rate=1.0, burst=2, clock=clock)
        clock.advance(100)
        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    def test_rejects_non_positive_rate(self):
        from playstamp.utils.rate_limiter import TokenBucket
        with pytest.raises(ValueError):
            TokenBucket(rate=0)

    @pytest.mark.asyncio
    async def test_acquire_returns_when_token_available(self):
        from playstamp.utils.rate_limiter import TokenBucket
        bucket = TokenBucket(rate=1000.0)
        await bucket.acquire()
        await bucket.acquire()
