"""
URL helpers for track identities, service domains and repository endpoints.
Defends outbound calls against private-host targets.
"""
import re
from typing import Optional
from urllib.parse import urlparse

# ── Regex patterns for ID extraction ────────────────────────────────────────
_SPOTIFY_TRACK_RE = re.compile(
    r"open\.spotify\.com/(?:intl-[a-z]{2}/)?track/([A-Za-z0-9]{22})"
)
_SPOTIFY_ID_RE = re.compile(r"[A-Za-z0-9]{22}")

# ── Private / loopback ranges to block (SSRF) ────────────────────────────────
_PRIVATE_HOST_RE = re.compile(
    r"^(localhost|127\.|10\.|192\.168\.|172\.(1[6-9]|2[0-9]|3[01])\.|::1|0\.0\.0\.0)"
)

SPOTIFY_DOMAIN = "open.spotify.com"


class URLValidationError(ValueError):
    pass


def is_private_host(host: str) -> bool:
    return bool(_PRIVATE_HOST_RE.match(host or ""))


def validate_url(url: str, *, allow_private: bool = False) -> str:
    """
    Validate and sanitise an http(s) URL.
    Returns the cleaned URL or raises URLValidationError.
    """
    if not isinstance(url, str):
        raise URLValidationError("URL must be a string")

    url = url.strip()
    if len(url) > 2048:
        raise URLValidationError("URL too long")

    parsed = _safe_parse(url)
    if parsed is None:
        raise URLValidationError("Malformed URL")

    if parsed.scheme not in ("http", "https"):
        raise URLValidationError("Only http/https URLs are accepted")

    if not allow_private and is_private_host(parsed.hostname or ""):
        raise URLValidationError("Private/loopback addresses are not allowed")

    return url


def service_domain(url: str) -> str:
    """Host part of a track URL, e.g. 'open.spotify.com'. Empty when unparseable."""
    parsed = _safe_parse(url)
    if parsed is None:
        return ""
    return (parsed.hostname or "").lower()


def spotify_track_url(spotify_id: str) -> str:
    """Canonical track URL for a Spotify id, accepting a full track URL as well."""
    spotify_id = spotify_id.strip()
    from_url = extract_spotify_track_id(spotify_id)
    if from_url:
        spotify_id = from_url
    elif not _SPOTIFY_ID_RE.fullmatch(spotify_id):
        raise URLValidationError("Could not extract Spotify track ID")
    return f"https://{SPOTIFY_DOMAIN}/track/{spotify_id}"


def extract_spotify_track_id(url: str) -> Optional[str]:
    match = _SPOTIFY_TRACK_RE.search(url or "")
    return match.group(1) if match else None


def _safe_parse(url: str):
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.netloc:
        return None
    return parsed
