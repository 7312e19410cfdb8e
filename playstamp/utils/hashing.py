"""Deterministic identities for tracks that have no stable provider URL."""
import hashlib

SPOTIFY_LOCAL_PREFIX = "sp_local_"
APPLE_UPLOADED_PREFIX = "am_uploaded_"


def content_hash(name: str, album: str, artist: str) -> str:
    """sha256 over name, album and artist. Fields are NUL-separated so shifts don't collide."""
    raw = "\x00".join((name, album, artist))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def local_track_id(prefix: str, name: str, album: str, artist: str) -> str:
    return f"{prefix}{content_hash(name, album, artist or 'Unknown Artist')}"
