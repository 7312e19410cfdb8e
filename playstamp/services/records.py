"""
Track → repository record conversion.

Two record kinds share one "play view" shape: the swappable status record
(`fm.teal.alpha.actor.status`, rkey `self`) and the append-only play record
(`fm.teal.alpha.feed.play`).
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from playstamp.services.models import Track

STATUS_COLLECTION = "fm.teal.alpha.actor.status"
PLAY_COLLECTION = "fm.teal.alpha.feed.play"
STATUS_RKEY = "self"


class PublishError(Exception):
    pass


class InvalidTrackError(PublishError):
    """Track cannot be serialised: empty name or no artists."""


def rfc3339(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def validate_track(track: Track) -> None:
    if not track.name.strip():
        raise InvalidTrackError("track name cannot be empty")
    if not track.artists:
        raise InvalidTrackError("track must have at least one artist")


def play_view(track: Track, submission_agent: str) -> Dict[str, Any]:
    """Wire fields for a track. Optional fields are omitted when empty."""
    validate_track(track)
    view: Dict[str, Any] = {
        "trackName": track.name,
        "artists": [_artist(a.name, a.mbid) for a in track.artists],
    }
    if track.duration_ms > 0:
        view["duration"] = track.duration_ms // 1000
    if track.timestamp is not None:
        view["playedTime"] = rfc3339(track.timestamp)
    _put(view, "recordingMbId", track.recording_mbid)
    _put(view, "releaseMbId", track.release_mbid)
    _put(view, "releaseName", track.album)
    _put(view, "isrc", track.isrc)
    if track.url.startswith(("http://", "https://")):
        view["originUrl"] = track.url
    _put(view, "musicServiceBaseDomain", track.service)
    view["submissionClientAgent"] = submission_agent
    return view


def play_record(track: Track, submission_agent: str) -> Dict[str, Any]:
    return {"$type": PLAY_COLLECTION, **play_view(track, submission_agent)}


def status_record(
    track: Track, submission_agent: str, now: datetime, expiry_seconds: int = 600
) -> Dict[str, Any]:
    return {
        "$type": STATUS_COLLECTION,
        "time": rfc3339(now),
        "expiry": rfc3339(now + timedelta(seconds=expiry_seconds)),
        "item": play_view(track, submission_agent),
    }


def cleared_status_record(now: datetime) -> Dict[str, Any]:
    """An already-expired status with an empty item."""
    return {
        "$type": STATUS_COLLECTION,
        "time": rfc3339(now),
        "expiry": rfc3339(now - timedelta(minutes=1)),
        "item": {"trackName": "", "artists": []},
    }


def _artist(name: str, mbid: Optional[str]) -> Dict[str, str]:
    out = {"artistName": name}
    if mbid:
        out["artistMbId"] = mbid
    return out


def _put(view: Dict[str, Any], key: str, value: Optional[str]) -> None:
    if value:
        view[key] = value
