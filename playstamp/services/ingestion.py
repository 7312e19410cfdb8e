"""
ListenBrainz-compatible listen ingestion.
- Whole-request problems (bad listen_type, empty payload) raise SubmissionError
- Item problems are collected per index; valid items still go through
- playing_now items update the status record only; single/import items are saved and submitted
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from playstamp.services.models import (
    Artist,
    IsrcKnown,
    MbidKnown,
    RecordingIdentity,
    Track,
    Unidentified,
    User,
    utcnow,
)
from playstamp.services.plays import NETWORK_ERRORS, PlayRecorder
from playstamp.services.publisher import PublishError, RepositoryPublisher
from playstamp.services.records import InvalidTrackError
from playstamp.utils.urls import SPOTIFY_DOMAIN, URLValidationError, spotify_track_url, validate_url

logger = logging.getLogger(__name__)

LISTEN_TYPES = ("single", "import", "playing_now")
DEFAULT_SERVICE = "listenbrainz"


class SubmissionError(Exception):
    def __init__(self, message: str, status: int = 400):
        self.status = status
        self.message = message
        super().__init__(message)


# ── Wire models ──────────────────────────────────────────────────────────────


class AdditionalInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    recording_mbid: Optional[str] = None
    release_mbid: Optional[str] = None
    artist_mbids: List[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    duration: Optional[int] = None  # seconds
    isrc: Optional[str] = None
    spotify_id: Optional[str] = None
    origin_url: Optional[str] = None
    music_service: Optional[str] = None

    @field_validator("artist_mbids", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


class TrackMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    artist_name: str = ""
    track_name: str = ""
    release_name: Optional[str] = None
    additional_info: AdditionalInfo = Field(default_factory=AdditionalInfo)

    @field_validator("additional_info", mode="before")
    @classmethod
    def none_is_default(cls, v):
        return v or {}


class Listen(BaseModel):
    model_config = ConfigDict(extra="ignore")

    listened_at: Optional[int] = None
    track_metadata: TrackMetadata = Field(default_factory=TrackMetadata)


class Submission(BaseModel):
    listen_type: str = ""
    payload: List[Any] = Field(default_factory=list)


@dataclass
class SubmissionResult:
    processed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors) and self.processed == 0

    def as_dict(self) -> dict:
        body: dict = {"status": "ok", "processed": self.processed}
        if self.errors:
            body["errors"] = self.errors
        return body


# ── Conversion ───────────────────────────────────────────────────────────────


def recording_identity(info: AdditionalInfo) -> RecordingIdentity:
    if info.recording_mbid:
        return MbidKnown(recording_mbid=info.recording_mbid, isrc=info.isrc or "")
    if info.isrc:
        return IsrcKnown(isrc=info.isrc)
    return Unidentified()


def listen_to_track(listen: Listen) -> Track:
    meta = listen.track_metadata
    info = meta.additional_info

    if listen.listened_at:
        timestamp = datetime.fromtimestamp(listen.listened_at, tz=timezone.utc)
    else:
        timestamp = utcnow()

    if info.artist_mbids:
        artists = tuple(Artist(name=meta.artist_name, mbid=m) for m in info.artist_mbids)
    else:
        artists = (Artist(name=meta.artist_name),)

    duration_ms = info.duration_ms or (info.duration or 0) * 1000

    url = _origin_url(info.origin_url)
    service = info.music_service or DEFAULT_SERVICE
    if info.spotify_id:
        url = spotify_track_url(info.spotify_id)
        service = SPOTIFY_DOMAIN

    identity = recording_identity(info)
    recording_mbid = None
    isrc = ""
    if isinstance(identity, MbidKnown):
        recording_mbid, isrc = identity.recording_mbid, identity.isrc
    elif isinstance(identity, IsrcKnown):
        isrc = identity.isrc

    return Track(
        name=meta.track_name,
        artists=artists,
        album=meta.release_name or "",
        url=url,
        duration_ms=max(0, duration_ms),
        service=service,
        isrc=isrc,
        recording_mbid=recording_mbid,
        release_mbid=info.release_mbid or None,
        timestamp=timestamp,
        has_stamped=True,
    )


def _origin_url(raw: Optional[str]) -> str:
    if not raw:
        return ""
    try:
        return validate_url(raw)
    except URLValidationError:
        logger.debug("Dropping unusable origin_url", extra={"origin_url": raw[:200]})
        return ""


def parse_submission(body: Any) -> Submission:
    if not isinstance(body, dict):
        raise SubmissionError("Invalid JSON format")
    try:
        submission = Submission.model_validate(body)
    except ValidationError as exc:
        raise SubmissionError("Invalid JSON format") from exc
    if submission.listen_type not in LISTEN_TYPES:
        raise SubmissionError("Invalid listen_type. Must be 'single', 'import', or 'playing_now'")
    if not submission.payload:
        raise SubmissionError("Payload cannot be empty")
    return submission


# ── Service ──────────────────────────────────────────────────────────────────


class IngestionService:
    def __init__(self, publisher: RepositoryPublisher, recorder: PlayRecorder):
        self._publisher = publisher
        self._recorder = recorder

    async def submit(self, user: User, body: Any) -> SubmissionResult:
        submission = parse_submission(body)
        result = SubmissionResult()

        for i, raw in enumerate(submission.payload):
            track = self._item_track(i, raw, result.errors)
            if track is None:
                continue

            if submission.listen_type == "playing_now":
                await self._publish_now_playing(user, track)
                result.processed += 1
                continue

            try:
                await self._recorder.record(user.id, track)
            except InvalidTrackError as exc:
                result.errors.append(f"payload[{i}]: {exc}")
                continue
            except Exception:
                logger.exception("Failed to save track", extra={"user_id": user.id, "index": i})
                result.errors.append(f"payload[{i}]: failed to save track")
                continue
            result.processed += 1

        logger.info(
            "Listens ingested",
            extra={
                "user_id": user.id,
                "listen_type": submission.listen_type,
                "processed": result.processed,
                "errors": len(result.errors),
            },
        )
        return result

    @staticmethod
    def _item_track(i: int, raw: Any, errors: List[str]) -> Optional[Track]:
        try:
            listen = Listen.model_validate(raw)
        except ValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            errors.append(f"payload[{i}]: {loc or 'item'} is invalid")
            return None

        if not listen.track_metadata.artist_name.strip():
            errors.append(f"payload[{i}]: artist_name is required")
            return None
        if not listen.track_metadata.track_name.strip():
            errors.append(f"payload[{i}]: track_name is required")
            return None

        try:
            return listen_to_track(listen)
        except URLValidationError:
            errors.append(f"payload[{i}]: spotify_id is invalid")
            return None

    async def _publish_now_playing(self, user: User, track: Track) -> None:
        track = await self._recorder.hydrate(track.evolve(has_stamped=False))
        try:
            await self._publisher.publish_now_playing(user.id, track)
        except (PublishError, *NETWORK_ERRORS) as exc:
            logger.warning(
                "Now playing publish failed",
                extra={"user_id": user.id, "track": track.display_name, "error": str(exc)},
            )
