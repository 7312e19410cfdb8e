"""
HTTP handlers (aiohttp.web).
- POST /1/submit-listens     → ListenBrainz-compatible ingestion
- GET  /1/validate-token     → ListenBrainz token check (scrobbler apps call this)
- GET  /api/current-track    → tracker view of what the user is playing
- GET  /api/history          → recent saved plays
- GET  /api/musicbrainz/search
"""
import dataclasses
import logging
from typing import Optional

from aiohttp import web

from playstamp.services.ingestion import IngestionService, SubmissionError
from playstamp.services.models import Track, User
from playstamp.services.musicbrainz import MetadataResolver, SearchParams, SearchParamsMissing
from playstamp.services.plays import NETWORK_ERRORS
from playstamp.services.storage import Store
from playstamp.services.tracker import PlaybackStateTracker
from playstamp.utils.rate_limiter import RateLimiter, RateLimitExceeded

logger = logging.getLogger(__name__)

STORE = web.AppKey("store", object)
INGESTION = web.AppKey("ingestion", IngestionService)
TRACKER = web.AppKey("tracker", PlaybackStateTracker)
RESOLVER = web.AppKey("resolver", object)
INGEST_LIMITER = web.AppKey("ingest_limiter", RateLimiter)

_HISTORY_DEFAULT = 20
_HISTORY_MAX = 200

routes = web.RouteTableDef()


def create_app(
    store: Store,
    ingestion: IngestionService,
    tracker: PlaybackStateTracker,
    resolver: Optional[MetadataResolver],
    limiter: RateLimiter,
) -> web.Application:
    app = web.Application()
    app[STORE] = store
    app[INGESTION] = ingestion
    app[TRACKER] = tracker
    app[RESOLVER] = resolver
    app[INGEST_LIMITER] = limiter
    app.add_routes(routes)
    return app


# ── Helpers ──────────────────────────────────────────────────────────────────


def extract_api_key(request: web.Request) -> str:
    """`Authorization: Token <key>` (or Bearer), falling back to ?api_key=."""
    header = request.headers.get("Authorization", "")
    parts = header.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() in ("token", "bearer"):
        return parts[1].strip()
    return request.query.get("api_key", "").strip()


def _authenticate(request: web.Request) -> Optional[User]:
    return request.app[STORE].get_user_by_api_key(extract_api_key(request))


def _unauthorized() -> web.Response:
    return web.json_response({"error": "Unauthorized"}, status=401)


def track_to_json(track: Track) -> dict:
    return {
        "name": track.name,
        "artists": [{"name": a.name, "id": a.id, "mbid": a.mbid} for a in track.artists],
        "album": track.album,
        "url": track.url,
        "duration_ms": track.duration_ms,
        "progress_ms": track.progress_ms,
        "service": track.service,
        "isrc": track.isrc or None,
        "recording_mbid": track.recording_mbid,
        "release_mbid": track.release_mbid,
        "timestamp": track.timestamp.isoformat() if track.timestamp else None,
        "has_stamped": track.has_stamped,
        "play_id": track.play_id,
    }


# ── ListenBrainz API ─────────────────────────────────────────────────────────


@routes.post("/1/submit-listens")
async def submit_listens(request: web.Request) -> web.Response:
    user = _authenticate(request)
    if user is None:
        return _unauthorized()

    # ── Rate limit ───────────────────────────────────────────────────────────
    try:
        request.app[INGEST_LIMITER].check(user.id)
    except RateLimitExceeded as exc:
        return web.json_response(
            {"error": str(exc)},
            status=429,
            headers={"Retry-After": str(max(1, int(exc.retry_after + 0.999)))},
        )

    try:
        body = await request.json()
    except ValueError:
        return web.json_response({"error": "Invalid JSON format"}, status=400)

    try:
        result = await request.app[INGESTION].submit(user, body)
    except SubmissionError as exc:
        return web.json_response({"error": exc.message}, status=exc.status)

    return web.json_response(result.as_dict(), status=400 if result.failed else 200)


@routes.get("/1/validate-token")
async def validate_token(request: web.Request) -> web.Response:
    key = extract_api_key(request)
    if not key:
        return web.json_response(
            {"code": 400, "message": "you need to specify a token", "valid": False}, status=400
        )

    user = request.app[STORE].get_user_by_api_key(key)
    if user is None:
        return web.json_response({"code": 401, "message": "invalid token", "valid": False}, status=401)

    return web.json_response(
        {"code": 200, "message": "token valid", "valid": True, "user_name": user.name or str(user.id)}
    )


# ── Internal API ─────────────────────────────────────────────────────────────


@routes.get("/api/current-track")
async def current_track(request: web.Request) -> web.Response:
    user = _authenticate(request)
    if user is None:
        return _unauthorized()
    tracks = request.app[TRACKER].current_tracks(user.id)
    return web.json_response({provider: track_to_json(t) for provider, t in sorted(tracks.items())})


@routes.get("/api/history")
async def history(request: web.Request) -> web.Response:
    user = _authenticate(request)
    if user is None:
        return _unauthorized()

    raw = request.query.get("limit", "")
    try:
        limit = int(raw) if raw else _HISTORY_DEFAULT
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)
    limit = min(max(limit, 1), _HISTORY_MAX)

    tracks = request.app[STORE].get_recent_tracks(user.id, limit)
    return web.json_response([track_to_json(t) for t in tracks])


@routes.get("/api/musicbrainz/search")
async def musicbrainz_search(request: web.Request) -> web.Response:
    resolver = request.app[RESOLVER]
    if resolver is None:
        return web.json_response({"error": "MusicBrainz service is not available"}, status=503)

    params = SearchParams(
        track=request.query.get("track", ""),
        artist=request.query.get("artist", ""),
        release=request.query.get("release", ""),
        isrc=request.query.get("isrc", ""),
    )
    try:
        recordings = await resolver.search(params)
    except SearchParamsMissing:
        return web.json_response(
            {"error": "At least one query parameter (track, artist, release, isrc) is required"},
            status=400,
        )
    except NETWORK_ERRORS as exc:
        logger.warning("MusicBrainz search failed", extra={"error": str(exc)})
        return web.json_response({"error": "Failed to search MusicBrainz"}, status=502)

    return web.json_response([dataclasses.asdict(r) for r in recordings])
