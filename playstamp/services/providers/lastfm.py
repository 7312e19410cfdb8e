"""
Last.fm adapter.
Reads the newest entry of user.getrecenttracks: a now-playing entry becomes a playing
snapshot, a finished scrobble becomes a completed snapshot. All calls share one
5 req/s token bucket.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from playstamp.services.models import Artist, Snapshot, Track, User, utcnow
from playstamp.services.providers.base import TRANSPORT_ERRORS, ProviderAdapter, ProviderUnavailable
from playstamp.utils.http_client import DEFAULT_POLICY, RetryPolicy, fetch_json
from playstamp.utils.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

_API_BASE = "https://ws.audioscrobbler.com/2.0/"
LASTFM_DOMAIN = "last.fm"


class LastFMAdapter(ProviderAdapter):
    name = "lastfm"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        api_key: str,
        limiter: Optional[TokenBucket] = None,
        api_base: str = _API_BASE,
        policy: RetryPolicy = DEFAULT_POLICY,
    ):
        super().__init__(session, policy)
        self._api_key = api_key
        self._limiter = limiter or TokenBucket(rate=5)
        self._api_base = api_base

    async def fetch_snapshot(self, user: User) -> Optional[Snapshot]:
        link = self.link_for(user)
        await self._limiter.acquire()
        try:
            data = await fetch_json(
                self._session,
                self._api_base,
                params={
                    "method": "user.getrecenttracks",
                    "user": link.handle,
                    "api_key": self._api_key,
                    "format": "json",
                    "limit": "1",
                },
                policy=self._policy,
            )
        except TRANSPORT_ERRORS as exc:
            raise self.translate(exc) from exc

        if data and "error" in data:
            raise ProviderUnavailable(self.name, data.get("message", str(data["error"])))

        items = ((data or {}).get("recenttracks") or {}).get("track") or []
        if isinstance(items, dict):
            items = [items]
        if not items:
            return None
        return _parse_item(items[0])


def _text(value) -> str:
    if isinstance(value, dict):
        return value.get("#text") or value.get("name") or ""
    return value or ""


def _parse_item(item: dict) -> Optional[Snapshot]:
    name = item.get("name", "")
    artist = _text(item.get("artist"))
    if not name or not artist:
        return None

    now_playing = (item.get("@attr") or {}).get("nowplaying") == "true"
    played_at = None
    uts = (item.get("date") or {}).get("uts")
    if uts and not now_playing:
        played_at = datetime.fromtimestamp(int(uts), tz=timezone.utc)

    artist_field = item.get("artist")
    mbid = artist_field.get("mbid") if isinstance(artist_field, dict) else None

    track = Track(
        name=name,
        artists=(Artist(name=artist, mbid=mbid or None),),
        album=_text(item.get("album")),
        url=item.get("url", ""),
        service=LASTFM_DOMAIN,
        timestamp=played_at or utcnow(),
    )
    if now_playing:
        return Snapshot(track=track, is_playing=True)
    return Snapshot(track=track, is_playing=False, completed=True, played_at=played_at)
