"""
Apple Music adapter.
Apple exposes no now-playing endpoint, only recently played history, so every
snapshot is a completed listen. Uploaded tracks have no URL and are identified
by content hash.
"""
import logging
from typing import Optional

import aiohttp

from playstamp.services.models import Artist, Snapshot, Track, User
from playstamp.services.providers.base import TRANSPORT_ERRORS, ProviderAdapter, ProviderUnauthorized
from playstamp.utils.hashing import APPLE_UPLOADED_PREFIX, local_track_id
from playstamp.utils.http_client import DEFAULT_POLICY, RetryPolicy, fetch_json

logger = logging.getLogger(__name__)

_API_BASE = "https://api.music.apple.com/v1"
APPLE_MUSIC_DOMAIN = "music.apple.com"


class AppleMusicAdapter(ProviderAdapter):
    name = "applemusic"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        developer_token: str,
        api_base: str = _API_BASE,
        policy: RetryPolicy = DEFAULT_POLICY,
    ):
        super().__init__(session, policy)
        self._developer_token = developer_token
        self._api_base = api_base.rstrip("/")

    async def fetch_snapshot(self, user: User) -> Optional[Snapshot]:
        link = self.link_for(user)
        if not link.access_token:
            raise ProviderUnauthorized(self.name, f"user {user.id} has no music user token")

        try:
            data = await fetch_json(
                self._session,
                f"{self._api_base}/me/recent/played/tracks",
                params={"limit": "1"},
                headers={
                    "Authorization": f"Bearer {self._developer_token}",
                    "Music-User-Token": link.access_token,
                },
                policy=self._policy,
            )
        except TRANSPORT_ERRORS as exc:
            raise self.translate(exc) from exc

        items = (data or {}).get("data") or []
        if not items:
            return None
        track = _parse_track(items[0])
        if track is None:
            return None
        return Snapshot(track=track, is_playing=False, completed=True)


def _parse_track(item: dict) -> Optional[Track]:
    attrs = item.get("attributes") or {}
    name = attrs.get("name", "")
    artist = attrs.get("artistName", "")
    if not name.strip() or not artist:
        return None

    album = attrs.get("albumName", "")
    duration = int(attrs.get("durationInMillis") or 0)
    url = attrs.get("url") or local_track_id(APPLE_UPLOADED_PREFIX, name, album, artist)
    return Track(
        name=name,
        artists=(Artist(name=artist),),
        album=album,
        url=url,
        duration_ms=duration,
        progress_ms=duration,  # history entries are whole plays
        service=APPLE_MUSIC_DOMAIN,
        isrc=attrs.get("isrc") or "",
    )
