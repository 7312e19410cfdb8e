"""plyr.fm adapter: public now-playing lookup by handle, no credentials."""
import logging
from typing import Optional

import aiohttp

from playstamp.services.models import Artist, Snapshot, Track, User
from playstamp.services.providers.base import TRANSPORT_ERRORS, ProviderAdapter
from playstamp.utils.http_client import DEFAULT_POLICY, RetryPolicy, fetch_json
from playstamp.utils.urls import service_domain

logger = logging.getLogger(__name__)

PLYRFM_DOMAIN = "plyr.fm"


class PlyrFMAdapter(ProviderAdapter):
    name = "plyrfm"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        api_base: str = "https://api.plyr.fm",
        policy: RetryPolicy = DEFAULT_POLICY,
    ):
        super().__init__(session, policy)
        self._api_base = api_base.rstrip("/")

    async def fetch_snapshot(self, user: User) -> Optional[Snapshot]:
        link = self.link_for(user)
        try:
            data = await fetch_json(
                self._session,
                f"{self._api_base}/now-playing/by-handle/{link.handle}",
                policy=self._policy,
            )
        except TRANSPORT_ERRORS as exc:
            raise self.translate(exc) from exc

        if not data:
            return None
        return Snapshot(track=_parse_track(data), is_playing=bool(data.get("is_playing")))


def _parse_track(data: dict) -> Optional[Track]:
    if not data.get("track_name") or not data.get("artist_name"):
        return None
    base_url = data.get("service_base_url") or ""
    return Track(
        name=data["track_name"],
        artists=(Artist(name=data["artist_name"]),),
        album=data.get("album_name") or "",
        url=data.get("track_url") or "",
        source_id=f"plyrfm:{data['track_id']}" if data.get("track_id") is not None else "",
        duration_ms=int(data.get("duration_ms") or 0),
        progress_ms=int(data.get("progress_ms") or 0),
        service=service_domain(base_url) or base_url or PLYRFM_DOMAIN,
    )
