"""
Spotify adapter.
- Per-user OAuth2 bearer tokens; refresh-token grant with client Basic auth.
- Currently-playing endpoint: 204 means nothing is playing.
- Local files carry no Spotify URL and are identified by content hash.
"""
import logging
from typing import Optional

import aiohttp

from playstamp.services.models import Artist, Snapshot, Track, User
from playstamp.services.providers.base import (
    TRANSPORT_ERRORS,
    ProviderAdapter,
    ProviderUnauthorized,
)
from playstamp.services.storage import Store
from playstamp.utils.hashing import SPOTIFY_LOCAL_PREFIX, local_track_id
from playstamp.utils.http_client import DEFAULT_POLICY, HttpError, RetryPolicy, fetch_json, post_json
from playstamp.utils.urls import SPOTIFY_DOMAIN

logger = logging.getLogger(__name__)

_TOKEN_URL = "https://accounts.spotify.com/api/token"
_API_BASE = "https://api.spotify.com/v1"


class SpotifyAdapter(ProviderAdapter):
    name = "spotify"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        store: Store,
        *,
        client_id: str,
        client_secret: str,
        api_base: str = _API_BASE,
        token_url: str = _TOKEN_URL,
        policy: RetryPolicy = DEFAULT_POLICY,
    ):
        super().__init__(session, policy)
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_base = api_base.rstrip("/")
        self._token_url = token_url

    async def fetch_snapshot(self, user: User) -> Optional[Snapshot]:
        link = self.link_for(user)
        if not link.access_token:
            raise ProviderUnauthorized(self.name, f"user {user.id} has no access token")

        try:
            data = await fetch_json(
                self._session,
                f"{self._api_base}/me/player/currently-playing",
                headers={"Authorization": f"Bearer {link.access_token}"},
                policy=self._policy,
            )
        except TRANSPORT_ERRORS as exc:
            raise self.translate(exc) from exc

        if not data:
            return None
        track = _parse_track(data)
        if track is None:
            return Snapshot(track=None, is_playing=False)
        return Snapshot(track=track, is_playing=bool(data.get("is_playing")))

    async def refresh_credentials(self, user: User) -> bool:
        link = user.link(self.name)
        if link is None or not link.refresh_token:
            return False
        if not self._client_id or not self._client_secret:
            logger.warning("Spotify client credentials not configured, cannot refresh")
            return False

        try:
            payload = await post_json(
                self._session,
                self._token_url,
                data={"grant_type": "refresh_token", "refresh_token": link.refresh_token},
                auth=aiohttp.BasicAuth(self._client_id, self._client_secret),
                policy=self._policy,
            )
        except HttpError as exc:
            logger.warning(
                "Spotify token refresh rejected",
                extra={"user_id": user.id, "status": exc.status},
            )
            return False

        access_token = (payload or {}).get("access_token")
        if not access_token:
            return False
        self._store.update_credentials(
            user.id, self.name, access_token, payload.get("refresh_token")
        )
        link.access_token = access_token
        if payload.get("refresh_token"):
            link.refresh_token = payload["refresh_token"]
        logger.info("Spotify token refreshed", extra={"user_id": user.id})
        return True


def _parse_track(data: dict) -> Optional[Track]:
    item = data.get("item")
    if not item or not item.get("artists"):
        # podcasts / ads carry no artists
        return None

    artists = tuple(Artist(name=a.get("name", ""), id=a.get("id") or "") for a in item["artists"])
    album = (item.get("album") or {}).get("name", "")
    url = (item.get("external_urls") or {}).get("spotify", "")
    if item.get("is_local") or not url:
        url = local_track_id(SPOTIFY_LOCAL_PREFIX, item.get("name", ""), album, artists[0].name)

    return Track(
        name=item.get("name", ""),
        artists=artists,
        album=album,
        url=url,
        duration_ms=int(item.get("duration_ms") or 0),
        progress_ms=int(data.get("progress_ms") or 0),
        service=SPOTIFY_DOMAIN,
        isrc=(item.get("external_ids") or {}).get("isrc", ""),
    )
