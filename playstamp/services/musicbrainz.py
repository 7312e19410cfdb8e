"""
MusicBrainz metadata resolver.
- Cleans noisy titles / artists before searching
- Shared 1 req/s token bucket and TTL cache (keyed by query, not by user)
- Canonical release selection among a recording's releases
- Hydration of provider tracks with canonical ids
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

import aiohttp

from playstamp.services.cache import TTLCache
from playstamp.services.cleaner import MetadataCleaner
from playstamp.services.models import Artist, Track
from playstamp.utils.http_client import DEFAULT_POLICY, RetryPolicy, fetch_json
from playstamp.utils.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


class MetadataError(Exception):
    pass


class SearchParamsMissing(MetadataError):
    """No search parameter was supplied."""


class NoResults(MetadataError):
    """The search returned no recordings."""


@dataclass(frozen=True)
class SearchParams:
    track: str = ""
    artist: str = ""
    release: str = ""
    isrc: str = ""

    def is_empty(self) -> bool:
        return not (self.track or self.artist or self.release or self.isrc)


@dataclass(frozen=True)
class ArtistCredit:
    name: str
    artist_id: str
    artist_name: str = ""
    joinphrase: str = ""


@dataclass(frozen=True)
class ReleaseGroup:
    id: str
    title: str = ""
    primary_type: str = ""
    secondary_types: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Release:
    id: str
    title: str
    status: str = ""
    date: str = ""  # YYYY-MM-DD, YYYY-MM or YYYY
    country: str = ""
    release_group: Optional[ReleaseGroup] = None

    @property
    def is_official_album(self) -> bool:
        """Official (or unknown) status and, when typed, a plain Album release group."""
        if self.status and self.status != "Official":
            return False
        if self.release_group is not None:
            if self.release_group.primary_type != "Album":
                return False
            if self.release_group.secondary_types:
                return False
        return True


@dataclass(frozen=True)
class Recording:
    id: str
    title: str
    length: int = 0  # ms
    isrcs: Tuple[str, ...] = ()
    artist_credit: Tuple[ArtistCredit, ...] = ()
    releases: Tuple[Release, ...] = field(default_factory=tuple)


def build_search_query(params: SearchParams) -> str:
    parts = []
    if params.isrc:
        parts.append(f'isrc:"{params.isrc}"')
    if params.track:
        parts.append(f'recording:"{params.track}"')
    if params.artist:
        parts.append(f'artist:"{params.artist}"')
    if params.release:
        parts.append(f'release:"{params.release}"')
    return " AND ".join(parts)


def build_search_endpoint(base_url: str, query: str) -> str:
    return f"{base_url.rstrip('/')}/recording?query={quote_plus(query)}&fmt=json&inc=artists+releases+isrcs"


def cache_key(params: SearchParams) -> str:
    return (
        f"track={quote_plus(params.track)}&artist={quote_plus(params.artist)}"
        f"&release={quote_plus(params.release)}&isrc={quote_plus(params.isrc)}"
    )


def _release_sort_key(release: Release):
    # valid dates first, then date, title, id
    return (len(release.date) < 4, release.date, release.title, release.id)


def get_best_release(
    releases: Sequence[Release],
    track_title: str,
    expected_album: str = "",
    preferred_countries: Sequence[str] = ("XW", "US"),
) -> Optional[Release]:
    if not releases:
        return None
    if len(releases) == 1:
        return releases[0]

    ordered = sorted(releases, key=_release_sort_key)
    expected = expected_album.strip().lower()

    if expected:
        for release in ordered:
            title = release.title.strip().lower()
            if title.startswith(expected) and release.is_official_album:
                return release

    rules = (
        lambda r: r.country in preferred_countries and r.title != track_title and r.is_official_album,
        lambda r: r.title != track_title and r.is_official_album,
        lambda r: r.title != track_title and r.status == "Official",
        lambda r: r.title != track_title,
    )
    for rule in rules:
        for release in ordered:
            if rule(release):
                return release

    logger.info(
        "No suitable release, picking oldest",
        extra={"track": track_title, "release": ordered[0].title, "release_id": ordered[0].id},
    )
    return ordered[0]


class MetadataResolver:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str,
        user_agent: str,
        limiter: TokenBucket,
        cache: TTLCache,
        cleaner: MetadataCleaner,
        preferred_countries: Sequence[str] = ("XW", "US"),
        policy: RetryPolicy = DEFAULT_POLICY,
    ):
        self._session = session
        self._base_url = base_url
        self._user_agent = user_agent
        self._limiter = limiter
        self._cache = cache
        self._cleaner = cleaner
        self._preferred_countries = tuple(preferred_countries)
        self._policy = policy

    async def search(self, params: SearchParams) -> List[Recording]:
        if params.is_empty():
            raise SearchParamsMissing(
                "at least one search parameter (track, artist, release, isrc) must be provided"
            )

        track, _ = self._cleaner.clean_recording(params.track)
        artist, _ = self._cleaner.clean_artist(params.artist)
        params = SearchParams(track=track, artist=artist, release=params.release, isrc=params.isrc)

        key = cache_key(params)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("MusicBrainz cache hit", extra={"key": key})
            return cached

        endpoint = build_search_endpoint(self._base_url, build_search_query(params))
        await self._limiter.acquire()
        data = await fetch_json(
            self._session,
            endpoint,
            headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            policy=self._policy,
        )
        recordings = [_parse_recording(r) for r in (data or {}).get("recordings") or []]
        self._cache.set(key, recordings)
        logger.info("MusicBrainz search", extra={"key": key, "results": len(recordings)})
        return recordings

    def best_release(self, releases: Sequence[Release], track_title: str, expected_album: str = ""):
        return get_best_release(releases, track_title, expected_album, self._preferred_countries)

    async def hydrate(self, track: Track) -> Track:
        """Return a copy of `track` carrying canonical ids. Raises NoResults."""
        params = SearchParams(
            track=track.name,
            artist=", ".join(a.name for a in track.artists),
            release=track.album,
            isrc=track.isrc,
        )
        results = await self.search(params)
        if not results:
            raise NoResults(f"no recordings found for {track.display_name}")

        first = results[0]
        release = self.best_release(first.releases, first.title, track.album)
        artists = tuple(
            Artist(name=c.name, id=c.artist_id, mbid=c.artist_id or None) for c in first.artist_credit
        )

        return track.evolve(
            artists=artists or track.artists,
            recording_mbid=first.id,
            isrc=track.isrc or (first.isrcs[0] if first.isrcs else ""),
            duration_ms=first.length or track.duration_ms,
            album=release.title if release else track.album,
            release_mbid=release.id if release else track.release_mbid,
        )


def _parse_recording(data: dict) -> Recording:
    return Recording(
        id=data.get("id", ""),
        title=data.get("title", ""),
        length=int(data.get("length") or 0),
        isrcs=tuple(data.get("isrcs") or ()),
        artist_credit=tuple(
            ArtistCredit(
                name=c.get("name") or (c.get("artist") or {}).get("name", ""),
                artist_id=(c.get("artist") or {}).get("id", ""),
                artist_name=(c.get("artist") or {}).get("name", ""),
                joinphrase=c.get("joinphrase", ""),
            )
            for c in data.get("artist-credit") or ()
        ),
        releases=tuple(_parse_release(r) for r in data.get("releases") or ()),
    )


def _parse_release(data: dict) -> Release:
    group = data.get("release-group")
    return Release(
        id=data.get("id", ""),
        title=data.get("title", ""),
        status=data.get("status") or "",
        date=data.get("date") or "",
        country=data.get("country") or "",
        release_group=ReleaseGroup(
            id=group.get("id", ""),
            title=group.get("title", ""),
            primary_type=group.get("primary-type") or "",
            secondary_types=tuple(group.get("secondary-types") or ()),
        )
        if group
        else None,
    )
