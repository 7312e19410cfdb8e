from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Artist:
    name: str
    id: str = ""
    mbid: Optional[str] = None


@dataclass(frozen=True)
class Track:
    name: str
    artists: Tuple[Artist, ...]
    album: str = ""
    url: str = ""
    duration_ms: int = 0
    progress_ms: int = 0
    service: str = ""
    isrc: str = ""
    recording_mbid: Optional[str] = None
    release_mbid: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    has_stamped: bool = False
    play_id: Optional[int] = None
    source_id: str = ""  # provider-side id for tracks without a URL

    @property
    def first_artist(self) -> str:
        return self.artists[0].name if self.artists else "Unknown Artist"

    @property
    def display_name(self) -> str:
        return f"{self.first_artist} - {self.name}"

    @property
    def identity(self) -> str:
        """Stable key used to tell one track from the next."""
        return self.url or self.source_id

    def evolve(self, **changes) -> "Track":
        return replace(self, **changes)


@dataclass(frozen=True)
class Snapshot:
    """One poll result. `completed` marks history entries that were already fully played;
    `played_at` is the provider's own play time for such an entry, when it reports one.
    """

    track: Optional[Track]
    is_playing: bool
    completed: bool = False
    played_at: Optional[datetime] = None


# ── Recording identity carried by an ingested listen ─────────────────────────


@dataclass(frozen=True)
class Unidentified:
    pass


@dataclass(frozen=True)
class MbidKnown:
    recording_mbid: str
    isrc: str = ""


@dataclass(frozen=True)
class IsrcKnown:
    isrc: str


RecordingIdentity = Union[Unidentified, MbidKnown, IsrcKnown]


# ── Users and their linked accounts ──────────────────────────────────────────


@dataclass
class ProviderLink:
    handle: str = ""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    reauth_required: bool = False


@dataclass(frozen=True)
class RepoSession:
    did: str
    service_endpoint: str
    access_token: str

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


@dataclass
class User:
    id: int
    name: str = ""
    api_key: Optional[str] = None
    links: Dict[str, ProviderLink] = field(default_factory=dict)

    def link(self, provider: str) -> Optional[ProviderLink]:
        return self.links.get(provider)
