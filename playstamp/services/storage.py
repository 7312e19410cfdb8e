"""
Persistence collaborator.
`Store` is the narrow interface the core consumes; `MemoryStore` is the
single-process implementation used by main.py and the tests.
"""
import itertools
import logging
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, Hashable, List, Optional, Protocol

from pydantic import BaseModel, Field, TypeAdapter

from playstamp.services.models import ProviderLink, RepoSession, Track, User

logger = logging.getLogger(__name__)


class Store(Protocol):
    def save_track(self, user_id: Hashable, track: Track) -> int: ...

    def get_recent_tracks(self, user_id: Hashable, limit: int) -> List[Track]: ...

    def get_user(self, user_id: Hashable) -> Optional[User]: ...

    def get_user_by_api_key(self, api_key: str) -> Optional[User]: ...

    def get_user_by_handle(self, provider: str, handle: str) -> Optional[User]: ...

    def linked_users(self, provider: str) -> List[User]: ...

    def update_credentials(
        self,
        user_id: Hashable,
        provider: str,
        access_token: str,
        refresh_token: Optional[str] = None,
    ) -> None: ...

    def mark_reauth_required(self, user_id: Hashable, provider: str) -> None: ...

    def get_repo_session(self, user_id: Hashable) -> Optional[RepoSession]: ...


class MemoryStore:
    def __init__(self) -> None:
        self._users: Dict[Hashable, User] = {}
        self._repo_sessions: Dict[Hashable, RepoSession] = {}
        self._tracks: Dict[Hashable, List[Track]] = defaultdict(list)
        self._play_ids = itertools.count(1)
        self._lock = threading.Lock()

    # ── Seeding (outside the Store interface) ────────────────────────────────

    def add_user(self, user: User, repo: Optional[RepoSession] = None) -> User:
        with self._lock:
            self._users[user.id] = user
            if repo is not None:
                self._repo_sessions[user.id] = repo
        return user

    def set_repo_session(self, user_id: Hashable, repo: Optional[RepoSession]) -> None:
        with self._lock:
            if repo is None:
                self._repo_sessions.pop(user_id, None)
            else:
                self._repo_sessions[user_id] = repo

    # ── Store ────────────────────────────────────────────────────────────────

    def save_track(self, user_id: Hashable, track: Track) -> int:
        with self._lock:
            play_id = next(self._play_ids)
            self._tracks[user_id].append(track.evolve(play_id=play_id))
        logger.debug("Track saved", extra={"user_id": user_id, "play_id": play_id})
        return play_id

    def get_recent_tracks(self, user_id: Hashable, limit: int) -> List[Track]:
        with self._lock:
            tracks = list(self._tracks.get(user_id, ()))
        tracks.sort(key=lambda t: (t.timestamp, t.play_id or 0), reverse=True)
        return tracks[: max(0, limit)]

    def get_user(self, user_id: Hashable) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_api_key(self, api_key: str) -> Optional[User]:
        if not api_key:
            return None
        with self._lock:
            return next((u for u in self._users.values() if u.api_key == api_key), None)

    def get_user_by_handle(self, provider: str, handle: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                link = user.link(provider)
                if link is not None and link.handle == handle:
                    return user
        return None

    def linked_users(self, provider: str) -> List[User]:
        with self._lock:
            users = []
            for user in self._users.values():
                link = user.link(provider)
                if link is not None and not link.reauth_required:
                    users.append(user)
            return users

    def update_credentials(
        self,
        user_id: Hashable,
        provider: str,
        access_token: str,
        refresh_token: Optional[str] = None,
    ) -> None:
        with self._lock:
            user = self._users[user_id]
            link = user.links.setdefault(provider, ProviderLink())
            link.access_token = access_token
            if refresh_token:
                link.refresh_token = refresh_token
            link.reauth_required = False

    def mark_reauth_required(self, user_id: Hashable, provider: str) -> None:
        with self._lock:
            user = self._users.get(user_id)
            link = user.link(provider) if user else None
            if link is None:
                return
            link.access_token = None
            link.reauth_required = True
        logger.warning("Provider link needs re-authentication", extra={"user_id": user_id, "provider": provider})

    def get_repo_session(self, user_id: Hashable) -> Optional[RepoSession]:
        with self._lock:
            return self._repo_sessions.get(user_id)


# ── Seed file ────────────────────────────────────────────────────────────────


class _LinkEntry(BaseModel):
    handle: str = ""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


class _RepoEntry(BaseModel):
    did: str
    service_endpoint: str
    access_token: str


class _UserEntry(BaseModel):
    id: int
    name: str = ""
    api_key: Optional[str] = None
    links: Dict[str, _LinkEntry] = Field(default_factory=dict)
    repo: Optional[_RepoEntry] = None


def load_users_file(store: MemoryStore, path: Path) -> int:
    """Seed a MemoryStore from a JSON list of users. Returns how many were loaded."""
    entries = TypeAdapter(List[_UserEntry]).validate_json(path.read_bytes())
    for entry in entries:
        user = User(
            id=entry.id,
            name=entry.name,
            api_key=entry.api_key,
            links={p: ProviderLink(**link.model_dump()) for p, link in entry.links.items()},
        )
        repo = RepoSession(**entry.repo.model_dump()) if entry.repo else None
        store.add_user(user, repo)
    logger.info("Users loaded", extra={"path": str(path), "count": len(entries)})
    return len(entries)
