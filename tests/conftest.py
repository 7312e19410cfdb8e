"""
Shared fixtures: track / snapshot factories, a steppable clock and an in-process fake PDS.
Run with: pytest tests/
"""
from typing import Optional

import pytest
from aiohttp import web

from playstamp.services.models import Artist, ProviderLink, RepoSession, Snapshot, Track, User
from playstamp.services.storage import MemoryStore
from playstamp.services.tracker import PlaybackStateTracker


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_track(
    name: str = "Song",
    url: str = "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC",
    duration_ms: int = 240_000,
    progress_ms: int = 0,
    artists=("Artist",),
    **kwargs,
) -> Track:
    return Track(
        name=name,
        artists=tuple(Artist(name=a) for a in artists),
        url=url,
        duration_ms=duration_ms,
        progress_ms=progress_ms,
        **kwargs,
    )


def playing(track: Optional[Track]) -> Snapshot:
    return Snapshot(track=track, is_playing=True)


def paused(track: Optional[Track]) -> Snapshot:
    return Snapshot(track=track, is_playing=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock) -> PlaybackStateTracker:
    return PlaybackStateTracker(clock=clock)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def user(store) -> User:
    return store.add_user(
        User(
            id=1,
            name="alice",
            api_key="secret-key",
            links={"spotify": ProviderLink(access_token="tok", refresh_token="refresh")},
        )
    )


# ── Fake PDS ─────────────────────────────────────────────────────────────────


class FakePDS:
    """Minimal com.atproto.repo.* implementation with cid-based swaps."""

    def __init__(self):
        self.status = None  # (cid, record)
        self.plays = []
        self.puts = []
        self.force_conflicts = 0
        self._seq = 0

    def _next_cid(self) -> str:
        self._seq += 1
        return f"bafy{self._seq}"

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/xrpc/com.atproto.repo.getRecord", self.get_record)
        app.router.add_post("/xrpc/com.atproto.repo.putRecord", self.put_record)
        app.router.add_post("/xrpc/com.atproto.repo.createRecord", self.create_record)
        return app

    async def get_record(self, request: web.Request) -> web.Response:
        if self.status is None:
            return web.json_response({"error": "RecordNotFound", "message": "Could not locate record"}, status=400)
        cid, record = self.status
        return web.json_response({"uri": "at://did/self", "cid": cid, "value": record})

    async def put_record(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.puts.append(body)
        current = self.status[0] if self.status else None
        if self.force_conflicts > 0:
            self.force_conflicts -= 1
            self.status = (self._next_cid(), {"changed": True})
            return web.json_response({"error": "InvalidSwap", "message": "Record was at x"}, status=400)
        if body.get("swapRecord") != current:
            return web.json_response({"error": "InvalidSwap", "message": "Record was at x"}, status=400)
        cid = self._next_cid()
        self.status = (cid, body["record"])
        return web.json_response({"uri": "at://did/fm.teal.alpha.actor.status/self", "cid": cid})

    async def create_record(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.plays.append(body)
        return web.json_response({"uri": f"at://did/fm.teal.alpha.feed.play/{len(self.plays)}", "cid": self._next_cid()})


@pytest.fixture
def fake_pds() -> FakePDS:
    return FakePDS()


def repo_session(base_url: str) -> RepoSession:
    return RepoSession(did="did:plc:alice", service_endpoint=base_url, access_token="pds-token")


class RecordingPublisher:
    """Stands in for RepositoryPublisher and records every call."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.calls = []
        self.fail_with = fail_with

    async def publish_now_playing(self, user_id, track: Track) -> None:
        self.calls.append(("publish", user_id, track.name))
        if self.fail_with is not None:
            raise self.fail_with

    async def clear_now_playing(self, user_id) -> None:
        self.calls.append(("clear", user_id, None))
        if self.fail_with is not None:
            raise self.fail_with

    async def submit_play(self, user_id, track: Track) -> Optional[str]:
        self.calls.append(("play", user_id, track.name))
        if self.fail_with is not None:
            raise self.fail_with
        return f"at://did:plc:test/fm.teal.alpha.feed.play/{len(self.calls)}"

    def kinds(self, user_id=None):
        return [kind for kind, uid, _ in self.calls if user_id is None or uid == user_id]
