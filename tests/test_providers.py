"""
Tests for provider payload parsing and the HTTP behaviour of each adapter.
Run with: pytest tests/
"""
import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from conftest import FakeClock
from playstamp.services.models import ProviderLink, User
from playstamp.services.providers import (
    AppleMusicAdapter,
    LastFMAdapter,
    PlyrFMAdapter,
    ProviderUnauthorized,
    ProviderUnavailable,
    SpotifyAdapter,
)
from playstamp.services.providers import applemusic, lastfm, plyrfm, spotify
from playstamp.services.tracker import PlaybackStateTracker
from playstamp.utils.rate_limiter import TokenBucket

SPOTIFY_ITEM = {
    "is_playing": True,
    "progress_ms": 42000,
    "item": {
        "name": "Song",
        "duration_ms": 240000,
        "artists": [{"name": "Artist", "id": "a1"}, {"name": "Guest", "id": "a2"}],
        "album": {"name": "The Album"},
        "external_urls": {"spotify": "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"},
        "external_ids": {"isrc": "USUM71801197"},
    },
}


class TestSpotifyParsing:
    def test_track(self):
        track = spotify._parse_track(SPOTIFY_ITEM)
        assert track.name == "Song"
        assert [a.name for a in track.artists] == ["Artist", "Guest"]
        assert track.album == "The Album"
        assert track.url == "https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"
        assert track.duration_ms == 240000
        assert track.progress_ms == 42000
        assert track.service == "open.spotify.com"
        assert track.isrc == "USUM71801197"

    def test_local_file_gets_hash_identity(self):
        data = {
            "item": {
                "name": "Demo",
                "is_local": True,
                "artists": [{"name": "Me"}],
                "album": {"name": "Tapes"},
                "external_urls": {},
            }
        }
        track = spotify._parse_track(data)
        assert track.url.startswith("sp_local_")
        assert track.url == spotify._parse_track(data).url

    def test_episode_without_artists(self):
        assert spotify._parse_track({"item": {"name": "Podcast", "artists": []}}) is None


class TestLastFMParsing:
    def test_now_playing(self):
        snap = lastfm._parse_item({
            "name": "Song",
            "artist": {"#text": "Artist", "mbid": "art-1"},
            "album": {"#text": "The Album"},
            "url": "https://www.last.fm/music/Artist/_/Song",
            "@attr": {"nowplaying": "true"},
        })
        assert snap.is_playing
        assert not snap.completed
        assert snap.track.artists[0].mbid == "art-1"
        assert snap.track.album == "The Album"
        assert snap.track.service == "last.fm"

    def test_scrobble_is_completed(self):
        snap = lastfm._parse_item({
            "name": "Song",
            "artist": {"#text": "Artist", "mbid": ""},
            "url": "https://www.last.fm/music/Artist/_/Song",
            "date": {"uts": "1704110400"},
        })
        assert snap.completed
        assert not snap.is_playing
        assert snap.track.timestamp.year == 2024
        assert snap.track.artists[0].mbid is None

    def test_missing_artist(self):
        assert lastfm._parse_item({"name": "Song", "artist": {"#text": ""}}) is None

    def test_repeat_scrobbles_each_stamped(self):
        tracker = PlaybackStateTracker(clock=FakeClock())
        base = {
            "name": "Song",
            "artist": {"#text": "Artist"},
            "url": "https://www.last.fm/music/Artist/_/Song",
        }
        feed = [
            {**base, "@attr": {"nowplaying": "true"}},
            {**base, "date": {"uts": "1700000000"}},
            {**base, "@attr": {"nowplaying": "true"}},
            {**base, "date": {"uts": "1700000200"}},
            {**base, "date": {"uts": "1700000200"}},
        ]
        stamps = [tracker.advance((1, "lastfm"), lastfm._parse_item(item)).stamp for item in feed]
        stamped = [s.timestamp.timestamp() for s in stamps if s is not None]
        assert stamped == [1700000000, 1700000200]


class TestAppleMusicParsing:
    def test_history_entry(self):
        track = applemusic._parse_track({
            "attributes": {
                "name": "Song",
                "artistName": "Artist",
                "albumName": "The Album",
                "durationInMillis": 200000,
                "url": "https://music.apple.com/us/album/1?i=2",
                "isrc": "USUM71801197",
            }
        })
        assert track.progress_ms == track.duration_ms == 200000
        assert track.service == "music.apple.com"
        assert track.isrc == "USUM71801197"

    def test_uploaded_track_gets_hash_identity(self):
        track = applemusic._parse_track({"attributes": {"name": "Song", "artistName": "Artist"}})
        assert track.url.startswith("am_uploaded_")

    def test_blank_name(self):
        assert applemusic._parse_track({"attributes": {"name": " ", "artistName": "Artist"}}) is None


class TestPlyrFMParsing:
    def test_track(self):
        track = plyrfm._parse_track({
            "track_name": "Song",
            "artist_name": "Artist",
            "track_url": "https://plyr.fm/track/1",
            "duration_ms": 180000,
            "progress_ms": 1000,
            "service_base_url": "https://plyr.fm",
        })
        assert track.service == "plyr.fm"
        assert track.progress_ms == 1000

    def test_default_service(self):
        track = plyrfm._parse_track({"track_name": "Song", "artist_name": "Artist"})
        assert track.service == "plyr.fm"

    def test_track_id_identifies_tracks_without_url(self):
        first = plyrfm._parse_track({"track_name": "Song", "artist_name": "Artist", "track_id": 7})
        second = plyrfm._parse_track({"track_name": "Other", "artist_name": "Artist", "track_id": 8})
        assert first.url == ""
        assert first.identity == "plyrfm:7"
        assert first.identity != second.identity

    def test_url_preferred_over_track_id(self):
        track = plyrfm._parse_track({
            "track_name": "Song",
            "artist_name": "Artist",
            "track_id": 7,
            "track_url": "https://plyr.fm/track/7",
        })
        assert track.identity == "https://plyr.fm/track/7"


def _spotify_user(store, access_token="tok", refresh_token="refresh") -> User:
    return store.add_user(
        User(id=1, links={"spotify": ProviderLink(access_token=access_token, refresh_token=refresh_token)})
    )


def _spotify_app(calls, status=200, token_status=200) -> web.Application:
    async def currently_playing(request):
        calls.append(("player", request.headers.get("Authorization")))
        if status == 204:
            return web.Response(status=204)
        if status != 200:
            return web.json_response({"error": {"status": status}}, status=status)
        return web.json_response(SPOTIFY_ITEM)

    async def token(request):
        form = await request.post()
        calls.append(("token", request.headers.get("Authorization"), form.get("grant_type")))
        if token_status != 200:
            return web.json_response({"error": "invalid_grant"}, status=token_status)
        return web.json_response({"access_token": "new-token", "refresh_token": "new-refresh"})

    app = web.Application()
    app.router.add_get("/v1/me/player/currently-playing", currently_playing)
    app.router.add_post("/api/token", token)
    return app


def _spotify_adapter(session, server, store) -> SpotifyAdapter:
    return SpotifyAdapter(
        session,
        store,
        client_id="client",
        client_secret="secret",
        api_base=str(server.make_url("/v1")),
        token_url=str(server.make_url("/api/token")),
    )


class TestSpotifyAdapter:
    @pytest.mark.asyncio
    async def test_playing(self, store):
        user = _spotify_user(store)
        calls = []
        async with TestServer(_spotify_app(calls)) as server, aiohttp.ClientSession() as session:
            snap = await _spotify_adapter(session, server, store).fetch_snapshot(user)

        assert snap.is_playing
        assert snap.track.name == "Song"
        assert calls == [("player", "Bearer tok")]

    @pytest.mark.asyncio
    async def test_nothing_playing(self, store):
        user = _spotify_user(store)
        async with TestServer(_spotify_app([], status=204)) as server, aiohttp.ClientSession() as session:
            assert await _spotify_adapter(session, server, store).fetch_snapshot(user) is None

    @pytest.mark.asyncio
    async def test_expired_token(self, store):
        user = _spotify_user(store)
        async with TestServer(_spotify_app([], status=401)) as server, aiohttp.ClientSession() as session:
            with pytest.raises(ProviderUnauthorized):
                await _spotify_adapter(session, server, store).fetch_snapshot(user)

    @pytest.mark.asyncio
    async def test_upstream_failure(self, store):
        user = _spotify_user(store)
        async with TestServer(_spotify_app([], status=503)) as server, aiohttp.ClientSession() as session:
            with pytest.raises(ProviderUnavailable):
                await _spotify_adapter(session, server, store).fetch_snapshot(user)

    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized(self, store):
        user = _spotify_user(store, access_token=None)
        adapter = SpotifyAdapter(None, store, client_id="c", client_secret="s")
        with pytest.raises(ProviderUnauthorized):
            await adapter.fetch_snapshot(user)

    @pytest.mark.asyncio
    async def test_refresh_stores_new_tokens(self, store):
        user = _spotify_user(store)
        calls = []
        async with TestServer(_spotify_app(calls)) as server, aiohttp.ClientSession() as session:
            assert await _spotify_adapter(session, server, store).refresh_credentials(user)

        kind, auth, grant = calls[0]
        assert kind == "token"
        assert auth.startswith("Basic ")
        assert grant == "refresh_token"
        link = store.get_user(1).link("spotify")
        assert link.access_token == "new-token"
        assert link.refresh_token == "new-refresh"

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, store):
        user = _spotify_user(store)
        async with TestServer(_spotify_app([], token_status=400)) as server, aiohttp.ClientSession() as session:
            assert not await _spotify_adapter(session, server, store).refresh_credentials(user)
        assert store.get_user(1).link("spotify").access_token == "tok"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, store):
        user = _spotify_user(store, refresh_token=None)
        adapter = SpotifyAdapter(None, store, client_id="c", client_secret="s")
        assert not await adapter.refresh_credentials(user)


class TestLastFMAdapter:
    @pytest.mark.asyncio
    async def test_recent_track(self):
        seen = []

        async def recent(request):
            seen.append(dict(request.query))
            return web.json_response({
                "recenttracks": {
                    "track": [{
                        "name": "Song",
                        "artist": {"#text": "Artist"},
                        "url": "https://www.last.fm/music/Artist/_/Song",
                        "@attr": {"nowplaying": "true"},
                    }]
                }
            })

        app = web.Application()
        app.router.add_get("/2.0/", recent)
        user = User(id=1, links={"lastfm": ProviderLink(handle="rj")})
        async with TestServer(app) as server, aiohttp.ClientSession() as session:
            adapter = LastFMAdapter(
                session, api_key="key", limiter=TokenBucket(rate=100), api_base=str(server.make_url("/2.0/"))
            )
            snap = await adapter.fetch_snapshot(user)

        assert snap.is_playing
        assert seen[0]["method"] == "user.getrecenttracks"
        assert seen[0]["user"] == "rj"
        assert seen[0]["limit"] == "1"

    @pytest.mark.asyncio
    async def test_api_error(self):
        async def recent(request):
            return web.json_response({"error": 29, "message": "Rate limit exceeded"})

        app = web.Application()
        app.router.add_get("/2.0/", recent)
        user = User(id=1, links={"lastfm": ProviderLink(handle="rj")})
        async with TestServer(app) as server, aiohttp.ClientSession() as session:
            adapter = LastFMAdapter(
                session, api_key="key", limiter=TokenBucket(rate=100), api_base=str(server.make_url("/2.0/"))
            )
            with pytest.raises(ProviderUnavailable):
                await adapter.fetch_snapshot(user)


class TestAppleMusicAdapter:
    @pytest.mark.asyncio
    async def test_recently_played(self):
        seen = []

        async def played(request):
            seen.append((request.headers.get("Authorization"), request.headers.get("Music-User-Token")))
            return web.json_response({"data": [{"attributes": {"name": "Song", "artistName": "Artist"}}]})

        app = web.Application()
        app.router.add_get("/v1/me/recent/played/tracks", played)
        user = User(id=1, links={"applemusic": ProviderLink(access_token="mut")})
        async with TestServer(app) as server, aiohttp.ClientSession() as session:
            adapter = AppleMusicAdapter(session, developer_token="dev", api_base=str(server.make_url("/v1")))
            snap = await adapter.fetch_snapshot(user)

        assert snap.completed
        assert seen == [("Bearer dev", "mut")]

    @pytest.mark.asyncio
    async def test_unlinked_user(self):
        adapter = AppleMusicAdapter(None, developer_token="dev")
        with pytest.raises(ProviderUnauthorized):
            await adapter.fetch_snapshot(User(id=1))


class TestPlyrFMAdapter:
    @pytest.mark.asyncio
    async def test_by_handle(self):
        async def now_playing(request):
            assert request.match_info["handle"] == "alice.bsky.social"
            return web.json_response({
                "track_name": "Song",
                "artist_name": "Artist",
                "track_url": "https://plyr.fm/track/1",
                "is_playing": True,
            })

        app = web.Application()
        app.router.add_get("/now-playing/by-handle/{handle}", now_playing)
        user = User(id=1, links={"plyrfm": ProviderLink(handle="alice.bsky.social")})
        async with TestServer(app) as server, aiohttp.ClientSession() as session:
            adapter = PlyrFMAdapter(session, api_base=str(server.make_url("/")))
            snap = await adapter.fetch_snapshot(user)

        assert snap.is_playing
        assert snap.track.url == "https://plyr.fm/track/1"
