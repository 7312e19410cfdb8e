"""
playstamp - Main Entrypoint
Polls linked music services, publishes now-playing status and stamped plays
to each user's repository, and serves the ListenBrainz-compatible ingestion API.
"""
import asyncio
import logging
import sys
from typing import List

import aiohttp
from aiohttp import web

from playstamp.config.settings import Settings, get_settings
from playstamp.handlers import create_app
from playstamp.services.cache import TTLCache
from playstamp.services.cleaner import MetadataCleaner
from playstamp.services.ingestion import IngestionService
from playstamp.services.musicbrainz import MetadataResolver
from playstamp.services.plays import PlayRecorder
from playstamp.services.providers import (
    AppleMusicAdapter,
    LastFMAdapter,
    PlyrFMAdapter,
    ProviderAdapter,
    SpotifyAdapter,
)
from playstamp.services.publisher import RepositoryPublisher
from playstamp.services.scheduler import Scheduler
from playstamp.services.storage import MemoryStore, load_users_file
from playstamp.services.tracker import PlaybackStateTracker
from playstamp.utils.http_client import RetryPolicy, build_session
from playstamp.utils.logging import setup_logging
from playstamp.utils.rate_limiter import RateLimiter, TokenBucket


def build_adapters(
    settings: Settings, session: aiohttp.ClientSession, store: MemoryStore, policy: RetryPolicy
) -> List[ProviderAdapter]:
    adapters: List[ProviderAdapter] = []
    if settings.SPOTIFY_ENABLED:
        adapters.append(
            SpotifyAdapter(
                session,
                store,
                client_id=settings.SPOTIFY_CLIENT_ID,
                client_secret=settings.SPOTIFY_CLIENT_SECRET,
                policy=policy,
            )
        )
    if settings.LASTFM_ENABLED:
        adapters.append(LastFMAdapter(session, api_key=settings.LASTFM_API_KEY, policy=policy))
    if settings.APPLE_MUSIC_ENABLED:
        adapters.append(
            AppleMusicAdapter(
                session, developer_token=settings.APPLE_MUSIC_DEVELOPER_TOKEN, policy=policy
            )
        )
    if settings.PLYRFM_ENABLED:
        adapters.append(PlyrFMAdapter(session, api_base=settings.PLYRFM_API_BASE_URL, policy=policy))
    return adapters


async def main() -> None:
    settings = get_settings()
    setup_logging(settings.ENV, settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    store = MemoryStore()
    if settings.USERS_FILE is not None:
        load_users_file(store, settings.USERS_FILE)

    policy = RetryPolicy(
        attempts=settings.HTTP_RETRY_ATTEMPTS,
        backoff=settings.HTTP_RETRY_BACKOFF,
        max_redirects=settings.HTTP_MAX_REDIRECTS,
    )
    session = build_session(settings.HTTP_TIMEOUT_SECONDS)

    resolver = MetadataResolver(
        session,
        base_url=settings.MUSICBRAINZ_BASE_URL,
        user_agent=settings.MUSICBRAINZ_USER_AGENT,
        limiter=TokenBucket(rate=settings.MUSICBRAINZ_RATE_PER_SECOND),
        cache=TTLCache(settings.METADATA_CACHE_TTL_SECONDS),
        cleaner=MetadataCleaner(settings.PREFERRED_SCRIPT),
        preferred_countries=settings.preferred_countries,
        policy=policy,
    )
    tracker = PlaybackStateTracker(
        max_skip_delta_ms=settings.MAX_SKIP_DELTA_MS,
        max_delta_ms=settings.MAX_DELTA_MS,
        stamp_min_ms=settings.STAMP_MIN_MS,
    )
    publisher = RepositoryPublisher(
        session,
        store,
        submission_agent=settings.SUBMISSION_AGENT,
        status_expiry_seconds=settings.STATUS_EXPIRY_SECONDS,
        policy=policy,
    )
    recorder = PlayRecorder(store, publisher, resolver)

    schedulers = [
        Scheduler(
            adapter,
            store,
            tracker,
            publisher,
            recorder,
            interval=settings.TRACKER_INTERVAL_SECONDS,
            concurrency=settings.POLL_CONCURRENCY,
        )
        for adapter in build_adapters(settings, session, store, policy)
    ]

    app = create_app(
        store,
        IngestionService(publisher, recorder),
        tracker,
        resolver,
        RateLimiter(settings.INGEST_RATE_LIMIT_REQUESTS, settings.INGEST_RATE_LIMIT_WINDOW_SECONDS),
    )
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.HOST, settings.PORT)

    logger.info(
        "Starting playstamp",
        extra={"env": settings.ENV, "providers": [s.provider for s in schedulers], "port": settings.PORT},
    )
    try:
        await site.start()
        for scheduler in schedulers:
            scheduler.start()
        await asyncio.Event().wait()
    finally:
        for scheduler in schedulers:
            await scheduler.stop()
        await runner.cleanup()
        await session.close()
        logger.info("playstamp stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
