"""
Stamped-play pipeline shared by the poll scheduler and the ingestion API:
hydrate (best effort) → save → submit to the user's repository.
"""
import asyncio
import logging
from typing import Hashable, Optional

import aiohttp

from playstamp.services.models import Track
from playstamp.services.musicbrainz import MetadataError, MetadataResolver
from playstamp.services import records
from playstamp.services.publisher import PublishError, RepositoryPublisher
from playstamp.services.storage import Store
from playstamp.utils.http_client import HttpError

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (HttpError, aiohttp.ClientError, asyncio.TimeoutError)


class PlayRecorder:
    def __init__(
        self,
        store: Store,
        publisher: RepositoryPublisher,
        resolver: Optional[MetadataResolver] = None,
    ):
        self._store = store
        self._publisher = publisher
        self._resolver = resolver

    async def hydrate(self, track: Track) -> Track:
        """Canonical ids when the resolver finds a match; the input track otherwise."""
        if self._resolver is None or track.recording_mbid:
            return track
        try:
            return await self._resolver.hydrate(track)
        except (MetadataError, *NETWORK_ERRORS) as exc:
            logger.info(
                "Hydration failed, keeping original track",
                extra={"track": track.display_name, "error": str(exc)},
            )
            return track

    async def record(self, user_id: Hashable, track: Track) -> int:
        """Persist a stamped play and submit it. Submission failures are logged, not raised.

        Raises InvalidTrackError, before anything is saved, for a track no record can carry.
        """
        records.validate_track(track)
        track = await self.hydrate(track)
        track = track.evolve(has_stamped=True)
        play_id = self._store.save_track(user_id, track)
        logger.info(
            "Play saved",
            extra={"user_id": user_id, "play_id": play_id, "track": track.display_name},
        )

        try:
            await self._publisher.submit_play(user_id, track)
        except (PublishError, *NETWORK_ERRORS) as exc:
            logger.warning(
                "Play submission failed",
                extra={"user_id": user_id, "track": track.display_name, "error": str(exc)},
            )
        return play_id
