"""
Scheduler: one ticking loop per provider.
  linked users → fetch snapshot → tracker.advance → publish / clear / stamp

Each user is one unit of work. Units run concurrently up to a semaphore bound, a
failing unit is logged and never affects the others, and a user whose previous
unit is still running is skipped for this tick.
"""
import asyncio
import logging
from typing import Hashable, List, Optional, Set

from playstamp.services.models import Snapshot, User
from playstamp.services.plays import NETWORK_ERRORS, PlayRecorder
from playstamp.services.providers.base import ProviderAdapter, ProviderUnauthorized, ProviderUnavailable
from playstamp.services.publisher import PublishError, RepositoryPublisher
from playstamp.services.records import InvalidTrackError
from playstamp.services.storage import Store
from playstamp.services.tracker import Action, PlaybackStateTracker

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        adapter: ProviderAdapter,
        store: Store,
        tracker: PlaybackStateTracker,
        publisher: RepositoryPublisher,
        recorder: PlayRecorder,
        *,
        interval: float = 30.0,
        concurrency: int = 16,
    ):
        self._adapter = adapter
        self._store = store
        self._tracker = tracker
        self._publisher = publisher
        self._recorder = recorder
        self._interval = interval
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._running: Set[Hashable] = set()
        self._cycles: Set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def provider(self) -> str:
        return self._adapter.name

    # ── Loop ─────────────────────────────────────────────────────────────────

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"scheduler:{self.provider}")
        return self._task

    async def run(self) -> None:
        """First cycle immediately, then one per interval. Cycles may overlap."""
        logger.info("Scheduler started", extra={"provider": self.provider, "interval": self._interval})
        while True:
            cycle = asyncio.create_task(self.run_cycle())
            self._cycles.add(cycle)
            cycle.add_done_callback(self._cycles.discard)
            await asyncio.sleep(self._interval)

    async def stop(self) -> None:
        tasks = [t for t in (self._task, *self._cycles) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        logger.info("Scheduler stopped", extra={"provider": self.provider})

    async def run_cycle(self) -> int:
        """One tick over every linked user. Returns the number of units started."""
        users: List[User] = self._store.linked_users(self.provider)
        units = []
        for user in users:
            if user.id in self._running:
                logger.debug(
                    "Previous unit still running, skipping",
                    extra={"user_id": user.id, "provider": self.provider},
                )
                continue
            self._running.add(user.id)
            units.append(self._unit(user))
        if units:
            await asyncio.gather(*units)
        return len(units)

    # ── Per-user unit ────────────────────────────────────────────────────────

    async def _unit(self, user: User) -> None:
        try:
            async with self._semaphore:
                await self.process_user(user)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error", extra={"user_id": user.id, "provider": self.provider})
        finally:
            self._running.discard(user.id)

    async def process_user(self, user: User) -> Action:
        key = (user.id, self.provider)
        try:
            snapshot = await self._fetch(user)
        except ProviderUnauthorized as exc:
            logger.warning(
                "Provider authorization failed",
                extra={"user_id": user.id, "provider": self.provider, "error": str(exc)},
            )
            self._tracker.forget(key)
            return Action()
        except ProviderUnavailable as exc:
            logger.warning(
                "Provider unavailable",
                extra={"user_id": user.id, "provider": self.provider, "error": str(exc)},
            )
            return Action()

        self._prime_from_history(user, snapshot)
        action = self._tracker.advance(key, snapshot)
        await self._execute(user, action)
        return action

    async def _fetch(self, user: User) -> Optional[Snapshot]:
        """Fetch once; on an auth failure refresh the token and fetch once more."""
        try:
            return await self._adapter.fetch_snapshot(user)
        except ProviderUnauthorized:
            if not await self._adapter.refresh_credentials(user):
                self._store.mark_reauth_required(user.id, self.provider)
                raise
        try:
            return await self._adapter.fetch_snapshot(user)
        except ProviderUnauthorized:
            self._store.mark_reauth_required(user.id, self.provider)
            raise

    def _prime_from_history(self, user: User, snapshot: Optional[Snapshot]) -> None:
        """After a restart, don't re-stamp a completed listen that was already saved."""
        if snapshot is None or snapshot.track is None or not snapshot.completed:
            return
        key = (user.id, self.provider)
        if self._tracker.state(key) is not None:
            return
        recent = self._store.get_recent_tracks(user.id, 1)
        if recent and recent[0].identity == snapshot.track.identity:
            self._tracker.prime(key, recent[0])

    async def _execute(self, user: User, action: Action) -> None:
        try:
            if action.publish_now_playing and action.track is not None:
                await self._publisher.publish_now_playing(user.id, action.track)
            elif action.clear_now_playing:
                await self._publisher.clear_now_playing(user.id)
        except (PublishError, *NETWORK_ERRORS) as exc:
            logger.warning(
                "Now playing update dropped",
                extra={"user_id": user.id, "provider": self.provider, "error": str(exc)},
            )

        if action.stamp is not None:
            try:
                await self._recorder.record(user.id, action.stamp)
            except InvalidTrackError as exc:
                logger.warning(
                    "Stamped track skipped",
                    extra={"user_id": user.id, "provider": self.provider, "error": str(exc)},
                )
