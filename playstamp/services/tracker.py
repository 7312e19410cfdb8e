"""
Playback state machine, one state per (user, provider).

`advance` turns a poll snapshot into the side effects the scheduler must run:
publish now-playing, clear now-playing, stamp a completed listen. It performs no
I/O; time comes from an injectable clock so tests can step it exactly.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Hashable, Optional, Tuple

from playstamp.services.models import Snapshot, Track

logger = logging.getLogger(__name__)

StateKey = Tuple[Hashable, str]  # (user id, provider name)


@dataclass
class PlayState:
    track: Track
    accumulated_ms: int
    is_paused: bool
    has_stamped: bool
    last_poll: float
    stamped_at: Optional[datetime] = None  # provider play time of the last completed stamp


@dataclass(frozen=True)
class Action:
    publish_now_playing: bool = False
    clear_now_playing: bool = False
    stamp: Optional[Track] = None
    track: Optional[Track] = None  # the track now-playing refers to

    @property
    def is_empty(self) -> bool:
        return not (self.publish_now_playing or self.clear_now_playing or self.stamp)


NO_ACTION = Action()


class PlaybackStateTracker:
    def __init__(
        self,
        *,
        max_skip_delta_ms: int = 30_000,
        max_delta_ms: int = 30_000,
        stamp_min_ms: int = 30_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_skip_delta_ms = max_skip_delta_ms
        self._max_delta_ms = max_delta_ms
        self._stamp_min_ms = stamp_min_ms
        self._clock = clock
        self._states: Dict[StateKey, PlayState] = {}
        self._lock = threading.Lock()

    # ── Inspection ───────────────────────────────────────────────────────────

    def state(self, key: StateKey) -> Optional[PlayState]:
        with self._lock:
            return self._states.get(key)

    def current_tracks(self, user_id: Hashable) -> Dict[str, Track]:
        """Provider name → tracked track for one user, skipping paused states."""
        with self._lock:
            return {
                provider: state.track
                for (uid, provider), state in self._states.items()
                if uid == user_id and not state.is_paused
            }

    def prime(self, key: StateKey, track: Track) -> None:
        """Seed a key with an already-stamped track, e.g. the last one persisted before a restart."""
        with self._lock:
            if key not in self._states:
                self._states[key] = PlayState(
                    track=track,
                    accumulated_ms=0,
                    is_paused=True,
                    has_stamped=True,
                    last_poll=self._clock(),
                    stamped_at=track.timestamp,
                )

    def forget(self, key: StateKey) -> None:
        with self._lock:
            self._states.pop(key, None)

    # ── State machine ────────────────────────────────────────────────────────

    def advance(self, key: StateKey, snapshot: Optional[Snapshot]) -> Action:
        now = self._clock()
        with self._lock:
            state = self._states.get(key)

            if snapshot is None or snapshot.track is None:
                if state is None:
                    return NO_ACTION
                state.last_poll = now
                if state.is_paused:
                    return NO_ACTION
                state.is_paused = True
                return Action(clear_now_playing=True)

            track = snapshot.track
            playing = snapshot.is_playing
            publish = clear = False
            stamp_now = False

            if state is None:
                state = PlayState(
                    track=track,
                    accumulated_ms=self._capped_progress(track),
                    is_paused=not playing,
                    has_stamped=False,
                    last_poll=now,
                )
                self._states[key] = state
                publish, clear = playing, not playing
                stamp_now = snapshot.completed

            elif track.identity != state.track.identity:
                state.track = track
                state.accumulated_ms = self._capped_progress(track)
                state.has_stamped = False
                state.is_paused = not playing
                publish, clear = playing, not playing
                stamp_now = snapshot.completed

            else:
                was_paused = state.is_paused
                elapsed_ms = int(max(0.0, now - state.last_poll) * 1000)
                state.accumulated_ms += min(elapsed_ms, self._max_delta_ms)
                state.track = track
                state.is_paused = not playing
                if was_paused and playing:
                    publish = True
                elif not was_paused and not playing:
                    clear = True
                if snapshot.completed and _newer_play(snapshot.played_at, state.stamped_at):
                    # same track played again after the last stamped listen
                    state.has_stamped = False
                stamp_now = snapshot.completed and not state.has_stamped

            stamp = self._stamp_decision(state, stamp_now, snapshot.played_at)
            state.last_poll = now

            if stamp is not None:
                logger.info(
                    "Track stamped",
                    extra={"user_id": key[0], "provider": key[1], "track": track.display_name},
                )
            return Action(
                publish_now_playing=publish,
                clear_now_playing=clear,
                stamp=stamp,
                track=track if publish else None,
            )

    def _capped_progress(self, track: Track) -> int:
        return min(max(track.progress_ms, 0), self._max_skip_delta_ms)

    def threshold_ms(self, duration_ms: int) -> int:
        return max(duration_ms // 2, self._stamp_min_ms)

    def _stamp_decision(
        self, state: PlayState, completed: bool, played_at: Optional[datetime] = None
    ) -> Optional[Track]:
        duration = state.track.duration_ms

        if completed:
            if 0 < duration <= self._stamp_min_ms:
                return None
            state.has_stamped = True
            state.accumulated_ms = 0
            state.stamped_at = played_at
            return state.track.evolve(has_stamped=True)

        # loop / repeat: keep the overflow so a quick repeat is not lost
        if duration > 0:
            while state.accumulated_ms >= duration:
                state.accumulated_ms -= duration
                state.has_stamped = False

        if duration <= 0 or state.has_stamped:
            return None
        if state.accumulated_ms > self.threshold_ms(duration):
            state.has_stamped = True
            return state.track.evolve(has_stamped=True)
        return None


def _newer_play(played_at: Optional[datetime], stamped_at: Optional[datetime]) -> bool:
    return played_at is not None and stamped_at is not None and played_at > stamped_at
