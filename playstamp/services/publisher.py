"""
Repository publisher: writes now-playing status and play records to a user's PDS over XRPC.
- Status lives in one swappable record (rkey "self") guarded by the record's cid
- A swap conflict re-reads the cid and retries the write once
- Plays are appended with createRecord, no swap
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Hashable, Optional

import aiohttp

from playstamp.services import records
from playstamp.services.models import RepoSession, Track
from playstamp.services.records import PublishError
from playstamp.services.storage import Store
from playstamp.utils.http_client import DEFAULT_POLICY, HttpError, RetryPolicy, fetch_json, post_json

logger = logging.getLogger(__name__)

_NOT_FOUND_ERRORS = {"RecordNotFound"}
_SWAP_ERRORS = {"InvalidSwap"}


class SwapConflictError(PublishError):
    """The status record changed underneath us twice in a row."""


def _is_swap_conflict(exc: HttpError) -> bool:
    return exc.status == 409 or (exc.status == 400 and exc.error in _SWAP_ERRORS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryPublisher:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        store: Store,
        *,
        submission_agent: str,
        status_expiry_seconds: int = 600,
        policy: RetryPolicy = DEFAULT_POLICY,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._session = session
        self._store = store
        self._agent = submission_agent
        self._expiry = status_expiry_seconds
        self._policy = policy
        self._now = now
        self._cleared: Dict[Hashable, bool] = {}
        self._lock = threading.Lock()

    # ── Public API ───────────────────────────────────────────────────────────

    async def publish_now_playing(self, user_id: Hashable, track: Track) -> None:
        record = records.status_record(track, self._agent, self._now(), self._expiry)
        repo = self._repo_session(user_id, "publish now playing")
        if repo is None:
            return

        await self._put_status(repo, record)
        self._set_cleared(user_id, False)
        logger.info(
            "Now playing published",
            extra={"user_id": user_id, "did": repo.did, "track": track.display_name},
        )

    async def clear_now_playing(self, user_id: Hashable) -> None:
        with self._lock:
            if self._cleared.get(user_id):
                return
        repo = self._repo_session(user_id, "clear now playing")
        if repo is None:
            return

        await self._put_status(repo, records.cleared_status_record(self._now()))
        self._set_cleared(user_id, True)
        logger.info("Now playing cleared", extra={"user_id": user_id, "did": repo.did})

    async def submit_play(self, user_id: Hashable, track: Track) -> Optional[str]:
        """Append a play record. Returns the new record's URI, or None when the user has no repo."""
        record = records.play_record(track, self._agent)
        repo = self._repo_session(user_id, "submit play")
        if repo is None:
            return None

        out = await post_json(
            self._session,
            self._xrpc(repo, "com.atproto.repo.createRecord"),
            json={"repo": repo.did, "collection": records.PLAY_COLLECTION, "record": record},
            headers=repo.auth_headers(),
            policy=self._policy,
        )
        uri = (out or {}).get("uri")
        logger.info(
            "Play submitted",
            extra={"user_id": user_id, "did": repo.did, "track": track.display_name, "uri": uri},
        )
        return uri

    def is_cleared(self, user_id: Hashable) -> bool:
        with self._lock:
            return self._cleared.get(user_id, False)

    # ── XRPC helpers ─────────────────────────────────────────────────────────

    def _repo_session(self, user_id: Hashable, what: str) -> Optional[RepoSession]:
        repo = self._store.get_repo_session(user_id)
        if repo is None:
            logger.info("No repository session, skipping", extra={"user_id": user_id, "action": what})
        return repo

    def _set_cleared(self, user_id: Hashable, value: bool) -> None:
        with self._lock:
            self._cleared[user_id] = value

    @staticmethod
    def _xrpc(repo: RepoSession, method: str) -> str:
        return f"{repo.service_endpoint.rstrip('/')}/xrpc/{method}"

    async def _status_cid(self, repo: RepoSession) -> Optional[str]:
        """Current cid of the status record; None when it does not exist yet."""
        try:
            out = await fetch_json(
                self._session,
                self._xrpc(repo, "com.atproto.repo.getRecord"),
                params={"repo": repo.did, "collection": records.STATUS_COLLECTION, "rkey": records.STATUS_RKEY},
                headers=repo.auth_headers(),
                policy=self._policy,
            )
        except HttpError as exc:
            if exc.status == 404 or (exc.status == 400 and exc.error in _NOT_FOUND_ERRORS):
                return None
            raise
        return (out or {}).get("cid")

    async def _put_status(self, repo: RepoSession, record: dict) -> None:
        for attempt in (1, 2):
            cid = await self._status_cid(repo)
            body = {
                "repo": repo.did,
                "collection": records.STATUS_COLLECTION,
                "rkey": records.STATUS_RKEY,
                "record": record,
            }
            if cid:
                body["swapRecord"] = cid
            try:
                await post_json(
                    self._session,
                    self._xrpc(repo, "com.atproto.repo.putRecord"),
                    json=body,
                    headers=repo.auth_headers(),
                    policy=self._policy,
                )
                return
            except HttpError as exc:
                if not _is_swap_conflict(exc):
                    raise
                logger.warning(
                    "Status swap conflict",
                    extra={"did": repo.did, "attempt": attempt, "cid": cid},
                )
        raise SwapConflictError(f"status record for {repo.did} kept changing")
