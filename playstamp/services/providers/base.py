"""
Provider adapter contract.
Each adapter turns one user's linked account into a single normalized Snapshot.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from playstamp.services.models import ProviderLink, Snapshot, User
from playstamp.utils.http_client import DEFAULT_POLICY, HttpError, RetryPolicy

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderUnauthorized(ProviderError):
    """Token rejected; a refresh may help."""


class ProviderUnavailable(ProviderError):
    """Network failure or upstream error; retried next cycle."""


class ProviderAdapter(ABC):
    name: str = ""

    def __init__(self, session: aiohttp.ClientSession, policy: RetryPolicy = DEFAULT_POLICY):
        self._session = session
        self._policy = policy

    @abstractmethod
    async def fetch_snapshot(self, user: User) -> Optional[Snapshot]:
        """Current snapshot, or None when nothing is playing."""

    async def refresh_credentials(self, user: User) -> bool:
        """Renew the user's token. Returns False when this provider cannot refresh."""
        return False

    def link_for(self, user: User) -> ProviderLink:
        link = user.link(self.name)
        if link is None:
            raise ProviderUnauthorized(self.name, f"user {user.id} has no linked account")
        return link

    def translate(self, exc: Exception) -> ProviderError:
        """Map a transport failure (one of TRANSPORT_ERRORS) onto the provider taxonomy."""
        if isinstance(exc, HttpError) and exc.status in (401, 403):
            return ProviderUnauthorized(self.name, str(exc))
        return ProviderUnavailable(self.name, str(exc) or type(exc).__name__)


TRANSPORT_ERRORS = (HttpError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)
