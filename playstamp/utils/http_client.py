"""
Shared async HTTP client with:
- Retry with exponential backoff
- Redirect limits
- Timeouts
- No private-IP redirects (SSRF guard)
"""
import asyncio
import json as jsonlib
import logging
from typing import Any, Optional

import aiohttp
from aiohttp import ClientSession, TCPConnector

from playstamp.utils.urls import is_private_host

logger = logging.getLogger(__name__)

_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class HttpError(Exception):
    def __init__(self, status: int, message: str, error: Optional[str] = None):
        self.status = status
        self.body = message
        self.error = error  # XRPC-style {"error": "..."} name, when present
        super().__init__(f"HTTP {status}: {message}")


class SSRFAttemptError(Exception):
    pass


async def _check_redirect(session, ctx, params):
    """Hook: validate redirect URL is not private."""
    host = params.url.host or ""
    if is_private_host(host):
        raise SSRFAttemptError(f"Redirect to private host blocked: {host}")


def build_session(timeout_seconds: float = 10) -> ClientSession:
    connector = TCPConnector(
        limit=20,
        ssl=True,
    )
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    return ClientSession(
        connector=connector,
        timeout=timeout,
        trust_env=False,
        trace_configs=[_build_trace_config()],
    )


def _build_trace_config() -> aiohttp.TraceConfig:
    tc = aiohttp.TraceConfig()
    tc.on_request_redirect.append(_check_redirect)  # type: ignore[arg-type]
    return tc


class RetryPolicy:
    """Attempts, backoff base and redirect cap shared by every outbound call."""

    def __init__(self, attempts: int = 1, backoff: float = 1.5, max_redirects: int = 3):
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.max_redirects = max_redirects


DEFAULT_POLICY = RetryPolicy()


async def fetch_json(
    session: ClientSession,
    url: str,
    *,
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> Any:
    """GET JSON with retry. Returns None for an empty (204) response."""
    return await _request_with_retry(
        session, "GET", url, headers=headers, params=params, policy=policy
    )


async def post_json(
    session: ClientSession,
    url: str,
    *,
    json: Any = None,
    data: Any = None,
    headers: Optional[dict] = None,
    auth: Optional[aiohttp.BasicAuth] = None,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> Any:
    """POST a JSON body (or form data) and decode the JSON reply."""
    return await _request_with_retry(
        session, "POST", url, headers=headers, json=json, data=data, auth=auth, policy=policy
    )


async def _request_with_retry(
    session: ClientSession,
    method: str,
    url: str,
    *,
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    json: Any = None,
    data: Any = None,
    auth: Optional[aiohttp.BasicAuth] = None,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> Any:
    attempts = policy.attempts
    last_exc: Exception = RuntimeError("No attempts made")
    for attempt in range(1, attempts + 1):
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                data=data,
                auth=auth,
                allow_redirects=True,
                max_redirects=policy.max_redirects,
            ) as resp:
                if resp.status in _RETRYABLE_STATUSES and attempt < attempts:
                    wait = policy.backoff ** attempt
                    logger.warning(
                        "Retryable HTTP status",
                        extra={"status": resp.status, "attempt": attempt, "wait": wait},
                    )
                    await asyncio.sleep(wait)
                    continue
                if resp.status >= 400:
                    body = await resp.text()
                    raise HttpError(resp.status, body[:200], _error_name(body))
                if resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as exc:
            last_exc = exc
            if attempt < attempts:
                wait = policy.backoff ** attempt
                logger.warning(
                    "Connection error, retrying",
                    extra={"error": str(exc), "attempt": attempt, "wait": wait},
                )
                await asyncio.sleep(wait)
    raise last_exc


def _error_name(body: str) -> Optional[str]:
    try:
        payload = jsonlib.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return None
