"""GitHub REST client for ref resolution and tarball retrieval.

Provides an asyncio client built on aiohttp. Every response is inspected for
rate-limit headers and for authentication failures before callers see it.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from constants import Constants
from common.errors import AuthenticationError, NetworkError
from common.http_client import raise_for_transient, retry_async
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from repository.credentials import CredentialProvider, authorization_header

logger = logging.getLogger(__name__)

RateLimitListener = Callable[[int, datetime], None]


class GitHubClient:
    """Async REST client for the GitHub API.

    Credentials come from an injected provider; without one (or when it yields
    nothing) requests are anonymous.
    """

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        *,
        base_url: Optional[str] = None,
        timeout: float = Constants.REQUEST_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: int = Constants.HTTP_RETRY_MAX,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        """Initialize the GitHub client.

        Args:
            credentials: Provider consulted once per request for the API host.
            base_url: API base URL (defaults to Constants.GITHUB_API_BASE).
            timeout: Per-request timeout in seconds.
            session: Externally owned session; the client will not close it.
            max_retries: Retries for transient failures on API lookups.
            sleep: Replacement for asyncio.sleep between retries.
        """
        self.base_url = (base_url or Constants.GITHUB_API_BASE).rstrip("/")
        self._credentials = credentials
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._max_retries = max_retries
        self._sleep = sleep
        self._rate_limit_listeners: List[RateLimitListener] = []

    async def start(self) -> None:
        """Start the HTTP session."""
        await self._ensure_session()

    async def stop(self) -> None:
        """Stop the HTTP session when this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "GitHubClient":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def add_rate_limit_listener(self, listener: RateLimitListener) -> None:
        """Register a callback invoked with (remaining, reset_at) when quota runs low."""
        self._rate_limit_listeners.append(listener)

    def commit_url(self, owner: str, repo: str, ref: str) -> str:
        return f"{self.base_url}/repos/{owner}/{repo}/commits/{quote(ref, safe='')}"

    def tarball_url(self, owner: str, repo: str, commit: str) -> str:
        return f"{self.base_url}/repos/{owner}/{repo}/tarball/{commit}"

    async def _get_headers(self) -> Dict[str, str]:
        """Get request headers including authorization if credentials are available."""
        headers = {
            "Accept": Constants.GITHUB_ACCEPT,
            "X-GitHub-Api-Version": Constants.GITHUB_API_VERSION,
            "User-Agent": Constants.USER_AGENT,
        }
        if self._credentials is not None:
            creds = await self._credentials.get_credentials(Constants.GITHUB_HOST)
            auth = authorization_header(creds)
            if auth:
                headers["Authorization"] = auth
        return headers

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def get_commit(
        self, owner: str, repo: str, ref: str
    ) -> Tuple[int, Dict[str, str], Optional[Any]]:
        """Look up the commit a ref points at.

        Transient failures are retried; any final status is returned to the caller.

        Args:
            owner: Repository owner
            repo: Repository name
            ref: Tag, branch or (short) commit SHA

        Returns:
            Tuple of (status_code, headers_dict, parsed_json_or_none)

        Raises:
            AuthenticationError: On HTTP 401/403.
            MaxRetriesExceededError: When transient failures persist.
        """
        url = self.commit_url(owner, repo, ref)
        package = f"{owner}/{repo}"

        async def attempt() -> Tuple[int, Dict[str, str], Optional[Any]]:
            session = await self._ensure_session()
            headers = await self._get_headers()
            with Timer() as t:
                async with session.get(url, headers=headers) as response:
                    self._inspect_response(response, package)
                    raise_for_transient(response)
                    data = None
                    if response.status == 200:
                        try:
                            data = await response.json(content_type=None)
                        except ValueError:
                            data = None
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP response",
                            extra=extra_context(
                                event="http_response",
                                component="github",
                                action="GET",
                                status_code=response.status,
                                duration_ms=t.duration_ms(),
                                target=safe_url(url),
                            ),
                        )
                    return response.status, dict(response.headers), data

        kwargs: Dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return await retry_async(
            attempt, context=package, max_retries=self._max_retries, **kwargs
        )

    @asynccontextmanager
    async def open_tarball(
        self, owner: str, repo: str, commit: str
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open the tarball download for ``commit`` as an async context manager.

        A single attempt; callers that stream the body own the retry loop.

        Raises:
            AuthenticationError: On HTTP 401/403.
            TransientHTTPError: On 429 and 5xx responses.
        """
        url = self.tarball_url(owner, repo, commit)
        session = await self._ensure_session()
        headers = await self._get_headers()
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="github",
                    action="GET",
                    target=safe_url(url),
                ),
            )
        async with session.get(url, headers=headers) as response:
            self._inspect_response(response, f"{owner}/{repo}")
            raise_for_transient(response)
            yield response

    def _inspect_response(self, response: aiohttp.ClientResponse, package: str) -> None:
        self._check_rate_limit(response.headers)
        if response.status in (401, 403):
            # 403 with an exhausted quota is a rate limit, not bad credentials
            if response.status == 403 and response.headers.get("x-ratelimit-remaining") == "0":
                raise NetworkError(
                    f"GitHub API rate limit exceeded while fetching '{package}'",
                    package=package,
                    status=403,
                    hint="Provide a token to raise the limit, or wait for the quota to reset.",
                )
            raise AuthenticationError(package, response.status)

    def _check_rate_limit(self, headers: Any) -> None:
        remaining = headers.get("x-ratelimit-remaining")
        reset = headers.get("x-ratelimit-reset")
        if remaining is None or reset is None:
            return
        try:
            remaining_count = int(remaining)
            reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc)
        except (TypeError, ValueError):
            return
        if remaining_count >= Constants.RATE_LIMIT_LOW_WATER:
            return
        logger.warning(
            "GitHub API rate limit low: %d requests remaining (resets at %s)",
            remaining_count,
            reset_at.isoformat(),
        )
        for listener in self._rate_limit_listeners:
            listener(remaining_count, reset_at)
