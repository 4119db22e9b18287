"""Fetches package tarballs from GitHub into the package cache.

Each download resolves the ref to a commit, reuses a cached entry when its
metadata is intact, and otherwise streams the tarball to a temporary file
while hashing it, then hands the file to the cache for extraction.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple

import aiohttp

from constants import Constants
from common.errors import NetworkError, RefNotFoundError
from common.http_client import retry_async
from common.logging_utils import extra_context, is_debug_enabled, Timer
from repository.github import GitHubClient
from versioning.semver import is_full_commit_sha
from .cache import PackageCache
from .events import EventCallback, EventType, PackageEvent, log_event
from .integrity import format_integrity
from .models import DownloadResult, PackageMetadata

logger = logging.getLogger(__name__)


class PackageDownloader:
    """Resolves refs and materializes packages into a PackageCache."""

    def __init__(
        self,
        client: GitHubClient,
        cache: PackageCache,
        on_event: Optional[EventCallback] = None,
        *,
        max_retries: int = Constants.HTTP_RETRY_MAX,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the downloader.

        Args:
            client: GitHub API client (owns credentials and the HTTP session).
            cache: Destination cache.
            on_event: Optional observer called synchronously for every event.
            max_retries: Retries for a failed tarball stream.
            sleep: Awaitable sleep used between retries.
        """
        self._client = client
        self._cache = cache
        self._on_event = on_event
        self._max_retries = max_retries
        self._sleep = sleep
        client.add_rate_limit_listener(self._on_rate_limit)

    def _emit(self, event: PackageEvent) -> None:
        log_event(event, logger)
        if self._on_event is not None:
            self._on_event(event)

    def _on_rate_limit(self, remaining: int, reset_at: datetime) -> None:
        self._emit(PackageEvent(EventType.RATE_LIMIT, remaining=remaining, reset_at=reset_at))

    async def resolve_ref_to_commit(self, owner: str, repo: str, ref: str) -> str:
        """Resolve a tag, branch or (short) SHA to a full commit SHA.

        Raises:
            RefNotFoundError: The ref does not exist in the repository.
            AuthenticationError: Credentials were rejected.
            NetworkError: Any other unexpected status.
        """
        package = f"{owner}/{repo}"
        status, _, data = await self._client.get_commit(owner, repo, ref)
        if status == 200 and isinstance(data, dict) and data.get("sha"):
            return str(data["sha"])

        if is_full_commit_sha(ref):
            if status == 404:
                raise RefNotFoundError(
                    f"Commit '{ref}' not found in {package}", package=package, status=status
                )
            raise NetworkError(
                f"Failed to validate commit '{ref}': HTTP {status}", package=package, status=status
            )
        if status in (404, 422):
            raise RefNotFoundError(
                f"Unable to resolve ref '{ref}' in {package}. "
                "Ref is not a valid tag, branch, or commit SHA.",
                package=package,
                status=status,
            )
        raise NetworkError(
            f"Failed to resolve ref '{ref}' in {package}: HTTP {status}",
            package=package,
            status=status,
        )

    async def download(
        self,
        owner: str,
        repo: str,
        ref: str,
        *,
        commit: Optional[str] = None,
        force: bool = False,
    ) -> DownloadResult:
        """Materialize ``owner/repo`` at ``ref`` in the cache.

        Args:
            owner: Repository owner.
            repo: Repository name.
            ref: Tag, branch or commit to fetch.
            commit: Known commit SHA for ``ref``; skips ref resolution.
            force: Skip the cache read and download again; an existing entry is kept.

        Returns:
            DownloadResult describing the cache entry.
        """
        package = f"{owner}/{repo}"
        try:
            self._emit(PackageEvent(EventType.RESOLVING, package=package))
            commit_sha = commit or await self.resolve_ref_to_commit(owner, repo, ref)

            cached_path = self._cache.get(owner, repo, commit_sha)
            if cached_path is not None and not force:
                self._emit(PackageEvent(EventType.CACHED, package=package, commit=commit_sha))
                metadata = await self._cache.get_metadata(owner, repo, commit_sha)
                if metadata is not None:
                    self._emit(PackageEvent(
                        EventType.COMPLETE,
                        package=package,
                        commit=commit_sha,
                        integrity=metadata.integrity,
                    ))
                    return DownloadResult(
                        commit_sha=commit_sha,
                        integrity=metadata.integrity,
                        path=cached_path,
                        resolved=metadata.resolved,
                        from_cache=True,
                    )
                logger.warning(
                    "Cache for %s@%s missing integrity metadata, re-downloading", package, commit_sha
                )

            tarball_path, integrity, resolved = await self._download_tarball(
                owner, repo, commit_sha
            )
            metadata = PackageMetadata(integrity=integrity, resolved=resolved, commit_sha=commit_sha)
            try:
                self._emit(PackageEvent(EventType.EXTRACTING, package=package))
                # An existing entry is never rewritten; only a missing sidecar is filled in
                path = await self._cache.put(owner, repo, commit_sha, tarball_path, metadata)
                await self._cache.put_metadata(owner, repo, commit_sha, metadata)
            finally:
                tarball_path.unlink(missing_ok=True)

            self._emit(PackageEvent(
                EventType.COMPLETE, package=package, commit=commit_sha, integrity=integrity
            ))
            return DownloadResult(
                commit_sha=commit_sha, integrity=integrity, path=path, resolved=resolved
            )
        except Exception as exc:
            self._emit(PackageEvent(EventType.ERROR, package=package, error=str(exc)))
            raise

    async def _download_tarball(self, owner: str, repo: str, commit_sha: str) -> Tuple[Path, str, str]:
        """Stream the tarball, retrying the whole transfer on transient failures."""
        package = f"{owner}/{repo}"

        async def attempt() -> Tuple[Path, str, str]:
            return await self._stream_tarball(owner, repo, commit_sha)

        return await retry_async(
            attempt, context=package, max_retries=self._max_retries, sleep=self._sleep
        )

    async def _stream_tarball(self, owner: str, repo: str, commit_sha: str) -> Tuple[Path, str, str]:
        package = f"{owner}/{repo}"
        url = self._client.tarball_url(owner, repo, commit_sha)
        self._emit(PackageEvent(EventType.DOWNLOADING, package=package, bytes_received=0))

        fd, tmp_name = tempfile.mkstemp(prefix="dlang-", suffix=".tar.gz")
        tarball_path = Path(tmp_name)
        digest = hashlib.sha512()
        received = 0
        try:
            with Timer() as t, os.fdopen(fd, "wb") as handle:
                async with self._client.open_tarball(owner, repo, commit_sha) as response:
                    if response.status != 200:
                        raise NetworkError(
                            f"Failed to download tarball for {package}@{commit_sha}: "
                            f"HTTP {response.status} {response.reason or ''}".rstrip(),
                            package=package,
                            status=response.status,
                        )
                    if response.content is None:
                        raise NetworkError("Response body is null", package=package)
                    total = response.content_length
                    async for chunk in response.content.iter_chunked(Constants.DOWNLOAD_CHUNK_SIZE):
                        digest.update(chunk)
                        handle.write(chunk)
                        received += len(chunk)
                        self._emit(PackageEvent(
                            EventType.DOWNLOADING,
                            package=package,
                            bytes_received=received,
                            total_bytes=total,
                        ))
                    if total is not None and received < total:
                        raise aiohttp.ClientPayloadError(
                            f"Tarball for {package} truncated: {received} of {total} bytes"
                        )
        except BaseException:
            tarball_path.unlink(missing_ok=True)
            raise

        if is_debug_enabled(logger):
            logger.debug(
                "Downloaded tarball",
                extra=extra_context(
                    event="download",
                    component="downloader",
                    package=package,
                    commit=commit_sha,
                    bytes=received,
                    duration_ms=t.duration_ms(),
                ),
            )
        return tarball_path, format_integrity(digest.digest()), url
