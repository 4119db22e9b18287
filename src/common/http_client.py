"""Shared HTTP helpers used by the repository client and the downloader.

Encapsulates retry, backoff and transient-error classification so callers
avoid duplicating try/except blocks around aiohttp calls.
"""
from __future__ import annotations

import asyncio
import email.utils
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

import aiohttp

from constants import Constants
from common.errors import MaxRetriesExceededError
from common.logging_utils import extra_context, is_debug_enabled, Timer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientHTTPError(Exception):
    """Retryable HTTP status (429 or 5xx) returned by the host."""

    def __init__(self, status: int, url: str, retry_after: Optional[float] = None):
        super().__init__(f"HTTP {status} from {url}")
        self.status = status
        self.url = url
        self.retry_after = retry_after


def is_transient_status(status: int) -> bool:
    """Return True for statuses worth retrying."""
    return status == 429 or 500 <= status < 600


def parse_retry_after(headers: Mapping[str, str], *, now: Optional[float] = None) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or an HTTP date.

    Returns:
        Delay in seconds, or None when absent or unparseable.
    """
    value = None
    for key, raw in headers.items():
        if key.lower() == "retry-after":
            value = str(raw).strip()
            break
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    current = time.time() if now is None else now
    return max(0.0, when.timestamp() - current)


def compute_backoff(
    attempt: int,
    *,
    base_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC,
    max_delay: float = Constants.HTTP_RETRY_MAX_DELAY_SEC,
    retry_after: Optional[float] = None,
) -> float:
    """Delay before retry number ``attempt`` (zero based).

    Exponential doubling from ``base_delay`` capped at ``max_delay``; a
    server-provided Retry-After replaces the computed value but is still capped.
    """
    if retry_after is not None:
        return min(retry_after, max_delay)
    return min(base_delay * (2 ** attempt), max_delay)


def raise_for_transient(response: aiohttp.ClientResponse) -> None:
    """Raise TransientHTTPError when the response status is retryable."""
    if is_transient_status(response.status):
        raise TransientHTTPError(
            response.status,
            str(response.url),
            retry_after=parse_retry_after(response.headers),
        )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    context: str,
    max_retries: int = Constants.HTTP_RETRY_MAX,
    base_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC,
    max_delay: float = Constants.HTTP_RETRY_MAX_DELAY_SEC,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` retrying transient failures with exponential backoff.

    Transient failures are TransientHTTPError, aiohttp client errors and
    timeouts. Any other exception propagates immediately.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        context: Human-readable label for logs and the final error.
        max_retries: Retries after the first attempt.
        base_delay: Initial delay in seconds.
        max_delay: Upper bound for any single delay.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        The operation's result.

    Raises:
        MaxRetriesExceededError: When every attempt failed transiently.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(max_retries + 1):
        with Timer() as t:
            try:
                result = await operation()
                if is_debug_enabled(logger) and attempt:
                    logger.debug(
                        "Request succeeded after retry",
                        extra=extra_context(
                            event="http_retry",
                            component="http_client",
                            outcome="success",
                            attempt=attempt + 1,
                            duration_ms=t.duration_ms(),
                            context=context,
                        ),
                    )
                return result
            except TransientHTTPError as exc:
                last_error = exc
                retry_after = exc.retry_after
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = exc
                retry_after = None

        if attempt >= max_retries:
            break
        delay = compute_backoff(
            attempt, base_delay=base_delay, max_delay=max_delay, retry_after=retry_after
        )
        logger.warning(
            "%s failed (%s); retrying in %.1fs (attempt %d of %d)",
            context,
            last_error,
            delay,
            attempt + 2,
            max_retries + 1,
        )
        await sleep(delay)

    raise MaxRetriesExceededError(max_retries, last_error, package=context)
