"""Logging helpers shared by the package-manager modules.

Provides environment-driven configuration plus small utilities for
structured DEBUG traces: a context builder for ``extra=``, URL and secret
redaction, and a monotonic timer.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
import time
import urllib.parse
from typing import Any, Dict, Optional

from constants import Constants

# Attributes present on every LogRecord; anything else came from extra=
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}

_SENSITIVE_QUERY_KEYS = {"token", "access_token", "private_token", "key", "apikey", "api_key"}
_BEARER_RE = re.compile(r"(Bearer|token)\s+[A-Za-z0-9_\-\.=]+", re.IGNORECASE)
_GITHUB_TOKEN_RE = re.compile(r"\b(gh[pousr]_[A-Za-z0-9]{16,}|github_pat_[A-Za-z0-9_]{16,})\b")


class _JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including extra context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the root logger from arguments or the environment.

    Args:
        level: Level name; defaults to $DLPM_LOG_LEVEL or INFO.
        fmt: "text" or "json"; defaults to $DLPM_LOG_FMT or text.
    """
    level_name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    fmt_name = (fmt or os.environ.get(Constants.ENV_LOG_FORMAT) or "text").lower()
    numeric_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    if fmt_name == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from this logger would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**kwargs: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping for structured log records.

    None values are dropped; keys that collide with LogRecord attributes are
    prefixed with ``ctx_`` so logging does not reject them.
    """
    context: Dict[str, Any] = {}
    for key, value in kwargs.items():
        if value is None:
            continue
        if key in _RESERVED_ATTRS:
            key = f"ctx_{key}"
        context[key] = value
    return context


def redact(text: Optional[str]) -> str:
    """Mask bearer tokens and GitHub access tokens inside free-form text."""
    if not text:
        return ""
    masked = _BEARER_RE.sub(lambda m: f"{m.group(1)} ***", text)
    return _GITHUB_TOKEN_RE.sub("***", masked)


def safe_url(url: str) -> str:
    """Strip credentials and sensitive query parameters from a URL for logging."""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    cleaned = [
        (key, "***" if key.lower() in _SENSITIVE_QUERY_KEYS else value)
        for key, value in query
    ]
    return urllib.parse.urlunsplit(
        (parts.scheme, netloc, parts.path, urllib.parse.urlencode(cleaned), "")
    )


class Timer:
    """Context manager measuring elapsed wall time with a monotonic clock."""

    def __init__(self) -> None:
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.monotonic()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._end = time.monotonic()

    def duration_ms(self) -> float:
        """Milliseconds elapsed so far, or in total once the block exited."""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.monotonic()
        return round((end - self._start) * 1000.0, 2)
