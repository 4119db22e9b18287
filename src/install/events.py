"""Lifecycle events emitted while materializing packages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional


class EventType(Enum):
    """Kinds of download lifecycle events."""
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    CACHED = "cached"
    COMPLETE = "complete"
    ERROR = "error"
    RATE_LIMIT = "rate-limit"


@dataclass(frozen=True)
class PackageEvent:
    """One observable step; which fields are set depends on ``type``."""
    type: EventType
    package: Optional[str] = None
    commit: Optional[str] = None
    integrity: Optional[str] = None
    bytes_received: Optional[int] = None
    total_bytes: Optional[int] = None
    error: Optional[str] = None
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None


EventCallback = Callable[[PackageEvent], None]


def log_event(event: PackageEvent, logger: logging.Logger) -> None:
    """Render an event through ``logger`` at a level matching its importance."""
    if event.type is EventType.DOWNLOADING:
        if event.total_bytes:
            percent = round(100 * (event.bytes_received or 0) / event.total_bytes)
            logger.debug("Downloading %s: %d%%", event.package, percent)
        else:
            logger.debug("Downloading %s: %d bytes", event.package, event.bytes_received or 0)
    elif event.type is EventType.RESOLVING:
        logger.debug("Resolving %s", event.package)
    elif event.type is EventType.EXTRACTING:
        logger.debug("Extracting %s", event.package)
    elif event.type is EventType.CACHED:
        logger.info("Using cached %s@%s", event.package, (event.commit or "")[:12])
    elif event.type is EventType.COMPLETE:
        logger.info("Fetched %s@%s", event.package, (event.commit or "")[:12])
    elif event.type is EventType.ERROR:
        logger.error("Failed to fetch %s: %s", event.package, event.error)
    elif event.type is EventType.RATE_LIMIT:
        logger.warning(
            "GitHub rate limit low: %s requests remaining until %s",
            event.remaining,
            event.reset_at.isoformat() if event.reset_at else "unknown",
        )
