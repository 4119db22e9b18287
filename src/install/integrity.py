"""Subresource-integrity (``sha512-<base64>``) helpers."""

from __future__ import annotations

import base64
import hmac

INTEGRITY_ALGORITHM = "sha512"


def format_integrity(digest: bytes) -> str:
    return f"{INTEGRITY_ALGORITHM}-{base64.b64encode(digest).decode('ascii')}"


def integrity_matches(expected: str, actual: str) -> bool:
    """Constant-time comparison of two integrity strings."""
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))
