"""Credential capability consumed by the GitHub client.

Discovery (environment variables, credential helpers, keychains) happens
outside this package; callers inject any object implementing
``CredentialProvider``.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class Credentials:
    """Host credentials: a token (preferred) or a username/password pair."""
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(token={'***' if self.token else None}, username={self.username!r})"


class CredentialProvider(Protocol):
    """Anything that can produce credentials for a host, or None for anonymous access."""

    async def get_credentials(self, host: str) -> Optional[Credentials]:
        ...


class StaticCredentialProvider:
    """Provider returning the same credentials for every host."""

    def __init__(self, credentials: Optional[Credentials] = None):
        self._credentials = credentials

    @classmethod
    def from_token(cls, token: Optional[str]) -> "StaticCredentialProvider":
        return cls(Credentials(token=token) if token else None)

    async def get_credentials(self, host: str) -> Optional[Credentials]:
        return self._credentials


def authorization_header(credentials: Optional[Credentials]) -> Optional[str]:
    """Build an Authorization header value.

    Args:
        credentials: Credentials or None.

    Returns:
        ``Bearer <token>``, ``Basic <base64>`` for username/password, or None.
    """
    if credentials is None:
        return None
    if credentials.token:
        return f"Bearer {credentials.token}"
    if credentials.username and credentials.password:
        raw = f"{credentials.username}:{credentials.password}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"
    return None
