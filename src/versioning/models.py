"""Data models for git refs and semantic versions."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Optional

import semantic_version

from constants import RefType


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class SemVer:
    """Parsed semantic version; ``original`` keeps the tag text (``v`` prefix included)."""
    major: int
    minor: int
    patch: int
    pre_release: Optional[str] = None
    original: str = field(default="", compare=False)

    def to_version(self) -> semantic_version.Version:
        """Return the equivalent semantic_version.Version (build metadata dropped)."""
        prerelease = tuple(self.pre_release.split(".")) if self.pre_release else ()
        return semantic_version.Version(
            major=self.major,
            minor=self.minor,
            patch=self.patch,
            prerelease=prerelease,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.to_version() == other.to_version()

    def __lt__(self, other: "SemVer") -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.to_version() < other.to_version()

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.pre_release))

    def __str__(self) -> str:
        return self.original or str(self.to_version())


@dataclass(frozen=True)
class ParsedRef:
    """A ref string with its inferred type and, for tags, its version."""
    original: str
    type: RefType
    semver: Optional[SemVer] = None
