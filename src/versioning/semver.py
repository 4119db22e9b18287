"""Semantic version helpers for git tag refs.

Ref types are inferred structurally: hex strings of 7 to 40 characters are
commits, ``v?MAJOR.MINOR.PATCH`` strings are tags, anything else is a branch.
"""
from __future__ import annotations

import re
from typing import Optional

import semantic_version

from constants import RefType
from versioning.models import ParsedRef, SemVer

_COMMIT_RE = re.compile(r"^[0-9a-f]{7,40}$", re.IGNORECASE)
_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$", re.IGNORECASE)
_TAG_RE = re.compile(r"^v?\d+\.\d+\.\d+")


def parse_semver(ref: str) -> Optional[SemVer]:
    """Parse ``ref`` as a semantic version, tolerating a leading ``v``.

    Returns:
        SemVer, or None when the ref is not a valid version.
    """
    if not ref:
        return None
    text = ref[1:] if ref[:1] in ("v", "V") else ref
    try:
        version = semantic_version.Version(text)
    except ValueError:
        return None
    return SemVer(
        major=version.major,
        minor=version.minor,
        patch=version.patch,
        pre_release=".".join(version.prerelease) or None,
        original=ref,
    )


def compare_semver(a: SemVer, b: SemVer) -> int:
    """Return a negative number, zero or a positive number like a comparator."""
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_full_commit_sha(ref: str) -> bool:
    """Return True for a full 40-character hex commit SHA."""
    return bool(_FULL_SHA_RE.match(ref or ""))


def detect_ref_type(ref: str) -> RefType:
    """Infer whether ``ref`` names a commit, a tag or a branch."""
    if _COMMIT_RE.match(ref):
        return RefType.COMMIT
    if _TAG_RE.match(ref):
        return RefType.TAG
    return RefType.BRANCH


def parse_ref(ref: str) -> ParsedRef:
    """Classify ``ref`` and attach its version when it is a tag."""
    ref_type = detect_ref_type(ref)
    semver = parse_semver(ref) if ref_type is RefType.TAG else None
    return ParsedRef(original=ref, type=ref_type, semver=semver)
