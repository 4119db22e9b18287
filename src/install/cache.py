"""Content-addressed package cache under ``<workspace>/.dlang/packages``.

Entries live at ``<owner>/<repo>/<commit>`` and are immutable once published.
Publication extracts into a private ``.tmp-<uuid>`` directory and renames it
into place, so readers never observe a partial entry. A rename that loses a
race against another writer keeps the winner's entry.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tarfile
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional

from constants import Constants
from common.errors import CacheError
from common.logging_utils import extra_context, is_debug_enabled, Timer
from .models import PackageMetadata

logger = logging.getLogger(__name__)


def _strip_first_component(member: tarfile.TarInfo, dest_path: str) -> Optional[tarfile.TarInfo]:
    """Extraction filter dropping the archive's wrapper directory, then applying the data filter."""
    parts = [p for p in PurePosixPath(member.name).parts if p not in (".", "")]
    if len(parts) <= 1:
        return None
    changes = {"name": "/".join(parts[1:])}
    if member.islnk():
        link_parts = [p for p in PurePosixPath(member.linkname).parts if p not in (".", "")]
        if len(link_parts) <= 1:
            return None
        changes["linkname"] = "/".join(link_parts[1:])
    return tarfile.data_filter(member.replace(**changes, deep=False), dest_path)


class PackageCache:
    """Workspace-local cache of extracted package tarballs."""

    def __init__(self, workspace_root: Path):
        self.workspace_root = Path(workspace_root)
        self.cache_root = self.workspace_root / Constants.CACHE_DIR
        self.packages_dir = self.cache_root / Constants.PACKAGES_DIR

    def package_path(self, owner: str, repo: str, commit_sha: str) -> Path:
        for part in (owner, repo, commit_sha):
            if not part or part in (".", "..") or "/" in part or "\\" in part:
                raise CacheError(f"Invalid cache key component: {part!r}")
        return self.packages_dir / owner / repo / commit_sha

    def has(self, owner: str, repo: str, commit_sha: str) -> bool:
        return self.package_path(owner, repo, commit_sha).is_dir()

    def get(self, owner: str, repo: str, commit_sha: str) -> Optional[Path]:
        """Return the entry directory, or None when it is not cached."""
        path = self.package_path(owner, repo, commit_sha)
        return path if path.is_dir() else None

    async def get_metadata(self, owner: str, repo: str, commit_sha: str) -> Optional[PackageMetadata]:
        """Read the sidecar metadata; missing or corrupt files yield None."""
        return await asyncio.to_thread(self._read_metadata, owner, repo, commit_sha)

    async def put_metadata(
        self, owner: str, repo: str, commit_sha: str, metadata: PackageMetadata
    ) -> None:
        """Write the sidecar unless a readable one is already in place."""
        await asyncio.to_thread(self._write_metadata, owner, repo, commit_sha, metadata)

    async def put(
        self,
        owner: str,
        repo: str,
        commit_sha: str,
        tarball_path: Path,
        metadata: Optional[PackageMetadata] = None,
    ) -> Path:
        """Extract ``tarball_path`` into the cache and return the entry directory.

        When ``metadata`` is given the sidecar is written into the temporary
        directory before the rename, so a published entry always carries it.
        Publishing a key that already exists leaves the existing entry untouched.

        Raises:
            CacheError: When extraction or publication fails.
        """
        return await asyncio.to_thread(
            self._put, owner, repo, commit_sha, Path(tarball_path), metadata
        )

    async def remove(self, owner: str, repo: str, commit_sha: str) -> None:
        path = self.package_path(owner, repo, commit_sha)
        await asyncio.to_thread(shutil.rmtree, path, True)

    async def clear(self) -> None:
        """Delete every cached package."""
        await asyncio.to_thread(shutil.rmtree, self.packages_dir, True)

    def _metadata_path(self, owner: str, repo: str, commit_sha: str) -> Path:
        return self.package_path(owner, repo, commit_sha) / Constants.METADATA_FILE

    def _read_metadata(self, owner: str, repo: str, commit_sha: str) -> Optional[PackageMetadata]:
        path = self._metadata_path(owner, repo, commit_sha)
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return PackageMetadata.from_dict(json.load(handle))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Failed to read metadata for %s/%s@%s: %s", owner, repo, commit_sha, exc
            )
            return None

    def _write_metadata(
        self, owner: str, repo: str, commit_sha: str, metadata: PackageMetadata
    ) -> None:
        if self._read_metadata(owner, repo, commit_sha) is not None:
            return
        path = self._metadata_path(owner, repo, commit_sha)
        try:
            self._dump_metadata(path, metadata)
        except OSError as exc:
            raise CacheError(
                f"Failed to write metadata for {owner}/{repo}@{commit_sha}: {exc}"
            ) from exc

    @staticmethod
    def _dump_metadata(path: Path, metadata: PackageMetadata) -> None:
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as handle:
                json.dump(metadata.to_dict(), handle, indent=2)
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    def _put(
        self,
        owner: str,
        repo: str,
        commit_sha: str,
        tarball_path: Path,
        metadata: Optional[PackageMetadata],
    ) -> Path:
        final_path = self.package_path(owner, repo, commit_sha)
        temp_dir = self.packages_dir / f"{Constants.TEMP_PREFIX}{uuid.uuid4()}"
        with Timer() as t:
            try:
                temp_dir.mkdir(parents=True)
                with tarfile.open(tarball_path, "r:*") as archive:
                    archive.extractall(path=temp_dir, filter=_strip_first_component)
                if metadata is not None:
                    self._dump_metadata(temp_dir / Constants.METADATA_FILE, metadata)
                final_path.parent.mkdir(parents=True, exist_ok=True)
                try:
                    os.rename(temp_dir, final_path)
                except OSError:
                    if final_path.exists():
                        # Another writer published the same commit first
                        self._cleanup_temp_dir(temp_dir)
                        return final_path
                    raise
            except (OSError, tarfile.TarError) as exc:
                self._cleanup_temp_dir(temp_dir)
                raise CacheError(
                    f"Failed to cache package {owner}/{repo}@{commit_sha}: {exc}"
                ) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "Cached package",
                extra=extra_context(
                    event="cache_put",
                    component="package_cache",
                    package=f"{owner}/{repo}",
                    commit=commit_sha,
                    duration_ms=t.duration_ms(),
                ),
            )
        return final_path

    @staticmethod
    def _cleanup_temp_dir(temp_dir: Path) -> None:
        try:
            shutil.rmtree(temp_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to clean up temp directory %s: %s", temp_dir, exc)
