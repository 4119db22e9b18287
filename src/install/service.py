"""Install orchestration: options, frozen/force modes and lock reconciliation."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from constants import Constants
from common.errors import ConfigurationError, FrozenMismatchError, IntegrityError
from repository.credentials import CredentialProvider
from repository.github import GitHubClient
from versioning.semver import parse_semver
from .cache import PackageCache
from .downloader import PackageDownloader
from .events import EventCallback
from .integrity import integrity_matches
from .manifest import load_lock_file, load_manifest, render_lock_file, write_lock_file
from .models import InstallOptions, InstallResult, LockFile, Manifest
from .resolver import DependencyResolver

logger = logging.getLogger(__name__)

Diff = Tuple[List[str], List[str], List[Tuple[str, str, str]]]


def _diff_against_lock(expected: Dict[str, str], lock: LockFile) -> Diff:
    """Compare ``source -> ref`` expectations with a lock file.

    Returns:
        (added, removed, changed) where added entries render as ``source@ref``
        and changed entries are ``(source, expected_ref, lock_ref)``.
    """
    added: List[str] = []
    changed: List[Tuple[str, str, str]] = []
    for source, ref in expected.items():
        entry = lock.dependencies.get(source)
        if entry is None:
            added.append(f"{source}@{ref}")
        elif entry.ref != ref:
            changed.append((source, ref, entry.ref))
    removed = sorted(source for source in lock.dependencies if source not in expected)
    return added, removed, changed


def _diff_manifest_against_lock(manifest: Manifest, lock: LockFile) -> Diff:
    """Compare the manifest's direct dependencies with a lock file, without I/O.

    Only additions and ref changes are visible here; removals need the
    transitive graph. A locked tag newer than the manifest's within the same
    major may be a latest-wins upgrade and is left to the post-resolution diff.
    """
    added: List[str] = []
    changed: List[Tuple[str, str, str]] = []
    for dep in manifest.remote_dependencies():
        if not dep.source or not dep.ref:
            continue
        source, ref = dep.source, manifest.overrides.get(dep.source, dep.ref)
        entry = lock.dependencies.get(source)
        if entry is None:
            added.append(f"{source}@{ref}")
        elif entry.ref != ref and not _may_be_upgrade(ref, entry.ref):
            changed.append((source, ref, entry.ref))
    return added, [], changed


def _may_be_upgrade(requested: str, locked: str) -> bool:
    wanted = parse_semver(requested)
    pinned = parse_semver(locked)
    if wanted is None or pinned is None:
        return False
    return wanted.major == pinned.major and pinned > wanted


class InstallService:
    """Installs the dependencies declared in a workspace's model.yaml."""

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        *,
        client: Optional[GitHubClient] = None,
        on_event: Optional[EventCallback] = None,
    ):
        """Initialize the install service.

        Args:
            credentials: Credential capability for GitHub; anonymous when omitted.
            client: Pre-built GitHub client; its session is then managed by the caller.
            on_event: Observer for download lifecycle events.
        """
        self._owns_client = client is None
        self._client = client or GitHubClient(credentials)
        self._on_event = on_event

    async def install(self, options: InstallOptions) -> InstallResult:
        """Resolve, fetch and verify dependencies, then reconcile model.lock.

        Raises:
            ConfigurationError: Invalid options or manifest, or a missing lock in frozen mode.
            FrozenMismatchError: Lock file out of sync while frozen.
            IntegrityError: Fetched content differs from the lock file.
            RefConflictError, CyclicDependencyError: Unresolvable graph.
            NetworkError: Remote failures.
        """
        frozen = options.frozen or os.environ.get(Constants.ENV_FROZEN) == "1"
        force = options.force
        if frozen and force:
            raise ConfigurationError("Cannot use --frozen and --force together (mutually exclusive)")

        root = Path(options.workspace_root)
        manifest = options.manifest or load_manifest(root / Constants.MANIFEST_FILE)
        lock_path = root / Constants.LOCK_FILE
        existing = load_lock_file(lock_path)

        if not manifest.remote_dependencies():
            logger.info("No dependencies declared in %s", Constants.MANIFEST_FILE)
            return InstallResult(lock=existing)

        if frozen:
            if existing is None:
                raise ConfigurationError(
                    "Lock file does not exist (--frozen mode)",
                    hint="Run `dlang install` without --frozen to create the lock file.",
                )
            added, removed, changed = _diff_manifest_against_lock(manifest, existing)
            if added or changed:
                raise FrozenMismatchError(added, removed, changed)
        if force:
            logger.info("Force mode: re-resolving and re-downloading all dependencies")

        if self._owns_client:
            await self._client.start()
        try:
            resolver, lock = await self._resolve(root, manifest, existing, force)
        finally:
            if self._owns_client:
                await self._client.stop()

        result = InstallResult(
            resolution_messages=resolver.get_resolution_messages(),
            override_messages=resolver.get_override_messages(),
            lock=lock,
        )
        for download in resolver.get_download_results().values():
            if download.from_cache:
                result.cached += 1
            else:
                result.installed += 1

        if existing is not None:
            result.warnings.extend(self._verify_integrity(lock, existing))

        if frozen and existing is not None:
            expected = {source: entry.ref for source, entry in lock.dependencies.items()}
            added, removed, changed = _diff_against_lock(expected, existing)
            if added or removed or changed:
                raise FrozenMismatchError(added, removed, changed)
        elif not frozen:
            result.lock_file_modified = self._persist_lock(lock_path, lock)

        logger.info(
            "Installed %d package(s), %d from cache", result.installed, result.cached
        )
        return result

    async def _resolve(
        self, root: Path, manifest: Manifest, existing: Optional[LockFile], force: bool
    ) -> Tuple[DependencyResolver, LockFile]:
        cache = PackageCache(root)
        downloader = PackageDownloader(self._client, cache, self._on_event)
        resolver = DependencyResolver(
            root,
            downloader,
            cache,
            manifest=manifest,
            locked=None if force else existing,
            force=force,
        )
        lock = await resolver.resolve_dependencies()
        return resolver, lock

    @staticmethod
    def _verify_integrity(lock: LockFile, existing: LockFile) -> List[str]:
        """Compare hashes for commits already present in the old lock.

        Returns:
            Warnings for legacy entries that had no integrity recorded.
        """
        warnings: List[str] = []
        for source, entry in lock.dependencies.items():
            previous = existing.dependencies.get(source)
            if previous is None or previous.commit != entry.commit:
                continue
            if not previous.integrity:
                warning = f"Dependency '{source}' has no integrity hash (legacy lock file)"
                logger.warning(warning)
                warnings.append(warning)
                continue
            if entry.integrity and not integrity_matches(previous.integrity, entry.integrity):
                raise IntegrityError(source, previous.integrity, entry.integrity)
        return warnings

    @staticmethod
    def _persist_lock(lock_path: Path, lock: LockFile) -> bool:
        """Write the lock file when its content changed; return whether it did."""
        content = render_lock_file(lock)
        if lock_path.is_file():
            with open(lock_path, "r", encoding="utf-8") as handle:
                if handle.read() == content:
                    return False
        write_lock_file(lock_path, lock)
        return True
