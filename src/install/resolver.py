"""Transitive dependency resolution producing a lock file.

The walk is depth-first over an explicit stack, in manifest declaration
order. Each source (``owner/repo``) has one chosen ref at a time; when a
second dependent requests a different ref the two are reconciled:

* an override in the root manifest always wins;
* two semver tags with the same major resolve to the higher one;
* everything else (major mismatch, tag vs branch, different branches,
  commits) is a conflict the user must settle with an override.

A source whose chosen ref changes after it was expanded is fetched again at
the new ref and its own dependencies are walked again.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Deque, Dict, List, Optional, Set, Tuple

from constants import Constants, RefType
from common.errors import CyclicDependencyError, PackageError, RefConflictError
from versioning.semver import compare_semver, detect_ref_type, parse_ref
from .cache import PackageCache
from .downloader import PackageDownloader
from .manifest import load_manifest
from .models import DownloadResult, LockedDependency, LockFile, Manifest

logger = logging.getLogger(__name__)

Edge = Tuple[str, str]


class _VisitState(Enum):
    UNVISITED = "unvisited"
    IN_PROGRESS = "in-progress"
    DONE = "done"


@dataclass
class _Node:
    source: str
    ref: str
    state: _VisitState = _VisitState.UNVISITED
    result: Optional[DownloadResult] = None
    children: List[Edge] = field(default_factory=list)


@dataclass
class _Frame:
    node: _Node
    pending: Deque[Edge]


class DependencyResolver:
    """Resolves the workspace manifest into a conflict-free LockFile."""

    def __init__(
        self,
        workspace_root: Path,
        downloader: PackageDownloader,
        cache: PackageCache,
        *,
        manifest: Optional[Manifest] = None,
        locked: Optional[LockFile] = None,
        force: bool = False,
    ):
        """Initialize the resolver.

        Args:
            workspace_root: Directory holding the root model.yaml.
            downloader: Materializes packages.
            cache: Package cache shared with the downloader.
            manifest: Pre-parsed root manifest; read from disk when omitted.
            locked: Previous lock file; its commits are reused for unchanged refs.
            force: Re-download packages even when cached.
        """
        self.workspace_root = Path(workspace_root)
        self._downloader = downloader
        self._cache = cache
        self._manifest = manifest
        self._locked = locked
        self._force = force

        self._overrides: Dict[str, str] = {}
        self._nodes: Dict[str, _Node] = {}
        self._materialized: Dict[Edge, DownloadResult] = {}
        self._overridden: Set[str] = set()
        self._resolution_messages: List[str] = []
        self._override_messages: List[str] = []
        self._download_results: Dict[str, DownloadResult] = {}

    def get_resolution_messages(self) -> List[str]:
        """Messages describing conflicts settled by picking the latest version."""
        return list(self._resolution_messages)

    def get_override_messages(self) -> List[str]:
        """One message per source whose requested ref was replaced by an override."""
        return list(self._override_messages)

    def get_download_results(self) -> Dict[str, DownloadResult]:
        """Download results of the last run, keyed by source."""
        return dict(self._download_results)

    async def resolve_dependencies(self) -> LockFile:
        """Walk the dependency graph and return the resulting lock file.

        Raises:
            ConfigurationError: Invalid root or package manifest.
            RefConflictError: Irreconcilable refs for a source.
            CyclicDependencyError: A package depends on itself transitively.
            NetworkError: A package could not be fetched.
        """
        manifest = self._manifest
        if manifest is None:
            manifest = load_manifest(self.workspace_root / Constants.MANIFEST_FILE)

        self._overrides = dict(manifest.overrides)
        self._nodes = {}
        self._materialized = {}
        self._overridden = set()
        self._resolution_messages = []
        self._override_messages = []
        self._download_results = {}

        roots: List[Edge] = [
            (dep.source, dep.ref) for dep in manifest.remote_dependencies()
            if dep.source and dep.ref
        ]
        for source, ref in roots:
            await self._walk(source, ref)

        lock = self._build_lock(roots)
        logger.debug(
            "Resolved %d packages (%d resolution messages, %d overrides)",
            len(lock.dependencies),
            len(self._resolution_messages),
            len(self._override_messages),
        )
        return lock

    async def _walk(self, source: str, ref: str) -> None:
        node = self._request(source, ref, [])
        if node is None:
            return
        stack: List[_Frame] = [await self._enter(node)]
        while stack:
            frame = stack[-1]
            if not frame.pending:
                frame.node.state = _VisitState.DONE
                stack.pop()
                continue
            child_source, child_ref = frame.pending.popleft()
            path = [f.node.source for f in stack]
            child = self._request(child_source, child_ref, path)
            if child is not None:
                stack.append(await self._enter(child))

    def _request(self, source: str, ref: str, path: List[str]) -> Optional[_Node]:
        """Record a request for ``source@ref``; return the node when it needs expanding."""
        node = self._nodes.get(source)
        if node is None:
            node = _Node(source=source, ref=self._apply_override(source, ref))
            self._nodes[source] = node
            return node
        if node.state is _VisitState.IN_PROGRESS:
            cycle = path[path.index(source):] if source in path else list(path)
            raise CyclicDependencyError(cycle + [source])
        chosen = self._reconcile(source, node.ref, ref)
        if chosen == node.ref:
            return None
        logger.debug("Re-resolving %s at %s (was %s)", source, chosen, node.ref)
        node.ref = chosen
        node.state = _VisitState.UNVISITED
        return node

    async def _enter(self, node: _Node) -> _Frame:
        node.state = _VisitState.IN_PROGRESS
        result = await self._materialize(node.source, node.ref)
        node.result = result
        package_manifest = load_manifest(Path(result.path) / Constants.MANIFEST_FILE, required=False)
        if package_manifest is None:
            node.children = []
        else:
            node.children = [
                (dep.source, dep.ref) for dep in package_manifest.remote_dependencies()
                if dep.source and dep.ref
            ]
        return _Frame(node=node, pending=deque(node.children))

    async def _materialize(self, source: str, ref: str) -> DownloadResult:
        key = (source, ref)
        if key in self._materialized:
            return self._materialized[key]
        owner, repo = source.split("/", 1)
        commit = None
        if self._locked is not None and not self._force:
            entry = self._locked.dependencies.get(source)
            if entry is not None and entry.ref == ref:
                commit = entry.commit
        result = await self._downloader.download(owner, repo, ref, commit=commit, force=self._force)
        self._materialized[key] = result
        return result

    def _apply_override(self, source: str, requested: str) -> str:
        override = self._overrides.get(source)
        if override is None:
            return requested
        if requested != override and source not in self._overridden:
            self._overridden.add(source)
            message = f"Override applied: {source} pinned to {override} (requested {requested})"
            self._override_messages.append(message)
            logger.info(message)
        return override

    def _reconcile(self, source: str, current: str, requested: str) -> str:
        """Pick the ref for ``source`` given its current choice and a new request."""
        if source in self._overrides:
            return self._apply_override(source, requested)
        if current == requested:
            return current

        cur = parse_ref(current)
        req = parse_ref(requested)
        hint = (
            f"Add an override in {Constants.MANIFEST_FILE} to resolve this ref conflict:\n"
            f"  overrides:\n    {source}: <ref>"
        )

        if cur.semver is not None and req.semver is not None:
            if cur.semver.major != req.semver.major:
                raise RefConflictError(
                    f"Major version mismatch for '{source}': {current} vs {requested}. "
                    "Cannot auto-resolve this ref conflict across major versions.",
                    source=source,
                    refs=[current, requested],
                    hint=hint,
                )
            order = compare_semver(cur.semver, req.semver)
            if order == 0:
                return current
            winner = current if order > 0 else requested
            message = (
                f"Resolved {source}: {current} vs {requested} -> {winner} (latest wins)"
            )
            self._resolution_messages.append(message)
            logger.info(message)
            return winner

        types = {cur.type, req.type}
        if types == {RefType.TAG, RefType.BRANCH}:
            raise RefConflictError(
                f"Cannot mix ref types for '{source}': "
                f"{current} ({cur.type.value}) vs {requested} ({req.type.value})",
                source=source,
                refs=[current, requested],
                hint=hint,
            )
        if types == {RefType.BRANCH}:
            raise RefConflictError(
                f"Different branch refs for '{source}': {current} vs {requested}",
                source=source,
                refs=[current, requested],
                hint=hint,
            )
        raise RefConflictError(
            f"Unresolvable ref conflict for '{source}': "
            f"{current} ({cur.type.value}) vs {requested} ({req.type.value})",
            source=source,
            refs=[current, requested],
            hint=hint,
        )

    def _build_lock(self, roots: List[Edge]) -> LockFile:
        """Collect sources reachable through the chosen refs' edges."""
        reachable: List[str] = []
        seen: Set[str] = set()
        queue: Deque[str] = deque(source for source, _ in roots)
        while queue:
            source = queue.popleft()
            if source in seen:
                continue
            seen.add(source)
            reachable.append(source)
            queue.extend(child for child, _ in self._nodes[source].children)

        dependencies: Dict[str, LockedDependency] = {}
        for source in sorted(reachable):
            node = self._nodes[source]
            result = node.result
            if result is None:
                raise PackageError(f"Package '{source}' was reached but never materialized")
            dependencies[source] = LockedDependency(
                ref=node.ref,
                ref_type=detect_ref_type(node.ref),
                resolved=result.resolved,
                commit=result.commit_sha,
                integrity=result.integrity or None,
            )
            self._download_results[source] = result
        return LockFile(version=Constants.LOCK_FILE_VERSION, dependencies=dependencies)
