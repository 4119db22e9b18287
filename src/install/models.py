"""Data models for manifests, lock files and install results."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from constants import Constants, RefType


@dataclass
class DependencySpec:
    """One manifest dependency; remote when ``source`` is set, local when ``path`` is."""
    name: str
    source: Optional[str] = None
    ref: Optional[str] = None
    path: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.path is not None and self.source is None

    @property
    def owner(self) -> str:
        return (self.source or "").split("/", 1)[0]

    @property
    def repo(self) -> str:
        return (self.source or "").split("/", 1)[-1]


@dataclass
class Manifest:
    """Parsed model.yaml; dependencies keep declaration order."""
    name: Optional[str] = None
    version: Optional[str] = None
    dependencies: Dict[str, DependencySpec] = field(default_factory=dict)
    overrides: Dict[str, str] = field(default_factory=dict)

    def remote_dependencies(self) -> List[DependencySpec]:
        return [dep for dep in self.dependencies.values() if not dep.is_local]


@dataclass
class LockedDependency:
    """Lock-file entry for one source."""
    ref: str
    ref_type: RefType
    resolved: str
    commit: str
    integrity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ref": self.ref,
            "refType": self.ref_type.value,
            "resolved": self.resolved,
            "commit": self.commit,
        }
        if self.integrity:
            data["integrity"] = self.integrity
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockedDependency":
        return cls(
            ref=str(data["ref"]),
            ref_type=RefType(data.get("refType", RefType.TAG.value)),
            resolved=str(data.get("resolved", "")),
            commit=str(data["commit"]),
            integrity=data.get("integrity") or None,
        )


@dataclass
class LockFile:
    """Pinned dependency graph keyed by ``owner/repo``."""
    version: str = Constants.LOCK_FILE_VERSION
    dependencies: Dict[str, LockedDependency] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "dependencies": {
                source: self.dependencies[source].to_dict()
                for source in sorted(self.dependencies)
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockFile":
        deps = data.get("dependencies") or {}
        return cls(
            version=str(data.get("version", Constants.LOCK_FILE_VERSION)),
            dependencies={
                source: LockedDependency.from_dict(entry) for source, entry in deps.items()
            },
        )


@dataclass
class PackageMetadata:
    """Sidecar stored next to each cache entry."""
    integrity: str
    resolved: str
    commit_sha: str

    def to_dict(self) -> Dict[str, str]:
        return {"integrity": self.integrity, "resolved": self.resolved, "commitSha": self.commit_sha}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageMetadata":
        return cls(
            integrity=str(data["integrity"]),
            resolved=str(data.get("resolved", "")),
            commit_sha=str(data["commitSha"]),
        )


@dataclass
class DownloadResult:
    """Outcome of materializing one package."""
    commit_sha: str
    integrity: str
    path: Path
    resolved: str
    from_cache: bool = False


@dataclass
class InstallOptions:
    """Options for one install run."""
    workspace_root: Path
    frozen: bool = False
    force: bool = False
    manifest: Optional[Manifest] = None


@dataclass
class InstallResult:
    """Summary of an install run."""
    installed: int = 0
    cached: int = 0
    lock_file_modified: bool = False
    warnings: List[str] = field(default_factory=list)
    resolution_messages: List[str] = field(default_factory=list)
    override_messages: List[str] = field(default_factory=list)
    lock: Optional[LockFile] = None
