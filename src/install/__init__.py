"""Package installation core.

This package resolves a workspace's model.yaml into a conflict-free
dependency graph, fetches each package from GitHub into a content-addressed
cache under ``.dlang/packages`` and records the result in model.lock.
"""

from .cache import PackageCache
from .downloader import PackageDownloader
from .events import EventType, PackageEvent
from .models import (
    DependencySpec,
    DownloadResult,
    InstallOptions,
    InstallResult,
    LockedDependency,
    LockFile,
    Manifest,
    PackageMetadata,
)
from .resolver import DependencyResolver
from .service import InstallService

__all__ = [
    "PackageCache",
    "PackageDownloader",
    "EventType",
    "PackageEvent",
    "DependencySpec",
    "DownloadResult",
    "InstallOptions",
    "InstallResult",
    "LockedDependency",
    "LockFile",
    "Manifest",
    "PackageMetadata",
    "DependencyResolver",
    "InstallService",
]
