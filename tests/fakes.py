"""In-memory stand-ins for GitHub used across the install tests."""

from __future__ import annotations

import base64
import hashlib
import io
import tarfile
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

from common.http_client import TransientHTTPError


def make_tarball(files: Dict[str, str], top: str = "owner-repo-0000000") -> bytes:
    """Build a gzipped tarball wrapping ``files`` in a single top-level directory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        root = tarfile.TarInfo(top)
        root.type = tarfile.DIRTYPE
        root.mode = 0o755
        archive.addfile(root)
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def fake_sha(source: str, ref: str) -> str:
    return hashlib.sha1(f"{source}@{ref}".encode("utf-8")).hexdigest()


def sri_sha512(data: bytes) -> str:
    """Expected integrity string for ``data``."""
    return "sha512-" + base64.b64encode(hashlib.sha512(data).digest()).decode("ascii")


class StubContent:
    """Mimics aiohttp's StreamReader.iter_chunked."""

    def __init__(self, data: bytes, cut_at: Optional[int] = None):
        self._data = data if cut_at is None else data[:cut_at]

    async def iter_chunked(self, size: int):
        for start in range(0, len(self._data), size):
            yield self._data[start:start + size]


class StubTarballResponse:
    def __init__(self, status: int = 200, data: bytes = b"", *, reason: str = "OK",
                 content_length: Optional[int] = None, body: bool = True,
                 cut_at: Optional[int] = None):
        self.status = status
        self.reason = reason
        self.content = StubContent(data, cut_at) if body else None
        self.content_length = len(data) if content_length is None else content_length


class FakeGitHubClient:
    """Serves published packages from memory with scriptable failures."""

    def __init__(self):
        self.commits: Dict[Tuple[str, str], str] = {}
        self.tarballs: Dict[Tuple[str, str], bytes] = {}
        self.commit_status: Dict[Tuple[str, str], int] = {}
        self.tarball_failures: Dict[str, List[int]] = {}
        self.tarball_responses: Dict[str, List[StubTarballResponse]] = {}
        self.commit_calls: List[Tuple[str, str]] = []
        self.tarball_calls: List[Tuple[str, str]] = []
        self.listeners = []
        self.started = 0
        self.stopped = 0

    def publish(self, source: str, ref: str, files: Dict[str, str]) -> str:
        """Register ``source@ref`` with the given file contents; returns its commit."""
        sha = fake_sha(source, ref)
        owner, repo = source.split("/")
        self.commits[(source, ref)] = sha
        self.commits[(source, sha)] = sha
        self.tarballs[(source, sha)] = make_tarball(files, top=f"{owner}-{repo}-{sha[:7]}")
        return sha

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    def add_rate_limit_listener(self, listener) -> None:
        self.listeners.append(listener)

    def tarball_url(self, owner: str, repo: str, commit: str) -> str:
        return f"https://api.github.com/repos/{owner}/{repo}/tarball/{commit}"

    async def get_commit(self, owner: str, repo: str, ref: str):
        source = f"{owner}/{repo}"
        self.commit_calls.append((source, ref))
        status = self.commit_status.get((source, ref))
        if status is not None:
            return status, {}, None
        sha = self.commits.get((source, ref))
        if sha is None:
            return 404, {}, None
        return 200, {}, {"sha": sha}

    @asynccontextmanager
    async def open_tarball(self, owner: str, repo: str, commit: str):
        source = f"{owner}/{repo}"
        self.tarball_calls.append((source, commit))
        failures = self.tarball_failures.get(source)
        if failures:
            raise TransientHTTPError(failures.pop(0), self.tarball_url(owner, repo, commit))
        scripted = self.tarball_responses.get(source)
        if scripted:
            yield scripted.pop(0)
            return
        data = self.tarballs.get((source, commit))
        if data is None:
            yield StubTarballResponse(404, reason="Not Found")
            return
        yield StubTarballResponse(200, data)


async def no_sleep(_delay: float) -> None:
    return None
