"""Error taxonomy for dependency installation.

Every error carries an exit code so a front end can map failures without
inspecting message text, and a ``to_dict`` view for structured reporting.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from constants import ExitCodes


class PackageError(Exception):
    """Base class for package-manager failures."""

    exit_code = ExitCodes.FILE_ERROR

    def __init__(self, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n{self.hint}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable view of the error."""
        data: Dict[str, Any] = {"type": type(self).__name__, "message": self.message}
        if self.hint:
            data["hint"] = self.hint
        return data


class ConfigurationError(PackageError):
    """Invalid options, manifest content or missing required files."""

    exit_code = ExitCodes.CONFIGURATION_ERROR


class RefConflictError(PackageError):
    """Two dependents require incompatible refs of the same source."""

    exit_code = ExitCodes.RESOLUTION_ERROR

    def __init__(self, message: str, *, source: str, refs: Sequence[str], hint: Optional[str] = None):
        super().__init__(message, hint=hint)
        self.source = source
        self.refs = list(refs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"source": self.source, "refs": self.refs})
        return data


class CyclicDependencyError(PackageError):
    """The package graph contains a cycle."""

    exit_code = ExitCodes.RESOLUTION_ERROR

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic package dependency detected: {' -> '.join(self.cycle)}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["cycle"] = self.cycle
        return data


class FrozenMismatchError(PackageError):
    """Lock file does not match the manifest while running frozen."""

    exit_code = ExitCodes.FROZEN_MISMATCH

    def __init__(
        self,
        added: Sequence[str],
        removed: Sequence[str],
        changed: Sequence[Tuple[str, str, str]],
    ):
        self.added = list(added)
        self.removed = list(removed)
        self.changed = list(changed)
        lines: List[str] = ["Lock file is out of sync with model.yaml (--frozen mode)"]
        for entry in self.added:
            lines.append(f"  + {entry}")
        for entry in self.removed:
            lines.append(f"  - {entry}")
        for source, manifest_ref, lock_ref in self.changed:
            lines.append(f"  ~ {source}: {lock_ref} -> {manifest_ref}")
        super().__init__(
            "\n".join(lines),
            hint="Run `dlang install` without --frozen to update the lock file.",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "added": self.added,
            "removed": self.removed,
            "changed": [
                {"package": source, "manifestRef": manifest_ref, "lockRef": lock_ref}
                for source, manifest_ref, lock_ref in self.changed
            ],
        })
        return data


class IntegrityError(PackageError):
    """Downloaded content hash differs from the lock file."""

    exit_code = ExitCodes.INTEGRITY_ERROR

    def __init__(self, package: str, expected: str, actual: str):
        self.package = package
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Integrity check failed for '{package}'\n  expected: {expected}\n  actual:   {actual}",
            hint="The package content may have been tampered with. Re-run with --force to refetch.",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"package": self.package, "expected": self.expected, "actual": self.actual})
        return data


class NetworkError(PackageError):
    """Failure talking to the remote repository host."""

    exit_code = ExitCodes.CONNECTION_ERROR

    def __init__(
        self,
        message: str,
        *,
        package: Optional[str] = None,
        status: Optional[int] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message, hint=hint)
        self.package = package
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.package:
            data["package"] = self.package
        if self.status is not None:
            data["status"] = self.status
        return data


class AuthenticationError(NetworkError):
    """The host rejected the request credentials (HTTP 401/403)."""

    def __init__(self, package: str, status: int):
        super().__init__(
            f"Authentication failed for '{package}' (HTTP {status})",
            package=package,
            status=status,
            hint=(
                "For private repositories, provide credentials:\n"
                "  - set the GITHUB_TOKEN environment variable\n"
                "  - or run `gh auth login`\n"
                "  - or configure a git credential helper"
            ),
        )


class RefNotFoundError(NetworkError):
    """The ref does not name a tag, branch or commit of the repository."""


class MaxRetriesExceededError(NetworkError):
    """Transient failures persisted past the retry budget."""

    def __init__(self, attempts: int, last_error: Optional[BaseException], *, package: Optional[str] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Maximum retry attempts ({attempts}) exceeded. Last error: {last_error}",
            package=package,
            status=getattr(last_error, "status", None),
        )


class CacheError(PackageError):
    """Local cache could not be written or read."""
