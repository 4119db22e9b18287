"""Tests for the error taxonomy and integrity helpers."""

import hashlib

from common.errors import (
    AuthenticationError,
    CacheError,
    ConfigurationError,
    CyclicDependencyError,
    FrozenMismatchError,
    IntegrityError,
    MaxRetriesExceededError,
    RefConflictError,
)
from common.http_client import TransientHTTPError
from constants import ExitCodes
from install.integrity import format_integrity, integrity_matches

from fakes import sri_sha512


class TestExitCodes:
    def test_each_error_maps_to_exit_code(self):
        """Ensure every error family carries its own exit code."""
        assert ConfigurationError("x").exit_code is ExitCodes.CONFIGURATION_ERROR
        assert CyclicDependencyError(["a", "a"]).exit_code is ExitCodes.RESOLUTION_ERROR
        assert FrozenMismatchError([], [], []).exit_code is ExitCodes.FROZEN_MISMATCH
        assert IntegrityError("o/r", "a", "b").exit_code is ExitCodes.INTEGRITY_ERROR
        assert AuthenticationError("o/r", 401).exit_code is ExitCodes.CONNECTION_ERROR
        assert CacheError("x").exit_code is ExitCodes.FILE_ERROR


class TestErrorReporting:
    """Tests for messages and the to_dict view."""

    def test_ref_conflict_to_dict(self):
        """Ensure the hint is appended to the message and exported."""
        err = RefConflictError("conflict", source="org/core", refs=["v1.0.0", "v2.0.0"], hint="override")
        assert str(err) == "conflict\noverride"
        assert err.to_dict() == {
            "type": "RefConflictError",
            "message": "conflict",
            "hint": "override",
            "source": "org/core",
            "refs": ["v1.0.0", "v2.0.0"],
        }

    def test_frozen_mismatch_lists_divergences(self):
        """Ensure added, removed and changed entries each get a line."""
        err = FrozenMismatchError(["org/new@v1.0.0"], ["org/old"], [("org/core", "v1.1.0", "v1.0.0")])
        lines = err.message.splitlines()
        assert lines == [
            "Lock file is out of sync with model.yaml (--frozen mode)",
            "  + org/new@v1.0.0",
            "  - org/old",
            "  ~ org/core: v1.0.0 -> v1.1.0",
        ]
        assert err.to_dict()["changed"] == [
            {"package": "org/core", "manifestRef": "v1.1.0", "lockRef": "v1.0.0"}
        ]

    def test_max_retries_carries_last_status(self):
        """Ensure the last HTTP status survives retry exhaustion."""
        err = MaxRetriesExceededError(3, TransientHTTPError(502, "u"), package="org/core")
        assert err.status == 502
        assert err.to_dict()["package"] == "org/core"
        assert str(err).startswith("Maximum retry attempts (3) exceeded. Last error: HTTP 502")


class TestIntegrity:
    def test_format(self):
        """Ensure digests render as sha512-<base64>."""
        data = b"package bytes"
        assert format_integrity(hashlib.sha512(data).digest()) == sri_sha512(data)

    def test_matches(self):
        """Ensure equal strings match and any difference does not."""
        value = sri_sha512(b"abc")
        assert integrity_matches(value, value)
        assert not integrity_matches(value, sri_sha512(b"abd"))
        assert not integrity_matches(value, "sha512-")
