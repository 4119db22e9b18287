"""Shared fixtures for the install tests."""

import pytest

from constants import Constants

from fakes import FakeGitHubClient


@pytest.fixture(autouse=True)
def _no_frozen_env(monkeypatch):
    """Keep a developer's DLANG_FROZEN from leaking into tests."""
    monkeypatch.delenv(Constants.ENV_FROZEN, raising=False)


@pytest.fixture
def github():
    return FakeGitHubClient()


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    return root
