"""Tests for the GitHub REST client."""

import asyncio

import pytest

from common.errors import AuthenticationError, NetworkError
from repository.credentials import Credentials, StaticCredentialProvider, authorization_header
from repository.github import GitHubClient

from fakes import no_sleep


class _DummyResponse:
    def __init__(self, status=200, payload=None, headers=None, url="https://api.github.com/x"):
        self.status = status
        self._payload = payload
        self.headers = headers or {}
        self.url = url

    async def json(self, content_type=None):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _DummySession:
    """Returns scripted responses and records each request."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    def get(self, url, headers=None):
        self.requests.append((url, dict(headers or {})))
        return self._responses.pop(0)


def _client(session, credentials=None):
    return GitHubClient(credentials, session=session, sleep=no_sleep)


class TestCredentials:
    def test_bearer_header(self):
        """Ensure a token becomes a Bearer header."""
        assert authorization_header(Credentials(token="t0k")) == "Bearer t0k"

    def test_basic_header(self):
        """Ensure username and password become a Basic header."""
        assert authorization_header(Credentials(username="user", password="pass")) == "Basic dXNlcjpwYXNz"

    def test_no_credentials(self):
        """Ensure missing credentials give no header."""
        assert authorization_header(None) is None
        assert authorization_header(Credentials()) is None

    def test_repr_hides_token(self):
        """Ensure the token never appears in the repr."""
        assert "secret" not in repr(Credentials(token="secret"))


class TestGitHubClientRequests:
    """Tests for request construction."""

    def test_headers_with_token(self):
        """Ensure token requests carry bearer auth and GitHub API headers."""
        session = _DummySession([_DummyResponse(payload={"sha": "a" * 40})])
        client = _client(session, StaticCredentialProvider.from_token("t0k"))

        status, _, data = asyncio.run(client.get_commit("org", "repo", "v1.0.0"))

        assert status == 200 and data["sha"] == "a" * 40
        url, headers = session.requests[0]
        assert url == "https://api.github.com/repos/org/repo/commits/v1.0.0"
        assert headers["Authorization"] == "Bearer t0k"
        assert headers["Accept"] == "application/vnd.github+json"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"

    def test_anonymous_requests_omit_authorization(self):
        """Ensure anonymous providers send no Authorization header."""
        session = _DummySession([_DummyResponse(payload={"sha": "b" * 40})])
        client = _client(session, StaticCredentialProvider.from_token(None))
        asyncio.run(client.get_commit("org", "repo", "main"))
        assert "Authorization" not in session.requests[0][1]

    def test_branch_with_slash_is_encoded(self):
        """Ensure slashes in branch names are percent-encoded."""
        session = _DummySession([_DummyResponse(status=404)])
        client = _client(session)
        status, _, data = asyncio.run(client.get_commit("org", "repo", "feature/foo"))
        assert status == 404 and data is None
        assert session.requests[0][0].endswith("/commits/feature%2Ffoo")

    def test_tarball_url(self):
        """Ensure tarball URLs follow the configured API base."""
        client = GitHubClient(base_url="https://ghe.example.com/api/v3/")
        assert client.tarball_url("o", "r", "abc") == "https://ghe.example.com/api/v3/repos/o/r/tarball/abc"


class TestGitHubClientErrors:
    """Tests for status handling."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failure(self, status):
        """Ensure 401 and 403 raise AuthenticationError with remediation hints."""
        session = _DummySession([_DummyResponse(status=status)])
        with pytest.raises(AuthenticationError) as excinfo:
            asyncio.run(_client(session).get_commit("org", "private", "v1.0.0"))
        message = str(excinfo.value)
        assert f"Authentication failed for 'org/private' (HTTP {status})" in message
        assert "GITHUB_TOKEN" in message
        assert "gh auth login" in message

    def test_exhausted_quota_is_not_auth_failure(self):
        """Ensure a 403 with no quota left is a rate-limit error, not an auth error."""
        headers = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"}
        session = _DummySession([_DummyResponse(status=403, headers=headers)])
        with pytest.raises(NetworkError) as excinfo:
            asyncio.run(_client(session).get_commit("org", "repo", "v1.0.0"))
        assert not isinstance(excinfo.value, AuthenticationError)
        assert "rate limit" in str(excinfo.value)

    def test_server_error_is_retried(self):
        """Ensure a 5xx on the commits endpoint is retried."""
        session = _DummySession([
            _DummyResponse(status=502),
            _DummyResponse(payload={"sha": "c" * 40}),
        ])
        status, _, data = asyncio.run(_client(session).get_commit("org", "repo", "v1.0.0"))
        assert status == 200 and data["sha"] == "c" * 40
        assert len(session.requests) == 2


class TestRateLimit:
    """Tests for rate-limit reporting."""

    def test_low_quota_notifies_listener(self):
        """Ensure a low remaining quota is passed to listeners with its reset time."""
        headers = {"x-ratelimit-remaining": "5", "x-ratelimit-reset": "1700000000"}
        session = _DummySession([_DummyResponse(payload={"sha": "d" * 40}, headers=headers)])
        client = _client(session)
        seen = []
        client.add_rate_limit_listener(lambda remaining, reset_at: seen.append((remaining, reset_at)))

        asyncio.run(client.get_commit("org", "repo", "v1.0.0"))

        assert len(seen) == 1
        remaining, reset_at = seen[0]
        assert remaining == 5
        assert int(reset_at.timestamp()) == 1700000000

    def test_healthy_quota_is_silent(self):
        """Ensure a comfortable quota triggers no notification."""
        headers = {"x-ratelimit-remaining": "4999", "x-ratelimit-reset": "1700000000"}
        session = _DummySession([_DummyResponse(payload={"sha": "e" * 40}, headers=headers)])
        client = _client(session)
        seen = []
        client.add_rate_limit_listener(lambda *args: seen.append(args))
        asyncio.run(client.get_commit("org", "repo", "v1.0.0"))
        assert seen == []


class TestSessionLifecycle:
    def test_external_session_not_closed(self):
        """Ensure a caller-provided session survives the client context."""
        closed = []

        class _Session(_DummySession):
            async def close(self):
                closed.append(True)

        client = GitHubClient(session=_Session([]))

        async def run():
            async with client:
                pass

        asyncio.run(run())
        assert closed == []

    def test_owned_session_created_and_closed(self):
        """Ensure a client without a session opens one on start and closes it on stop."""
        client = GitHubClient()

        async def run():
            await client.start()
            session = client._session
            await client.stop()
            return session

        session = asyncio.run(run())
        assert session is not None
        assert session.closed
        assert client._session is None
