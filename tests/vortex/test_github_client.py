"""Unit tests for the async GitHub client, served by httpx.MockTransport."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List

import httpx
import pytest

from src.vortex.errors import UpstreamError
from src.vortex.github.client import GitHubAPIError, GitHubClient, RateLimitError


def run_async(coro):
    return asyncio.run(coro)


def _client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> GitHubClient:
    kwargs.setdefault("base_delay", 0)
    return GitHubClient(transport=httpx.MockTransport(handler), **kwargs)


def _call(client: GitHubClient, method: str, *args):
    async def scenario():
        async with client:
            return await getattr(client, method)(*args)

    return run_async(scenario())


class TestInstallationToken:

    def test_exchange_returns_token_and_expiry(self):
        seen: List[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                201, json={"token": "ghs_abc", "expires_at": "2025-06-01T12:00:00Z"}
            )

        token, expires_at = _call(_client(handler), "create_installation_token", "4242", "jwt")

        assert token == "ghs_abc"
        assert expires_at == datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/app/installations/4242/access_tokens"
        assert seen[0].headers["Authorization"] == "Bearer jwt"
        assert seen[0].headers["Accept"] == "application/vnd.github+json"

    def test_response_without_token_is_an_error(self):
        def handler(request):
            return httpx.Response(201, json={"expires_at": "2025-06-01T12:00:00Z"})

        with pytest.raises(GitHubAPIError):
            _call(_client(handler), "create_installation_token", "4242", "jwt")

    def test_unknown_installation_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(GitHubAPIError) as exc_info:
            _call(_client(handler), "create_installation_token", "9999", "jwt")

        assert exc_info.value.status_code == 404
        assert isinstance(exc_info.value, UpstreamError)
        assert len(calls) == 1


class TestPullRequestFiles:

    def test_follows_pagination(self):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            count = 100 if page == 1 else 7
            batch = [{"filename": f"f{page}_{i}.py"} for i in range(count)]
            return httpx.Response(200, json=batch)

        files = _call(_client(handler), "list_pull_request_files", "acme/api", 7, "ghs")

        assert len(files) == 107
        assert pages == [1, 2]

    def test_uses_installation_token(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer ghs_install"
            assert request.url.path == "/repos/acme/api/pulls/7/files"
            return httpx.Response(200, json=[])

        assert _call(_client(handler), "list_pull_request_files", "acme/api", 7, "ghs_install") == []


class TestCommit:

    def test_returns_commit_object(self):
        def handler(request):
            assert request.url.path == "/repos/acme/api/commits/abc123"
            return httpx.Response(200, json={"sha": "abc123", "files": [{"filename": "a.py"}]})

        commit = _call(_client(handler), "get_commit", "acme/api", "abc123", "ghs")

        assert commit["files"] == [{"filename": "a.py"}]


class TestRetries:

    def test_server_error_is_retried(self):
        responses = iter([httpx.Response(502), httpx.Response(200, json={"sha": "x"})])

        def handler(request):
            return next(responses)

        assert _call(_client(handler), "get_commit", "acme/api", "x", "ghs") == {"sha": "x"}

    def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(GitHubAPIError) as exc_info:
            _call(_client(handler, max_retries=2), "get_commit", "acme/api", "x", "ghs")

        assert exc_info.value.status_code == 503
        assert len(calls) == 3

    def test_connection_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"sha": "x"})

        assert _call(_client(handler), "get_commit", "acme/api", "x", "ghs") == {"sha": "x"}
        assert len(attempts) == 2

    def test_timeouts_surface_as_api_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GitHubAPIError):
            _call(_client(handler, max_retries=1), "get_commit", "acme/api", "x", "ghs")


class TestRateLimits:

    def test_429_raises_rate_limit_error(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "30"})

        with pytest.raises(RateLimitError) as exc_info:
            _call(_client(handler), "get_commit", "acme/api", "x", "ghs")

        assert exc_info.value.retry_after == 30

    def test_exhausted_quota_403_raises_rate_limit_error(self):
        def handler(request):
            return httpx.Response(
                403,
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
            )

        with pytest.raises(RateLimitError) as exc_info:
            _call(_client(handler), "get_commit", "acme/api", "x", "ghs")

        assert exc_info.value.reset_at == 1700000000

    def test_plain_403_is_an_api_error(self):
        def handler(request):
            return httpx.Response(403, json={"message": "Resource not accessible"})

        with pytest.raises(GitHubAPIError) as exc_info:
            _call(_client(handler), "get_commit", "acme/api", "x", "ghs")

        assert not isinstance(exc_info.value, RateLimitError)
