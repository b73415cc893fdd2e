"""GitHub REST client for the GitHub App flows the pipeline uses.

This module provides an async wrapper around the GitHub API for:
- Exchanging an app JWT for an installation access token
- Listing the files changed by a pull request
- Fetching a single commit with its file diffs

Includes rate limit handling and retry logic for API resilience. Every
request is bounded by the client timeout; a request that still times out
after all retries surfaces as GitHubAPIError.
"""

import asyncio
import random
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from src.vortex.errors import UpstreamError


logger = structlog.get_logger(__name__)


class GitHubAPIError(UpstreamError):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        super().__init__(message, service="github", status_code=status_code)
        self.response_body = response_body
        self.request_url = request_url


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    Unlike a personal-token client, every call takes the bearer token to
    use: the app JWT for the installation token exchange, and an
    installation token for repository reads.

    Attributes:
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient() as client:
        ...     files = await client.list_pull_request_files(
        ...         "octo/repo", 7, token=installation_token
        ...     )
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    # GitHub caps pull request file listings at 3000 files
    PER_PAGE = 100
    MAX_PAGES = 30

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (for testing).
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "vortex-ai-github-app",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        capped_delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, capped_delay)

    @staticmethod
    def _parse_int_header(headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _rate_limit_error(self, response: httpx.Response) -> RateLimitError:
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))
        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
            path=response.request.url.path,
        )
        return RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.request.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an authenticated HTTP request with retry logic.

        Args:
            method: HTTP method.
            path: API path (e.g., /repos/owner/repo/pulls/1/files).
            token: Bearer token for this request.
            params: Optional query parameters.

        Returns:
            The successful HTTP response.

        Raises:
            RateLimitError: If rate limit is exceeded.
            GitHubAPIError: If the request fails or times out after all retries.
        """
        last_exception: Optional[Exception] = None
        headers = {"Authorization": f"Bearer {token}"}

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    params=params,
                    headers=headers,
                )
            except httpx.TimeoutException as e:
                last_exception = e
                reason = "timeout"
            except httpx.RequestError as e:
                last_exception = e
                reason = "request_error"
            else:
                if response.status_code == 429 or (
                    response.status_code == 403
                    and self._parse_int_header(
                        response.headers, "x-ratelimit-remaining"
                    ) == 0
                ):
                    raise self._rate_limit_error(response)

                if (
                    response.status_code in self.RETRYABLE_STATUS_CODES
                    and attempt < self.max_retries
                ):
                    reason = f"status_{response.status_code}"
                else:
                    if response.status_code >= 400:
                        error_body = response.text
                        logger.error(
                            "GitHub API error",
                            status_code=response.status_code,
                            path=path,
                            method=method,
                            response_body=error_body[:500],
                        )
                        raise GitHubAPIError(
                            message=f"GitHub API error: {response.status_code}",
                            status_code=response.status_code,
                            response_body=error_body,
                            request_url=str(response.url),
                        )
                    return response

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Retrying GitHub API request",
                    reason=reason,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    path=path,
                )
                await asyncio.sleep(delay)

        logger.error(
            "GitHub API request failed after all retries",
            path=path,
            method=method,
            max_retries=self.max_retries,
            last_error=str(last_exception),
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    async def create_installation_token(
        self,
        installation_id: str,
        app_jwt: str,
    ) -> Tuple[str, datetime]:
        """Exchange an app JWT for an installation access token.

        Args:
            installation_id: GitHub App installation id.
            app_jwt: Signed app assertion.

        Returns:
            Tuple of (token, absolute expiry).

        Raises:
            GitHubAPIError: If GitHub rejects the exchange or is unreachable,
                or the response lacks a token.
        """
        path = f"/app/installations/{installation_id}/access_tokens"
        response = await self._request("POST", path, token=app_jwt)

        data = response.json()
        token = data.get("token")
        expires_at = data.get("expires_at")
        if not token or not expires_at:
            raise GitHubAPIError(
                message="Installation token response is missing token or expires_at",
                status_code=response.status_code,
                request_url=str(response.url),
            )

        return token, datetime.fromisoformat(expires_at.replace("Z", "+00:00"))

    async def list_pull_request_files(
        self,
        repo: str,
        number: int,
        token: str,
    ) -> List[Dict[str, Any]]:
        """List the files changed by a pull request, following pagination.

        Args:
            repo: Full repository name, "{owner}/{name}".
            number: Pull request number.
            token: Installation access token.

        Returns:
            Raw file entries from the GitHub API.

        Raises:
            GitHubAPIError: If any page request fails.
        """
        path = f"/repos/{repo}/pulls/{number}/files"
        files: List[Dict[str, Any]] = []

        for page in range(1, self.MAX_PAGES + 1):
            response = await self._request(
                "GET",
                path,
                token=token,
                params={"per_page": self.PER_PAGE, "page": page},
            )
            batch = response.json()
            if not isinstance(batch, list):
                break
            files.extend(batch)
            if len(batch) < self.PER_PAGE:
                break

        logger.info(
            "Fetched pull request files",
            repo=repo,
            number=number,
            file_count=len(files),
        )
        return files

    async def get_commit(self, repo: str, sha: str, token: str) -> Dict[str, Any]:
        """Fetch a single commit including its file diffs.

        Args:
            repo: Full repository name, "{owner}/{name}".
            sha: Commit SHA.
            token: Installation access token.

        Returns:
            The commit object from the GitHub API.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request("GET", f"/repos/{repo}/commits/{sha}", token=token)
        data = response.json()
        return data if isinstance(data, dict) else {}
