"""GitHub API access for the review pipeline.

Wraps the GitHub REST endpoints used by the GitHub App:
installation token exchange, pull request files and commit diffs.
"""

from src.vortex.github.client import GitHubAPIError, GitHubClient, RateLimitError

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "RateLimitError",
]
