"""GitHub webhook ingest.

Deliveries are verified against the X-Hub-Signature-256 HMAC before the
body is parsed, then classified into pr.created, pr.updated or
commit.pushed events. Everything else is acknowledged and dropped.
"""

from .handler import WebhookIngestor
from .models import GitHubEventKind, PullRequestAction, WebhookOutcome, WebhookResult
from .signature import compute_signature, verify

__all__ = [
    "GitHubEventKind",
    "PullRequestAction",
    "WebhookIngestor",
    "WebhookOutcome",
    "WebhookResult",
    "compute_signature",
    "verify",
]
