"""GitHub webhook classification models.

Only two GitHub events start the review pipeline:

- ``pull_request`` with action ``opened`` (pr.created) or
  ``synchronize`` (pr.updated)
- ``push`` (commit.pushed)

Every other delivery, including other pull request actions and ``ping``,
is acknowledged without emitting anything.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from src.vortex.events.models import DetailType, DomainEvent


class GitHubEventKind(str, Enum):
    """Values of the X-GitHub-Event header the ingestor recognizes."""

    PULL_REQUEST = "pull_request"
    PUSH = "push"
    PING = "ping"


class PullRequestAction(str, Enum):
    """Pull request actions that produce a domain event.

    Attributes:
        OPENED: A pull request was created.
        SYNCHRONIZE: The head branch of a pull request received commits.
    """

    OPENED = "opened"
    SYNCHRONIZE = "synchronize"

    @property
    def detail_type(self) -> DetailType:
        if self is PullRequestAction.OPENED:
            return DetailType.PR_CREATED
        return DetailType.PR_UPDATED


class WebhookOutcome(str, Enum):
    """How a delivery was handled; also the metrics ``result`` label."""

    ACCEPTED = "accepted"
    IGNORED = "ignored"
    MALFORMED = "malformed"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


_STATUS_CODES = {
    WebhookOutcome.ACCEPTED: 200,
    WebhookOutcome.IGNORED: 200,
    WebhookOutcome.MALFORMED: 400,
    WebhookOutcome.UNAUTHORIZED: 401,
    WebhookOutcome.FAILED: 500,
}


class WebhookResult(BaseModel):
    """Result of ingesting one webhook delivery.

    Attributes:
        outcome: Classification of the delivery.
        message: Short human-readable reason returned to GitHub.
        github_event: The X-GitHub-Event header value, if any.
        event_id: Delivery id used to correlate downstream events.
        events: Domain events published for this delivery.
    """

    outcome: WebhookOutcome
    message: str = ""
    github_event: Optional[str] = None
    event_id: Optional[str] = None
    events: List[DomainEvent] = Field(default_factory=list)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.outcome]

    def to_response_body(self) -> dict:
        body = {"status": self.outcome.value, "message": self.message}
        if self.event_id:
            body["eventId"] = self.event_id
        if self.events:
            body["events"] = [e.detail_type.value for e in self.events]
        return body
