"""GitHub webhook ingest: verify, classify and publish.

This is the first stage of the pipeline. It turns a raw delivery into at
most one domain event:

- ``pull_request`` opened -> ``pr.created``
- ``pull_request`` synchronize -> ``pr.updated``
- ``push`` -> ``commit.pushed``

Status codes follow what GitHub expects from a receiver: 200 for accepted
and ignored deliveries, 400 when the request is malformed, 401 when the
signature does not verify and 500 when the event could not be published
(GitHub then shows the delivery as failed and it can be redelivered).

Relevant payload fields (pull_request event):
{
  "action": "opened",
  "pull_request": {
    "id": 1, "number": 7, "title": "...", "html_url": "...",
    "created_at": "...", "updated_at": "...", "user": {"login": "octo"}
  },
  "repository": {"full_name": "acme/api"},
  "installation": {"id": 42}
}
"""

import asyncio
import json
import uuid
from typing import Any, Dict, Mapping, Optional

import structlog
from pydantic import ValidationError

from src.vortex.credentials.secrets import SecretStore
from src.vortex.errors import ConfigError, InvalidEventError, UpstreamError
from src.vortex.events.bus import EventPublisher
from src.vortex.events.metrics import PipelineMetrics
from src.vortex.events.models import (
    CommitPushedDetail,
    CommitSummary,
    DetailType,
    DomainEvent,
    PullRequestDetail,
)
from src.vortex.webhook.models import (
    GitHubEventKind,
    PullRequestAction,
    WebhookOutcome,
    WebhookResult,
)
from src.vortex.webhook.signature import verify


logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"


def _login(user: Any) -> Optional[str]:
    if isinstance(user, dict):
        login = user.get("login") or user.get("username") or user.get("name")
        if isinstance(login, str) and login.strip():
            return login.strip()
    return None


def _installation_id(payload: Dict[str, Any]) -> Any:
    installation = payload.get("installation")
    if not isinstance(installation, dict):
        raise InvalidEventError("Payload has no installation")
    return installation.get("id")


def _repo_name(payload: Dict[str, Any]) -> Any:
    repository = payload.get("repository")
    if not isinstance(repository, dict):
        raise InvalidEventError("Payload has no repository")
    return repository.get("full_name")


class WebhookIngestor:
    """Ingest stage for GitHub App webhook deliveries.

    The webhook secret is fetched from the secret store on the first
    delivery and memoized for the lifetime of the ingestor.

    Attributes:
        source: Event source stamped on every published event.
    """

    def __init__(
        self,
        secrets: SecretStore,
        publisher: EventPublisher,
        source: str = "vortex.github",
        metrics: Optional[PipelineMetrics] = None,
    ):
        self._secrets = secrets
        self._publisher = publisher
        self.source = source
        self._metrics = metrics
        self._secret: Optional[bytes] = None

    async def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received.
            headers: Request headers; names are matched case-insensitively.

        Returns:
            WebhookResult describing the outcome and the published events.
        """
        normalized = {k.lower(): v for k, v in headers.items()}
        github_event = normalized.get(EVENT_HEADER)
        event_id = normalized.get(DELIVERY_HEADER) or str(uuid.uuid4())

        result = await self._handle(raw_body, normalized, github_event, event_id)

        if self._metrics is not None:
            self._metrics.record_webhook(github_event or "", result.outcome.value)
        return result

    async def _handle(
        self,
        raw_body: bytes,
        headers: Dict[str, str],
        github_event: Optional[str],
        event_id: str,
    ) -> WebhookResult:
        log = logger.bind(github_event=github_event, event_id=event_id)

        def result(outcome: WebhookOutcome, message: str, **kwargs: Any) -> WebhookResult:
            return WebhookResult(
                outcome=outcome,
                message=message,
                github_event=github_event,
                event_id=event_id,
                **kwargs,
            )

        signature = headers.get(SIGNATURE_HEADER)
        if not raw_body or not signature or not github_event:
            log.warning(
                "Malformed webhook request",
                has_body=bool(raw_body),
                has_signature=bool(signature),
            )
            return result(WebhookOutcome.MALFORMED, "Missing body, signature or event header")

        secret = await self._webhook_secret()
        if secret is None or not verify(raw_body, signature, secret):
            log.warning("Webhook signature rejected")
            return result(WebhookOutcome.UNAUTHORIZED, "Invalid signature")

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            log.warning("Webhook body is not JSON")
            return result(WebhookOutcome.MALFORMED, "Body is not valid JSON")
        if not isinstance(payload, dict):
            return result(WebhookOutcome.MALFORMED, "Body must be a JSON object")

        if github_event == GitHubEventKind.PING.value:
            log.info("Webhook ping", hook_id=payload.get("hook_id"))
            return result(WebhookOutcome.IGNORED, "Ping acknowledged")

        try:
            event = self.classify(github_event, payload, event_id)
        except InvalidEventError as e:
            log.warning("Webhook payload rejected", reason=e.message)
            return result(WebhookOutcome.MALFORMED, e.message)

        if event is None:
            log.info("Webhook ignored", action=payload.get("action"))
            return result(WebhookOutcome.IGNORED, "Event ignored")

        try:
            await self._publisher.publish(event)
        except UpstreamError as e:
            log.error("Failed to publish webhook event", error=str(e))
            return result(WebhookOutcome.FAILED, "Failed to publish event")

        log.info(
            "Webhook accepted",
            detail_type=event.detail_type.value,
            repo=event.detail.repo,
            github_username=event.detail.github_username,
        )
        return result(WebhookOutcome.ACCEPTED, "Event published", events=[event])

    async def _webhook_secret(self) -> Optional[bytes]:
        if self._secret is None:
            try:
                self._secret = await asyncio.to_thread(self._secrets.get_webhook_secret)
            except ConfigError as e:
                logger.error("Webhook secret unavailable", error=e.message)
                return None
        return self._secret

    def classify(
        self,
        github_event: str,
        payload: Dict[str, Any],
        event_id: str,
    ) -> Optional[DomainEvent]:
        """Map a verified delivery to the domain event it starts.

        Args:
            github_event: The X-GitHub-Event header.
            payload: Parsed JSON body.
            event_id: Correlation id for the delivery.

        Returns:
            The domain event, or None if the delivery is not interesting.

        Raises:
            InvalidEventError: If an interesting delivery lacks fields the
                pipeline needs.
        """
        if github_event == GitHubEventKind.PULL_REQUEST.value:
            try:
                action = PullRequestAction(payload.get("action"))
            except ValueError:
                return None
            detail = self._pull_request_detail(payload, action, event_id)
            return DomainEvent.create(self.source, action.detail_type, detail)

        if github_event == GitHubEventKind.PUSH.value:
            detail = self._push_detail(payload, event_id)
            return DomainEvent.create(self.source, DetailType.COMMIT_PUSHED, detail)

        return None

    def _pull_request_detail(
        self,
        payload: Dict[str, Any],
        action: PullRequestAction,
        event_id: str,
    ) -> PullRequestDetail:
        pull_request = payload.get("pull_request")
        if not isinstance(pull_request, dict):
            raise InvalidEventError("Payload has no pull_request")

        try:
            return PullRequestDetail(
                pr_id=pull_request.get("id"),
                number=pull_request.get("number"),
                title=pull_request.get("title") or "",
                url=pull_request.get("html_url") or pull_request.get("url"),
                created_at=pull_request.get("created_at") or "",
                updated_at=pull_request.get("updated_at") or "",
                repo=_repo_name(payload),
                action=action.value,
                installation=_installation_id(payload),
                github_username=_login(pull_request.get("user")),
                event_id=event_id,
            )
        except ValidationError as e:
            raise InvalidEventError(f"Invalid pull_request payload: {e}") from e

    def _push_detail(self, payload: Dict[str, Any], event_id: str) -> CommitPushedDetail:
        try:
            commits = [
                CommitSummary(
                    id=commit.get("id") or "",
                    message=commit.get("message") or "",
                    timestamp=commit.get("timestamp") or "",
                    url=commit.get("url") or "",
                    author=_login(commit.get("author")),
                )
                for commit in payload.get("commits") or []
                if isinstance(commit, dict)
            ]
            return CommitPushedDetail(
                repo=_repo_name(payload),
                ref=payload.get("ref") or "",
                head=payload.get("after"),
                pusher=_login(payload.get("pusher")),
                installation=_installation_id(payload),
                github_username=_login(payload.get("sender")),
                event_id=event_id,
                commits=tuple(commits),
            )
        except ValidationError as e:
            raise InvalidEventError(f"Invalid push payload: {e}") from e
