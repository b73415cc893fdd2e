"""Domain event models carried on the event bus.

This module defines one payload model per detail type and the
DomainEvent envelope that wraps them:

- DetailType: the state-machine event names
- PullRequestDetail / CommitPushedDetail: emitted by webhook ingest
- DiffReadyDetail: file-level diff for one PR or one commit
- AnalysisCompleteDetail: model output for a diff
- ReportReadyDetail: pointer to a stored report and its recipient

Payloads are validated when an envelope is built, so stages only ever see
the concrete model for the detail type they subscribed to. Every payload
carries the correlating event_id (the GitHub delivery id) forward.

Wire format follows EventBridge: ``detail-type`` on the envelope and
camelCase keys inside ``detail``.
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from src.vortex.errors import InvalidEventError


class DetailType(str, Enum):
    """Event types, one per state of the review pipeline.

    Attributes:
        PR_CREATED: A pull request was opened.
        PR_UPDATED: New commits were pushed to an open pull request.
        COMMIT_PUSHED: Commits were pushed to a branch.
        DIFF_READY: File-level diff retrieved for a PR or a commit.
        ANALYSIS_COMPLETE: The model produced a review for a diff.
        REPORT_READY: A report document is stored and addressed.
    """

    PR_CREATED = "pr.created"
    PR_UPDATED = "pr.updated"
    COMMIT_PUSHED = "commit.pushed"
    DIFF_READY = "diff.ready"
    ANALYSIS_COMPLETE = "analysis.complete"
    REPORT_READY = "report.ready"


class ChangeType(str, Enum):
    """Kind of change a diff was computed for."""

    PULL_REQUEST = "pull_request"
    COMMIT = "commit"


class DetailModel(BaseModel):
    """Base for event payloads: immutable, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PullRequestDetail(DetailModel):
    """Payload for ``pr.created`` and ``pr.updated``."""

    pr_id: int = Field(..., description="GitHub's global pull request id")
    number: int = Field(..., gt=0, description="Pull request number in the repo")
    title: str = ""
    url: str = Field(..., min_length=1, description="HTML URL of the pull request")
    created_at: str = ""
    updated_at: str = ""
    repo: str = Field(..., min_length=1, description='"{owner}/{name}"')
    action: str = Field(..., min_length=1)
    installation: int = Field(..., gt=0, description="GitHub App installation id")
    github_username: Optional[str] = None
    event_id: str = Field(..., min_length=1)


class CommitSummary(DetailModel):
    """One commit listed in a push webhook."""

    id: str = Field(..., min_length=1)
    message: str = ""
    timestamp: str = ""
    url: str = ""
    author: Optional[str] = None


class CommitPushedDetail(DetailModel):
    """Payload for ``commit.pushed``."""

    repo: str = Field(..., min_length=1)
    ref: str = ""
    head: Optional[str] = None
    pusher: Optional[str] = None
    installation: int = Field(..., gt=0)
    github_username: Optional[str] = None
    event_id: str = Field(..., min_length=1)
    commits: Tuple[CommitSummary, ...] = ()


# Appended to patch text cut short to fit a size budget
PATCH_TRUNCATION_MARKER = "\n... [truncated]"


class DiffFile(DetailModel):
    """One changed file as reported by the GitHub API.

    ``patch`` is absent for binary files and for very large diffs.
    """

    filename: str = Field(..., min_length=1)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    changes: int = Field(default=0, ge=0)
    status: Optional[str] = None
    patch: Optional[str] = None


class ChangeDetail(DetailModel):
    """Fields identifying the PR or commit a downstream payload is about."""

    type: ChangeType
    repo: str = Field(..., min_length=1)
    pr_id: Optional[int] = None
    commit_id: Optional[str] = None
    github_username: Optional[str] = None
    event_id: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_subject(self) -> "ChangeDetail":
        if self.type == ChangeType.PULL_REQUEST and self.pr_id is None:
            raise ValueError("pull_request details require prId")
        if self.type == ChangeType.COMMIT and not self.commit_id:
            raise ValueError("commit details require commitId")
        return self

    @property
    def subject(self) -> str:
        """Identifier of the change, e.g. ``pr#123`` or ``commit#abc``."""
        if self.type == ChangeType.PULL_REQUEST:
            return f"pr#{self.pr_id}"
        return f"commit#{self.commit_id}"

    def change_fields(self) -> Dict[str, Any]:
        """The identifying fields, for building the next stage's payload."""
        return {name: getattr(self, name) for name in ChangeDetail.model_fields}

    def log_fields(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "repo": self.repo,
            "type": self.type.value,
            "subject": self.subject,
            "github_username": self.github_username,
        }


class DiffReadyDetail(ChangeDetail):
    """Payload for ``diff.ready``."""

    files: Tuple[DiffFile, ...] = ()

    @property
    def file_count(self) -> int:
        return len(self.files)


class AnalysisCompleteDetail(ChangeDetail):
    """Payload for ``analysis.complete``."""

    analysis_result: str
    file_count: int = Field(..., ge=0)
    model_id: Optional[str] = None


class ReportReadyDetail(ChangeDetail):
    """Payload for ``report.ready``."""

    report_key: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    file_count: int = Field(..., ge=0)


EventDetail = Union[
    PullRequestDetail,
    CommitPushedDetail,
    DiffReadyDetail,
    AnalysisCompleteDetail,
    ReportReadyDetail,
]

DETAIL_MODELS: Dict[DetailType, Type[DetailModel]] = {
    DetailType.PR_CREATED: PullRequestDetail,
    DetailType.PR_UPDATED: PullRequestDetail,
    DetailType.COMMIT_PUSHED: CommitPushedDetail,
    DetailType.DIFF_READY: DiffReadyDetail,
    DetailType.ANALYSIS_COMPLETE: AnalysisCompleteDetail,
    DetailType.REPORT_READY: ReportReadyDetail,
}


class DomainEvent(BaseModel):
    """Immutable envelope for a typed event on the bus.

    The ``detail`` payload is always the model registered for
    ``detail_type`` in DETAIL_MODELS; a raw dict or JSON string is
    validated into that model on construction.

    Attributes:
        id: Envelope id assigned by the publisher (or the bus).
        source: Event source, e.g. ``vortex.github``.
        detail_type: The event type used for routing.
        time: When the event was created (UTC).
        detail: The typed payload.

    Example:
        >>> event = DomainEvent.create(
        ...     "vortex.github",
        ...     DetailType.DIFF_READY,
        ...     {"type": "commit", "repo": "acme/api", "commitId": "abc",
        ...      "eventId": "d-1", "files": []},
        ... )
        >>> event.detail.subject
        'commit#abc'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: str = Field(..., min_length=1)
    detail_type: DetailType = Field(..., alias="detail-type")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: EventDetail

    @model_validator(mode="before")
    @classmethod
    def _coerce_detail(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        raw_type = data.get("detail-type", data.get("detail_type"))
        try:
            detail_type = DetailType(raw_type)
        except ValueError:
            # Left for field validation to report
            return data

        model = DETAIL_MODELS[detail_type]
        detail = data.get("detail")
        if isinstance(detail, (str, bytes)):
            detail = json.loads(detail)
        if not isinstance(detail, model):
            detail = model.model_validate(detail)
        return {**data, "detail": detail}

    @classmethod
    def create(
        cls,
        source: str,
        detail_type: DetailType,
        detail: Union[DetailModel, Dict[str, Any]],
    ) -> "DomainEvent":
        """Build a new event, validating ``detail`` against its model.

        Raises:
            InvalidEventError: If the payload does not match the type.
        """
        return cls.from_envelope(
            {"source": source, "detail-type": detail_type, "detail": detail}
        )

    @classmethod
    def from_envelope(cls, envelope: Dict[str, Any]) -> "DomainEvent":
        """Parse an EventBridge-style envelope into a DomainEvent.

        Args:
            envelope: Dict with ``source``, ``detail-type`` and ``detail``
                keys; ``id`` and ``time`` are optional.

        Returns:
            The validated event.

        Raises:
            InvalidEventError: If the envelope or payload is malformed or
                the detail type is unknown.
        """
        if not isinstance(envelope, dict):
            raise InvalidEventError(
                f"Event envelope must be an object, got {type(envelope).__name__}"
            )
        try:
            return cls.model_validate(envelope)
        except (ValidationError, ValueError) as e:
            raise InvalidEventError(
                f"Invalid {envelope.get('detail-type', 'unknown')} event: {e}",
                detail_type=envelope.get("detail-type"),
                event_id=envelope.get("id"),
            ) from e

    def to_envelope(self) -> Dict[str, Any]:
        """Serialize to the envelope shape a bus subscriber receives."""
        return {
            "id": self.id,
            "source": self.source,
            "detail-type": self.detail_type.value,
            "time": self.time.isoformat(),
            "detail": self.detail.model_dump(mode="json", by_alias=True),
        }

    def to_put_events_entry(self, event_bus_name: str) -> Dict[str, Any]:
        """Serialize to a PutEvents request entry."""
        return {
            "Source": self.source,
            "DetailType": self.detail_type.value,
            "Detail": self.detail.model_dump_json(by_alias=True),
            "EventBusName": event_bus_name,
            "Time": self.time,
        }

    @property
    def correlation_id(self) -> str:
        return self.detail.event_id
