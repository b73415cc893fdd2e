"""Audit log of inbound pull request and push events."""

from typing import Any, Dict

from src.vortex.events.models import CommitPushedDetail, PullRequestDetail
from src.vortex.storage.dynamo import DynamoTable


def _s(value: Any) -> Dict[str, str]:
    return {"S": "" if value is None else str(value)}


class EventLogRepository:
    """Writes one audit row per pull request event or pushed commit.

    Rows are keyed ``pr#<prId>`` / updated-at or ``commit#<sha>`` /
    commit timestamp, so redelivered events rewrite the same row.
    """

    def __init__(self, table: DynamoTable):
        self._table = table

    def record_pull_request(self, detail: PullRequestDetail) -> None:
        """Raises StorageError if the write fails."""
        self._table.put_item(
            {
                "PK": {"S": f"pr#{detail.pr_id}"},
                "SK": _s(detail.updated_at or detail.created_at or detail.event_id),
                "id": _s(detail.pr_id),
                "number": {"N": str(detail.number)},
                "title": _s(detail.title),
                "url": _s(detail.url),
                "created_at": _s(detail.created_at),
                "updated_at": _s(detail.updated_at),
                "repo": _s(detail.repo),
                "action": _s(detail.action),
                "event_id": _s(detail.event_id),
                "type": {"S": "pull_request"},
            }
        )

    def record_commits(self, detail: CommitPushedDetail) -> int:
        """Write one row per commit in the push.

        Returns:
            Number of rows written.

        Raises:
            StorageError: If a write fails.
        """
        for commit in detail.commits:
            self._table.put_item(
                {
                    "PK": {"S": f"commit#{commit.id}"},
                    "SK": _s(commit.timestamp or detail.event_id),
                    "id": _s(commit.id),
                    "message": _s(commit.message),
                    "url": _s(commit.url),
                    "repo": _s(detail.repo),
                    "ref": _s(detail.ref),
                    "head": _s(detail.head),
                    "pusher": _s(detail.pusher),
                    "author": _s(commit.author),
                    "timestamp": _s(commit.timestamp),
                    "event_id": _s(detail.event_id),
                    "type": {"S": "commit"},
                }
            )
        return len(detail.commits)
