"""Audit stage: persist every inbound PR and push event."""

import asyncio
from typing import List

import structlog

from src.vortex.events.models import CommitPushedDetail, DomainEvent, PullRequestDetail
from src.vortex.storage.event_log import EventLogRepository


logger = structlog.get_logger(__name__)


class RecordStage:
    """Writes audit rows for ``pr.*`` and ``commit.pushed`` events.

    Runs beside diff-fetch on the same events; neither observes the
    other's outcome.
    """

    def __init__(self, event_log: EventLogRepository):
        self._event_log = event_log

    async def handle(self, event: DomainEvent) -> List[DomainEvent]:
        detail = event.detail
        if isinstance(detail, PullRequestDetail):
            await asyncio.to_thread(self._event_log.record_pull_request, detail)
            logger.info(
                "Recorded pull request event",
                event_id=detail.event_id,
                repo=detail.repo,
                pr_id=detail.pr_id,
                action=detail.action,
            )
        elif isinstance(detail, CommitPushedDetail):
            count = await asyncio.to_thread(self._event_log.record_commits, detail)
            logger.info(
                "Recorded pushed commits",
                event_id=detail.event_id,
                repo=detail.repo,
                commit_count=count,
            )
        return []
