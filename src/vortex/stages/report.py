"""Report stage: render the analysis and address it to the author."""

import asyncio
from typing import List

import structlog

from src.vortex.errors import DataNotFoundError
from src.vortex.events.models import (
    AnalysisCompleteDetail,
    DetailType,
    DomainEvent,
    ReportReadyDetail,
)
from src.vortex.reporting.pdf import render_report
from src.vortex.storage.profiles import ProfileRepository
from src.vortex.storage.reports import ReportStore, report_key


logger = structlog.get_logger(__name__)


class ReportStage:
    """Turns ``analysis.complete`` into ``report.ready``.

    Stops the pipeline for the event (DataNotFoundError) when the author
    has no registered email, before anything is rendered or stored.
    """

    def __init__(
        self,
        profiles: ProfileRepository,
        reports: ReportStore,
        source: str = "vortex.github",
    ):
        self._profiles = profiles
        self._reports = reports
        self.source = source

    async def handle(self, event: DomainEvent) -> List[DomainEvent]:
        detail: AnalysisCompleteDetail = event.detail
        log_fields = detail.log_fields()

        if not detail.github_username:
            raise DataNotFoundError("Event has no GitHub username", **log_fields)

        email = await asyncio.to_thread(self._profiles.get_email, detail.github_username)
        if not email:
            raise DataNotFoundError("No email registered for GitHub user", **log_fields)

        document = await asyncio.to_thread(render_report, detail.repo, detail.analysis_result)
        key = report_key(detail.repo)
        await asyncio.to_thread(self._reports.put, key, document)

        ready = ReportReadyDetail(
            **detail.change_fields(),
            report_key=key,
            email=email,
            file_count=detail.file_count,
        )
        logger.info("Report ready", report_key=key, file_count=detail.file_count, **log_fields)
        return [DomainEvent.create(self.source, DetailType.REPORT_READY, ready)]
