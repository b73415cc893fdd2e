"""Deliver stage: mail the stored report to its recipient."""

import asyncio
from typing import List

import structlog

from src.vortex.events.models import DomainEvent, ReportReadyDetail
from src.vortex.reporting.mail import SesMailer, build_report_message
from src.vortex.storage.reports import ReportStore


logger = structlog.get_logger(__name__)


class DeliverStage:
    """Terminal stage for ``report.ready``."""

    def __init__(
        self,
        reports: ReportStore,
        mailer: SesMailer,
        sender: str,
        subject: str,
    ):
        self._reports = reports
        self._mailer = mailer
        self.sender = sender
        self.subject = subject

    async def handle(self, event: DomainEvent) -> List[DomainEvent]:
        detail: ReportReadyDetail = event.detail
        document = await asyncio.to_thread(self._reports.get, detail.report_key)

        message = build_report_message(self.sender, detail.email, self.subject, document)
        message_id = await self._mailer.send(message)

        logger.info(
            "Report delivered",
            report_key=detail.report_key,
            file_count=detail.file_count,
            message_id=message_id,
            **detail.log_fields(),
        )
        return []
