"""Report delivery by email through Amazon SES."""

import asyncio
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from src.vortex.errors import UpstreamError


logger = structlog.get_logger(__name__)

REPORT_FILENAME = "report.pdf"
REPORT_GREETING = "Hi,\n\nYour PR report is attached as a PDF.\n"


def build_report_message(
    sender: str,
    recipient: str,
    subject: str,
    report: bytes,
    body: str = REPORT_GREETING,
) -> MIMEMultipart:
    """Assemble a multipart/mixed message with the report attached."""
    message = MIMEMultipart("mixed")
    message["From"] = sender
    message["To"] = recipient
    message["Subject"] = subject
    message.attach(MIMEText(body, "plain", "utf-8"))

    attachment = MIMEApplication(report, _subtype="pdf", Name=REPORT_FILENAME)
    attachment.add_header("Content-Disposition", "attachment", filename=REPORT_FILENAME)
    message.attach(attachment)
    return message


class SesMailer:
    """Sends raw MIME messages with SES."""

    def __init__(self, ses_client: Any = None):
        self._client = ses_client or boto3.client("ses")

    async def send(self, message: MIMEMultipart) -> str:
        """Send the message to its To address.

        Returns:
            The SES message id.

        Raises:
            UpstreamError: If SES rejects or cannot accept the message.
        """
        return await asyncio.to_thread(self._send, message)

    def _send(self, message: MIMEMultipart) -> str:
        recipient = message["To"]
        try:
            response = self._client.send_raw_email(
                Source=message["From"],
                Destinations=[recipient],
                RawMessage={"Data": message.as_bytes()},
            )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(
                f"Failed to send report email: {e}",
                service="ses",
            ) from e

        message_id = response.get("MessageId", "")
        logger.info("Report email sent", message_id=message_id)
        return message_id
