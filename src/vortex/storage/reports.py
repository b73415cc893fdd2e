"""S3 storage for generated report documents."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from src.vortex.storage.dynamo import StorageError


logger = structlog.get_logger(__name__)


def report_key(repo: str, now: Optional[datetime] = None) -> str:
    """Build the object key for a new report.

    Format: ``reports/<repo>-<epoch-ms>-<uuid>.pdf``. ``repo`` keeps its
    ``owner/name`` slash, so reports group by owner.
    """
    moment = now or datetime.now(timezone.utc)
    epoch_ms = int(moment.timestamp() * 1000)
    return f"reports/{repo}-{epoch_ms}-{uuid.uuid4()}.pdf"


class ReportStore:
    """Reads and writes report documents in one S3 bucket."""

    CONTENT_TYPE = "application/pdf"

    def __init__(self, bucket: str, s3_client: Any = None):
        """
        Args:
            bucket: Name of the S3 bucket
            s3_client: Optional boto3 S3 client (for testing)
        """
        self.bucket = bucket
        self._s3 = s3_client or boto3.client("s3")

    def put(self, key: str, body: bytes) -> None:
        """Upload a report document.

        Raises:
            StorageError: If the upload fails.
        """
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=self.CONTENT_TYPE,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Failed to upload s3://{self.bucket}/{key}: {e}",
                service="s3",
            ) from e
        logger.info("Report uploaded", bucket=self.bucket, key=key, size=len(body))

    def get(self, key: str) -> bytes:
        """Download a report document.

        Raises:
            StorageError: If the object is missing or the download fails.
        """
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Failed to download s3://{self.bucket}/{key}: {e}",
                service="s3",
            ) from e
