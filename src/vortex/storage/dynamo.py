"""DynamoDB access shared by the pipeline repositories.

All repositories live in one table keyed by ``PK``/``SK``:

    INSTALLATION#<id> / TOKEN        cached installation tokens (TTL'd)
    GITHUBUSER#<login> / PROFILE     registered user profiles
    pr#<prId> / <updatedAt>          audit rows for pull request events
    commit#<sha> / <timestamp>       audit rows for pushed commits
"""

import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.vortex.errors import UpstreamError


class StorageError(UpstreamError):
    """Raised when a storage operation fails."""


class StorageThrottlingError(StorageError):
    """Raised when DynamoDB throttling persists after retries."""


class DynamoTable:
    """Thin wrapper over a low-level DynamoDB client for one table.

    Throttled calls are retried with exponential backoff; every other
    client error is raised as StorageError.
    """

    MAX_RETRIES = 3
    INITIAL_BACKOFF = 0.1  # 100ms
    MAX_BACKOFF = 5.0  # 5 seconds

    THROTTLING_CODES = {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
    }

    def __init__(self, table_name: str, dynamodb_client: Any = None):
        """
        Initialize the table wrapper.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb_client: Optional boto3 DynamoDB client (for testing)
        """
        self.table_name = table_name
        self._dynamodb = dynamodb_client or boto3.client("dynamodb")

    def _retry_with_backoff(self, operation: Callable[[], Any]) -> Any:
        for attempt in range(self.MAX_RETRIES):
            try:
                return operation()
            except ClientError as e:
                error = e.response.get("Error", {})
                code = error.get("Code", "")
                if code in self.THROTTLING_CODES:
                    if attempt < self.MAX_RETRIES - 1:
                        time.sleep(min(self.INITIAL_BACKOFF * (2 ** attempt), self.MAX_BACKOFF))
                        continue
                    raise StorageThrottlingError(
                        f"DynamoDB throttling after {self.MAX_RETRIES} retries",
                        service="dynamodb",
                    ) from e
                raise StorageError(
                    f"DynamoDB error: {code} - {error.get('Message', str(e))}",
                    service="dynamodb",
                ) from e
            except BotoCoreError as e:
                raise StorageError(
                    f"DynamoDB connection error: {e}",
                    service="dynamodb",
                ) from e

    def get_item(
        self,
        pk: str,
        sk: str,
        attributes: Optional[List[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch one item by key.

        Args:
            pk: Partition key value.
            sk: Sort key value.
            attributes: Optional attribute names to project.

        Returns:
            The raw item (attribute-value format) or None.

        Raises:
            StorageError: If the read fails.
        """
        request: Dict[str, Any] = {
            "TableName": self.table_name,
            "Key": {"PK": {"S": pk}, "SK": {"S": sk}},
        }
        if attributes:
            request["ProjectionExpression"] = ", ".join(
                f"#a{i}" for i in range(len(attributes))
            )
            request["ExpressionAttributeNames"] = {
                f"#a{i}": name for i, name in enumerate(attributes)
            }

        response = self._retry_with_backoff(lambda: self._dynamodb.get_item(**request))
        return response.get("Item")

    def put_item(self, item: Dict[str, Any]) -> None:
        """Write one item, replacing any existing item with the same key.

        Raises:
            StorageError: If the write fails.
        """
        self._retry_with_backoff(
            lambda: self._dynamodb.put_item(TableName=self.table_name, Item=item)
        )


def string_attr(item: Dict[str, Any], name: str) -> Optional[str]:
    """Read a string attribute from a raw item."""
    return item.get(name, {}).get("S")
