"""Persistence for the review pipeline.

- DynamoTable: single-table DynamoDB access with throttling retries
- TokenStore: persistent tier of the installation token cache
- ProfileRepository: GitHub login to email registrations
- EventLogRepository: audit rows for inbound PR and push events
- ReportStore: S3 storage for rendered reports
"""

from src.vortex.storage.dynamo import (
    DynamoTable,
    StorageError,
    StorageThrottlingError,
)
from src.vortex.storage.event_log import EventLogRepository
from src.vortex.storage.profiles import ProfileRepository, UserProfile
from src.vortex.storage.reports import ReportStore, report_key
from src.vortex.storage.tokens import TokenStore

__all__ = [
    "DynamoTable",
    "EventLogRepository",
    "ProfileRepository",
    "ReportStore",
    "StorageError",
    "StorageThrottlingError",
    "TokenStore",
    "UserProfile",
    "report_key",
]
