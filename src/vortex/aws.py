"""boto3 client construction with pipeline-wide timeouts."""

from typing import Any

import boto3
from botocore.config import Config

from src.vortex.config import VortexSettings


def client_config(settings: VortexSettings) -> Config:
    """Build the botocore config shared by every AWS client.

    Each call is bounded by the connect/read timeouts so a stalled
    dependency surfaces as an error instead of holding the invocation
    until the host deadline.
    """
    return Config(
        region_name=settings.aws_region,
        connect_timeout=settings.aws_connect_timeout_seconds,
        read_timeout=settings.aws_read_timeout_seconds,
        retries={"max_attempts": settings.aws_max_attempts, "mode": "standard"},
    )


def create_client(service_name: str, settings: VortexSettings) -> Any:
    """Create a boto3 client for the given service.

    Args:
        service_name: boto3 service name (dynamodb, s3, events, ...).
        settings: Pipeline settings supplying region and timeouts.

    Returns:
        A low-level boto3 client.
    """
    return boto3.client(service_name, config=client_config(settings))
