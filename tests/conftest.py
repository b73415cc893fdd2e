"""Pytest configuration and shared fixtures for all tests."""

import base64
import json
import os
import sys
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from prometheus_client import CollectorRegistry

# Add the repository root to the Python path so ``src.vortex`` imports
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

from src.vortex.config import load_settings  # noqa: E402
from src.vortex.events.metrics import PipelineMetrics  # noqa: E402
from src.vortex.storage.dynamo import DynamoTable  # noqa: E402


WEBHOOK_SECRET = "It's a Secret to Everybody"
APP_ID = "123456"


def create_mock_dynamodb():
    """Create a mock DynamoDB client that simulates a PK/SK table."""
    storage = {}

    mock_client = MagicMock()

    def mock_get_item(TableName, Key, **kwargs):
        key = (Key["PK"]["S"], Key["SK"]["S"])
        if key in storage:
            return {"Item": storage[key]}
        return {}

    def mock_put_item(TableName, Item):
        storage[(Item["PK"]["S"], Item["SK"]["S"])] = Item

    mock_client.get_item.side_effect = mock_get_item
    mock_client.put_item.side_effect = mock_put_item

    return mock_client, storage


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def secrets_client(private_key_pem):
    """Mock Secrets Manager holding the webhook secret and app credentials."""
    secrets = {
        "vortex/github-app-webhook-secret": json.dumps(
            {"vortex-github-app-webhook-secret": WEBHOOK_SECRET}
        ),
        "vortex/github-app-credentials": json.dumps(
            {
                "githubAppId": APP_ID,
                "githubAppPrivateKey": base64.b64encode(
                    private_key_pem.encode("utf-8")
                ).decode("ascii"),
            }
        ),
    }

    client = MagicMock()
    client.get_secret_value.side_effect = lambda SecretId: {
        "SecretString": secrets[SecretId]
    }
    client.secrets = secrets
    return client


@pytest.fixture
def dynamo():
    return create_mock_dynamodb()


@pytest.fixture
def table(dynamo):
    client, _ = dynamo
    return DynamoTable("vortex-test", dynamodb_client=client)


@pytest.fixture
def metrics():
    return PipelineMetrics(registry=CollectorRegistry())


@pytest.fixture
def settings():
    return load_settings(
        event_bus_name="vortex-bus",
        table_name="vortex-test",
        report_bucket="vortex-reports",
        aws_region="us-east-1",
    )
