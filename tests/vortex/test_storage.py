"""Basic unit tests for the DynamoDB and S3 repositories."""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.vortex.credentials.models import InstallationToken
from src.vortex.events.models import CommitPushedDetail, CommitSummary, PullRequestDetail
from src.vortex.storage import (
    DynamoTable,
    EventLogRepository,
    ProfileRepository,
    ReportStore,
    StorageError,
    StorageThrottlingError,
    TokenStore,
    UserProfile,
    report_key,
)


def client_error(code, operation="PutItem"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr("src.vortex.storage.dynamo.time.sleep", sleeps.append)
    return sleeps


def test_token_store_round_trip(table, dynamo):
    _, storage = dynamo
    store = TokenStore(table)
    expires_at = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    store.put(InstallationToken("4242", "ghs_abc", expires_at))

    row = storage[("INSTALLATION#4242", "TOKEN")]
    assert row["ttl"] == {"N": str(int(expires_at.timestamp()))}
    token = store.get("4242")
    assert token.token == "ghs_abc"
    assert token.expires_at == expires_at


def test_token_store_miss_returns_none(table):
    assert TokenStore(table).get("4242") is None


@pytest.mark.parametrize(
    "row",
    [
        {"Token": {"S": "ghs_abc"}},
        {"ExpiresAt": {"S": "2025-06-01T12:00:00+00:00"}},
        {"Token": {"S": "ghs_abc"}, "ExpiresAt": {"S": "next tuesday"}},
        {"Token": {"S": "ghs_abc"}, "ExpiresAt": {"S": "2099-01-01T00:00:00"}},
    ],
)
def test_token_store_ignores_malformed_rows(table, dynamo, row):
    _, storage = dynamo
    storage[("INSTALLATION#4242", "TOKEN")] = dict(
        row, PK={"S": "INSTALLATION#4242"}, SK={"S": "TOKEN"}
    )

    assert TokenStore(table).get("4242") is None


def test_throttling_is_retried(table, dynamo, no_sleep):
    client, storage = dynamo
    put = client.put_item.side_effect
    failures = iter([client_error("ThrottlingException")])

    def flaky_put(**kwargs):
        for error in failures:
            raise error
        put(**kwargs)

    client.put_item.side_effect = flaky_put

    table.put_item({"PK": {"S": "a"}, "SK": {"S": "b"}})

    assert ("a", "b") in storage
    assert no_sleep == [0.1]


def test_persistent_throttling_raises(table, dynamo, no_sleep):
    client, _ = dynamo
    client.get_item.side_effect = client_error(
        "ProvisionedThroughputExceededException", "GetItem"
    )

    with pytest.raises(StorageThrottlingError):
        table.get_item("a", "b")

    assert client.get_item.call_count == DynamoTable.MAX_RETRIES


def test_other_client_errors_are_not_retried(table, dynamo):
    client, _ = dynamo
    client.put_item.side_effect = client_error("ValidationException")

    with pytest.raises(StorageError) as exc_info:
        table.put_item({"PK": {"S": "a"}, "SK": {"S": "b"}})

    assert exc_info.value.service == "dynamodb"
    assert client.put_item.call_count == 1


def test_connection_errors_raise_storage_error(table, dynamo):
    client, _ = dynamo
    client.get_item.side_effect = EndpointConnectionError(endpoint_url="https://dynamodb")

    with pytest.raises(StorageError):
        table.get_item("a", "b")


def test_profile_registration_replaces_previous_email(table):
    profiles = ProfileRepository(table)

    profiles.register(UserProfile(github_username="octocat", email="old@example.com"))
    profiles.register(UserProfile(github_username="octocat", email="new@example.com"))

    assert profiles.get_email("octocat") == "new@example.com"
    assert profiles.get_email("someone-else") is None


def test_profile_accepts_wire_aliases():
    profile = UserProfile.model_validate({"githubUsername": " octocat ", "email": "a@b.com"})
    assert profile.github_username == "octocat"


def test_pull_request_audit_row(table, dynamo):
    _, storage = dynamo
    detail = PullRequestDetail(
        repo="acme/api",
        action="opened",
        pr_id=1001,
        number=7,
        installation=4242,
        title="Add retry",
        url="https://github.com/acme/api/pull/7",
        created_at="2025-06-01T10:00:00Z",
        updated_at="2025-06-01T11:00:00Z",
        event_id="delivery-1",
    )

    EventLogRepository(table).record_pull_request(detail)

    row = storage[("pr#1001", "2025-06-01T11:00:00Z")]
    assert row["title"] == {"S": "Add retry"}
    assert row["type"] == {"S": "pull_request"}


def test_commit_audit_rows(table, dynamo):
    _, storage = dynamo
    detail = CommitPushedDetail(
        repo="acme/api",
        ref="refs/heads/main",
        installation=4242,
        event_id="delivery-2",
        commits=(
            CommitSummary(id="aaa111", message="First", timestamp="2025-06-01T10:00:00Z"),
            CommitSummary(id="bbb222", message="Second", timestamp="2025-06-01T10:05:00Z"),
        ),
    )

    assert EventLogRepository(table).record_commits(detail) == 2
    assert storage[("commit#bbb222", "2025-06-01T10:05:00Z")]["message"] == {"S": "Second"}


def test_report_key_format():
    now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    key = report_key("acme/api", now)

    assert key.startswith(f"reports/acme/api-{int(now.timestamp() * 1000)}-")
    assert key.endswith(".pdf")
    assert report_key("acme/api", now) != key


def test_report_store_round_trip():
    objects = {}
    s3 = MagicMock()
    s3.put_object.side_effect = lambda Bucket, Key, Body, ContentType: objects.__setitem__(Key, Body)
    s3.get_object.side_effect = lambda Bucket, Key: {"Body": io.BytesIO(objects[Key])}
    store = ReportStore("vortex-reports", s3_client=s3)

    store.put("reports/a.pdf", b"%PDF-1.4")

    assert store.get("reports/a.pdf") == b"%PDF-1.4"
    assert s3.put_object.call_args.kwargs["ContentType"] == "application/pdf"


def test_missing_report_raises_storage_error():
    s3 = MagicMock()
    s3.get_object.side_effect = client_error("NoSuchKey", "GetObject")

    with pytest.raises(StorageError) as exc_info:
        ReportStore("vortex-reports", s3_client=s3).get("reports/missing.pdf")

    assert exc_info.value.service == "s3"
