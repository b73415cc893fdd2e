"""Unit tests for the installation token broker and its cache tiers."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import jwt
import pytest
from botocore.exceptions import ClientError

from src.vortex.credentials import (
    CredentialBroker,
    InstallationToken,
    SecretStore,
    TokenCache,
)
from src.vortex.errors import ConfigError, CredentialError, UpstreamError
from src.vortex.github.client import GitHubAPIError, GitHubClient
from src.vortex.storage.tokens import TokenStore, token_key


NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def run_async(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def _github(expires_in: int = 3600, token: str = "ghs_issued") -> MagicMock:
    github = MagicMock(spec=GitHubClient)
    github.create_installation_token = AsyncMock(
        side_effect=lambda installation_id, app_jwt: (
            token,
            NOW + timedelta(seconds=expires_in),
        )
    )
    return github


@pytest.fixture
def secret_store(secrets_client):
    return SecretStore(
        webhook_secret_name="vortex/github-app-webhook-secret",
        app_credentials_secret_name="vortex/github-app-credentials",
        secrets_client=secrets_client,
    )


@pytest.fixture
def clock():
    return FakeClock()


def _lookups(metrics, tier):
    return metrics.registry.get_sample_value(
        "vortex_token_lookups_total", {"tier": tier}
    )


def _broker(secret_store, table, github, clock, metrics=None, cache=None):
    return CredentialBroker(
        secrets=secret_store,
        token_store=TokenStore(table),
        github=github,
        cache=cache if cache is not None else TokenCache(),
        metrics=metrics,
        clock=clock,
    )


class TestTokenCache:

    def test_fresh_token_is_returned(self):
        cache = TokenCache()
        token = InstallationToken("42", "t", NOW + timedelta(minutes=10))
        cache.put(token)
        assert cache.get_fresh("42", NOW, 60) == token

    def test_token_inside_margin_is_not_returned(self):
        cache = TokenCache()
        cache.put(InstallationToken("42", "t", NOW + timedelta(seconds=60)))
        assert cache.get_fresh("42", NOW, 60) is None

    def test_unknown_installation(self):
        assert TokenCache().get_fresh("42", NOW, 60) is None

    def test_shorter_lived_token_does_not_replace_longer(self):
        cache = TokenCache()
        cache.put(InstallationToken("42", "long", NOW + timedelta(hours=1)))
        cache.put(InstallationToken("42", "short", NOW + timedelta(minutes=5)))
        assert cache.get_fresh("42", NOW, 60).token == "long"

    def test_clear(self):
        cache = TokenCache()
        cache.put(InstallationToken("42", "t", NOW + timedelta(hours=1)))
        cache.clear()
        assert len(cache) == 0


class TestCredentialBroker:

    def test_miss_on_both_tiers_calls_issuer_and_writes_both(
        self, secret_store, table, dynamo, clock, metrics
    ):
        _, storage = dynamo
        github = _github()
        cache = TokenCache()
        broker = _broker(secret_store, table, github, clock, metrics, cache)

        token = run_async(broker.get_installation_token(42))

        assert token.token == "ghs_issued"
        assert token.installation_id == "42"
        github.create_installation_token.assert_awaited_once()
        assert (token_key("42"), "TOKEN") in storage
        assert cache.get_fresh("42", NOW, 60) == token
        assert _lookups(metrics, "issuer") == 1

    def test_second_call_within_margin_uses_local_cache(
        self, secret_store, table, dynamo, clock, metrics
    ):
        client, _ = dynamo
        github = _github()
        broker = _broker(secret_store, table, github, clock, metrics)

        first = run_async(broker.get_installation_token("42"))
        clock.advance(600)
        second = run_async(broker.get_installation_token("42"))

        assert first == second
        assert github.create_installation_token.await_count == 1
        assert client.get_item.call_count == 1
        assert _lookups(metrics, "local") == 1

    def test_call_after_expiry_issues_exactly_one_new_token(
        self, secret_store, table, clock
    ):
        github = _github(expires_in=3600)
        broker = _broker(secret_store, table, github, clock)

        run_async(broker.get_installation_token("42"))
        clock.advance(3600 - 30)
        run_async(broker.get_installation_token("42"))

        assert github.create_installation_token.await_count == 2

    def test_persistent_hit_backfills_local_cache(self, secret_store, table, clock, metrics):
        TokenStore(table).put(
            InstallationToken("42", "ghs_stored", NOW + timedelta(minutes=30))
        )
        github = _github()
        cache = TokenCache()
        broker = _broker(secret_store, table, github, clock, metrics, cache)

        token = run_async(broker.get_installation_token("42"))

        assert token.token == "ghs_stored"
        github.create_installation_token.assert_not_awaited()
        assert cache.get_fresh("42", NOW, 60).token == "ghs_stored"
        assert _lookups(metrics, "persistent") == 1

    def test_stale_persistent_row_is_ignored(self, secret_store, table, clock):
        TokenStore(table).put(
            InstallationToken("42", "ghs_stale", NOW + timedelta(seconds=45))
        )
        github = _github()
        broker = _broker(secret_store, table, github, clock)

        token = run_async(broker.get_installation_token("42"))

        assert token.token == "ghs_issued"

    def test_persistent_row_without_utc_offset_falls_through_to_issuer(
        self, secret_store, table, dynamo, clock
    ):
        _, storage = dynamo
        storage[(token_key("42"), "TOKEN")] = {
            "PK": {"S": token_key("42")},
            "SK": {"S": "TOKEN"},
            "Token": {"S": "ghs_naive"},
            "ExpiresAt": {"S": "2099-01-01T00:00:00"},
        }
        github = _github()
        broker = _broker(secret_store, table, github, clock)

        token = run_async(broker.get_installation_token("42"))

        assert token.token == "ghs_issued"
        github.create_installation_token.assert_awaited_once()

    def test_persistent_row_has_ttl_equal_to_expiry(self, secret_store, table, dynamo, clock):
        _, storage = dynamo
        broker = _broker(secret_store, table, _github(expires_in=3600), clock)

        run_async(broker.get_installation_token("42"))

        row = storage[(token_key("42"), "TOKEN")]
        assert int(row["ttl"]["N"]) == int((NOW + timedelta(hours=1)).timestamp())

    def test_app_jwt_claims(self, secret_store, table, clock, private_key_pem):
        github = _github()
        broker = _broker(secret_store, table, github, clock)

        run_async(broker.get_installation_token("42"))

        app_jwt = github.create_installation_token.await_args.args[1]
        claims = jwt.decode(app_jwt, options={"verify_signature": False})
        issued = int(NOW.timestamp())
        assert claims == {"iat": issued - 60, "exp": issued + 600, "iss": "123456"}
        assert jwt.get_unverified_header(app_jwt)["alg"] == "RS256"

    def test_issuer_failure_raises_credential_error_and_writes_nothing(
        self, secret_store, table, dynamo, clock
    ):
        _, storage = dynamo
        github = MagicMock(spec=GitHubClient)
        github.create_installation_token = AsyncMock(
            side_effect=GitHubAPIError("GitHub API error: 500", status_code=500)
        )
        cache = TokenCache()
        broker = _broker(secret_store, table, github, clock, cache=cache)

        with pytest.raises(CredentialError) as exc_info:
            run_async(broker.get_installation_token("42"))

        assert exc_info.value.status_code == 500
        assert storage == {}
        assert len(cache) == 0

    def test_unknown_installation_404_from_github(self, secret_store, table, dynamo, clock):
        _, storage = dynamo

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/app/installations/999/access_tokens"
            assert request.headers["Authorization"].startswith("Bearer ")
            return httpx.Response(404, json={"message": "Not Found"})

        github = GitHubClient(transport=httpx.MockTransport(handler), max_retries=0)
        broker = _broker(secret_store, table, github, clock)

        with pytest.raises(UpstreamError) as exc_info:
            run_async(broker.get_installation_token("999"))

        assert isinstance(exc_info.value, CredentialError)
        assert exc_info.value.status_code == 404
        assert storage == {}

    def test_missing_app_credentials_is_config_error(self, secret_store, secrets_client, table, clock):
        secrets_client.secrets["vortex/github-app-credentials"] = json.dumps(
            {"githubAppId": "1"}
        )
        github = _github()
        broker = _broker(secret_store, table, github, clock)

        with pytest.raises(ConfigError):
            run_async(broker.get_installation_token("42"))
        github.create_installation_token.assert_not_awaited()

    def test_unusable_private_key_is_config_error(self, secret_store, secrets_client, table, clock):
        secrets_client.secrets["vortex/github-app-credentials"] = json.dumps(
            {"githubAppId": "1", "githubAppPrivateKey": "bm90IGEga2V5"}
        )
        broker = _broker(secret_store, table, _github(), clock)

        with pytest.raises(ConfigError):
            run_async(broker.get_installation_token("42"))

    def test_store_read_failure_falls_through_to_issuer(self, secret_store, table, dynamo, clock):
        client, storage = dynamo
        client.get_item.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}},
            "GetItem",
        )
        github = _github()
        broker = _broker(secret_store, table, github, clock)

        token = run_async(broker.get_installation_token("42"))

        assert token.token == "ghs_issued"
        assert (token_key("42"), "TOKEN") in storage

    def test_store_write_failure_still_returns_token(self, secret_store, table, dynamo, clock):
        client, _ = dynamo
        client.put_item.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}},
            "PutItem",
        )
        cache = TokenCache()
        broker = _broker(secret_store, table, _github(), clock, cache=cache)

        token = run_async(broker.get_installation_token("42"))

        assert token.token == "ghs_issued"
        assert cache.get_fresh("42", NOW, 60) == token

    def test_concurrent_misses_all_succeed(self, secret_store, table, clock):
        github = _github()
        broker = _broker(secret_store, table, github, clock)

        async def fetch_many():
            return await asyncio.gather(
                *(broker.get_installation_token("42") for _ in range(5))
            )

        tokens = run_async(fetch_many())

        assert {t.token for t in tokens} == {"ghs_issued"}
        assert 1 <= github.create_installation_token.await_count <= 5

    def test_token_is_not_in_repr(self):
        token = InstallationToken("42", "ghs_secret", NOW)
        assert "ghs_secret" not in repr(token)
