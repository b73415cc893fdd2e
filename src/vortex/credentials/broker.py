"""Installation token broker with a two-tier read-through cache.

Lookup order, first hit wins:

1. Process-local TokenCache (lifetime of the worker).
2. Persistent TokenStore (DynamoDB); a hit backfills tier 1.
3. GitHub: mint an app JWT, exchange it for an installation token, and
   write the result to both tiers.

A cached token is only served while it stays valid for at least the
freshness margin (60 seconds by default).

Concurrent misses for the same installation are not serialized: each
caller may mint its own token. GitHub issues tokens idempotently, and the
caches tolerate being overwritten, so the cost is a few redundant calls.
"""

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Union

import jwt
import structlog

from src.vortex.credentials.cache import TokenCache
from src.vortex.credentials.models import AppCredentials, InstallationToken
from src.vortex.credentials.secrets import SecretStore
from src.vortex.errors import ConfigError, CredentialError, UpstreamError
from src.vortex.events.metrics import PipelineMetrics
from src.vortex.github.client import GitHubAPIError, GitHubClient

if TYPE_CHECKING:
    from src.vortex.storage.tokens import TokenStore


logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialBroker:
    """Issues and caches installation-scoped GitHub access tokens.

    Attributes:
        freshness_margin_seconds: Minimum remaining validity for a cached
            token to be served.
    """

    # Backdate iat to tolerate clock skew against GitHub
    JWT_BACKDATE_SECONDS = 60
    JWT_LIFETIME_SECONDS = 600
    JWT_ALGORITHM = "RS256"

    def __init__(
        self,
        secrets: SecretStore,
        token_store: "TokenStore",
        github: GitHubClient,
        cache: Optional[TokenCache] = None,
        freshness_margin_seconds: int = 60,
        metrics: Optional[PipelineMetrics] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the broker.

        Args:
            secrets: Source of the GitHub App id and private key.
            token_store: Persistent token cache.
            github: Client used for the token exchange.
            cache: Process-local cache; pass the worker's shared instance.
            freshness_margin_seconds: Freshness margin for cache hits.
            metrics: Optional metrics sink for lookups by tier.
            clock: Returns the current UTC time (for testing).
        """
        self._secrets = secrets
        self._token_store = token_store
        self._github = github
        self._cache = cache if cache is not None else TokenCache()
        self.freshness_margin_seconds = freshness_margin_seconds
        self._metrics = metrics
        self._clock = clock

    async def get_installation_token(
        self,
        installation_id: Union[int, str],
    ) -> InstallationToken:
        """Return a token valid beyond the freshness margin.

        Args:
            installation_id: GitHub App installation id.

        Returns:
            A fresh InstallationToken.

        Raises:
            CredentialError: If GitHub is unreachable or refuses to issue.
            ConfigError: If the app credentials are missing or unusable.
        """
        installation_id = str(installation_id)
        now = self._clock()

        token = self._cache.get_fresh(installation_id, now, self.freshness_margin_seconds)
        if token is not None:
            self._record_lookup("local")
            return token

        token = await self._read_persistent(installation_id)
        if token is not None and token.is_fresh(now, self.freshness_margin_seconds):
            self._cache.put(token)
            self._record_lookup("persistent")
            logger.debug("Installation token served from store", installation_id=installation_id)
            return token

        token = await self._issue(installation_id, now)
        await self._write_persistent(token)
        self._cache.put(token)
        self._record_lookup("issuer")
        logger.info(
            "Installation token issued",
            installation_id=installation_id,
            expires_at=token.expires_at.isoformat(),
        )
        return token

    def mint_app_jwt(self, credentials: AppCredentials, now: datetime) -> str:
        """Sign a short-lived app assertion.

        Args:
            credentials: App id and PEM private key.
            now: Current time.

        Returns:
            The encoded RS256 JWT.

        Raises:
            ConfigError: If the private key cannot sign.
        """
        issued = int(now.timestamp())
        payload = {
            "iat": issued - self.JWT_BACKDATE_SECONDS,
            "exp": issued + self.JWT_LIFETIME_SECONDS,
            "iss": credentials.app_id,
        }
        try:
            return jwt.encode(payload, credentials.private_key, algorithm=self.JWT_ALGORITHM)
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise ConfigError("GitHub App private key cannot sign an app JWT") from e

    async def _issue(self, installation_id: str, now: datetime) -> InstallationToken:
        credentials = await asyncio.to_thread(self._secrets.get_app_credentials)
        app_jwt = self.mint_app_jwt(credentials, now)

        try:
            token, expires_at = await self._github.create_installation_token(
                installation_id, app_jwt
            )
        except GitHubAPIError as e:
            logger.error(
                "Installation token exchange failed",
                installation_id=installation_id,
                status_code=e.status_code,
            )
            raise CredentialError(
                f"Failed to get installation token for {installation_id}: {e.message}",
                service="github",
                status_code=e.status_code,
                installation_id=installation_id,
            ) from e

        return InstallationToken(
            installation_id=installation_id,
            token=token,
            expires_at=expires_at,
        )

    async def _read_persistent(self, installation_id: str) -> Optional[InstallationToken]:
        try:
            return await asyncio.to_thread(self._token_store.get, installation_id)
        except UpstreamError as e:
            # A store outage degrades to an issuer call
            logger.warning(
                "Token store read failed",
                installation_id=installation_id,
                error=str(e),
            )
            return None

    async def _write_persistent(self, token: InstallationToken) -> None:
        try:
            await asyncio.to_thread(self._token_store.put, token)
        except UpstreamError as e:
            logger.warning(
                "Token store write failed",
                installation_id=token.installation_id,
                error=str(e),
            )

    def _record_lookup(self, tier: str) -> None:
        if self._metrics is not None:
            self._metrics.record_token_lookup(tier)
