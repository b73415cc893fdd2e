"""Secrets Manager access for webhook and GitHub App secrets.

Secrets are fetched by name on every call; callers that need the value
repeatedly may hold on to it. Any failure to obtain a usable secret is a
ConfigError: it cannot be fixed by retrying the event.
"""

import base64
import binascii
import json
from typing import Any, Dict

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from src.vortex.credentials.models import AppCredentials
from src.vortex.errors import ConfigError


logger = structlog.get_logger(__name__)


class SecretStore:
    """Reads pipeline secrets from AWS Secrets Manager.

    Attributes:
        webhook_secret_name: Secret holding the webhook HMAC secret.
        webhook_secret_key: JSON key of the HMAC secret inside that secret.
        app_credentials_secret_name: Secret holding ``githubAppId`` and the
            base64-encoded ``githubAppPrivateKey``.
    """

    def __init__(
        self,
        webhook_secret_name: str,
        app_credentials_secret_name: str,
        webhook_secret_key: str = "vortex-github-app-webhook-secret",
        secrets_client: Any = None,
    ):
        self.webhook_secret_name = webhook_secret_name
        self.webhook_secret_key = webhook_secret_key
        self.app_credentials_secret_name = app_credentials_secret_name
        self._client = secrets_client or boto3.client("secretsmanager")

    def _get_secret_string(self, name: str) -> str:
        try:
            response = self._client.get_secret_value(SecretId=name)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to read secret", secret_name=name, error=str(e))
            raise ConfigError(f"Unable to read secret {name}", secret_name=name) from e

        value = response.get("SecretString")
        if not value:
            raise ConfigError(f"Secret {name} has no SecretString", secret_name=name)
        return value

    def get_webhook_secret(self) -> bytes:
        """Return the webhook HMAC secret.

        The secret may be stored as a JSON object (value under
        ``webhook_secret_key``) or as a plain string.

        Raises:
            ConfigError: If the secret is missing or empty.
        """
        raw = self._get_secret_string(self.webhook_secret_name)
        secret = raw
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            secret = parsed.get(self.webhook_secret_key)

        if not isinstance(secret, str) or not secret:
            raise ConfigError(
                f"Secret {self.webhook_secret_name} has no webhook secret value",
                secret_name=self.webhook_secret_name,
            )
        return secret.encode("utf-8")

    def get_app_credentials(self) -> AppCredentials:
        """Return the GitHub App id and decoded PEM private key.

        Raises:
            ConfigError: If the secret is missing, not JSON, lacks either
                field, or the key is not valid base64.
        """
        name = self.app_credentials_secret_name
        try:
            data: Dict[str, Any] = json.loads(self._get_secret_string(name))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Secret {name} is not valid JSON", secret_name=name) from e

        if not isinstance(data, dict):
            raise ConfigError(f"Secret {name} must be a JSON object", secret_name=name)

        app_id = data.get("githubAppId")
        encoded_key = data.get("githubAppPrivateKey")
        if not app_id or not encoded_key:
            raise ConfigError(
                "Missing GitHub App credentials: githubAppId or githubAppPrivateKey",
                secret_name=name,
            )

        try:
            private_key = base64.b64decode(encoded_key, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigError(
                "githubAppPrivateKey is not valid base64-encoded PEM",
                secret_name=name,
            ) from e

        return AppCredentials(app_id=str(app_id), private_key=private_key)
