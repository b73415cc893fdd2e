"""Persistent installation token cache backed by DynamoDB."""

from datetime import datetime
from typing import Optional

import structlog

from src.vortex.credentials.models import InstallationToken
from src.vortex.storage.dynamo import DynamoTable, string_attr


logger = structlog.get_logger(__name__)

TOKEN_SORT_KEY = "TOKEN"


def token_key(installation_id: str) -> str:
    return f"INSTALLATION#{installation_id}"


class TokenStore:
    """Cross-process token cache.

    Rows carry a ``ttl`` attribute equal to the token expiry (epoch
    seconds) so DynamoDB reclaims them once they are useless. Writes are
    unconditional: concurrent writers for the same installation simply
    overwrite each other with equally valid tokens.
    """

    def __init__(self, table: DynamoTable):
        self._table = table

    def get(self, installation_id: str) -> Optional[InstallationToken]:
        """Return the stored token for an installation, fresh or not.

        Raises:
            StorageError: If the read fails.
        """
        item = self._table.get_item(token_key(installation_id), TOKEN_SORT_KEY)
        if item is None:
            return None

        token = string_attr(item, "Token")
        expires_at = string_attr(item, "ExpiresAt")
        if not token or not expires_at:
            logger.warning(
                "Ignoring malformed token row",
                installation_id=installation_id,
            )
            return None

        try:
            expiry = datetime.fromisoformat(expires_at)
        except ValueError:
            logger.warning(
                "Ignoring token row with unparseable expiry",
                installation_id=installation_id,
            )
            return None

        if expiry.tzinfo is None:
            logger.warning(
                "Ignoring token row with expiry lacking a UTC offset",
                installation_id=installation_id,
            )
            return None

        return InstallationToken(
            installation_id=installation_id,
            token=token,
            expires_at=expiry,
        )

    def put(self, token: InstallationToken) -> None:
        """Store a token with a TTL equal to its expiry.

        Raises:
            StorageError: If the write fails.
        """
        self._table.put_item(
            {
                "PK": {"S": token_key(token.installation_id)},
                "SK": {"S": TOKEN_SORT_KEY},
                "Token": {"S": token.token},
                "ExpiresAt": {"S": token.expires_at.isoformat()},
                "ttl": {"N": str(int(token.expires_at.timestamp()))},
            }
        )
