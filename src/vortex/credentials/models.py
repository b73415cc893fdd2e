"""Credential data types."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass(frozen=True)
class InstallationToken:
    """Installation-scoped access token issued to the GitHub App.

    Attributes:
        installation_id: GitHub App installation id.
        token: The bearer token. Excluded from repr so it never reaches logs.
        expires_at: Absolute expiry (timezone-aware, UTC).
    """

    installation_id: str
    token: str = field(repr=False)
    expires_at: datetime

    def is_fresh(self, now: datetime, margin_seconds: int = 60) -> bool:
        """Return True if the token stays valid beyond ``now + margin``."""
        return self.expires_at > now + timedelta(seconds=margin_seconds)


@dataclass(frozen=True)
class AppCredentials:
    """GitHub App identity used to sign app assertions."""

    app_id: str
    private_key: str = field(repr=False)
