"""GitHub App credentials.

- SecretStore: webhook secret and app credentials from Secrets Manager
- TokenCache: process-local token map guarded by a lock
- CredentialBroker: two-tier cached installation token issuance
"""

from src.vortex.credentials.broker import CredentialBroker
from src.vortex.credentials.cache import TokenCache
from src.vortex.credentials.models import AppCredentials, InstallationToken
from src.vortex.credentials.secrets import SecretStore

__all__ = [
    "AppCredentials",
    "CredentialBroker",
    "InstallationToken",
    "SecretStore",
    "TokenCache",
]
