"""Process-local tier of the installation token cache."""

import threading
from datetime import datetime
from typing import Dict, Optional

from src.vortex.credentials.models import InstallationToken


class TokenCache:
    """In-memory token map owned by one worker process.

    Constructed once per worker and handed to the CredentialBroker. Every
    read-check and write happens under one lock, so concurrent callers
    never observe a half-written entry. Entries are never evicted
    explicitly; a stale entry is simply ignored and later overwritten.
    """

    def __init__(self) -> None:
        self._tokens: Dict[str, InstallationToken] = {}
        self._lock = threading.Lock()

    def get_fresh(
        self,
        installation_id: str,
        now: datetime,
        margin_seconds: int,
    ) -> Optional[InstallationToken]:
        """Return the cached token if it is valid beyond the margin."""
        with self._lock:
            token = self._tokens.get(installation_id)
            if token is not None and token.is_fresh(now, margin_seconds):
                return token
            return None

    def put(self, token: InstallationToken) -> None:
        """Store a token unless a longer-lived one is already cached."""
        with self._lock:
            current = self._tokens.get(token.installation_id)
            if current is None or current.expires_at <= token.expires_at:
                self._tokens[token.installation_id] = token

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
