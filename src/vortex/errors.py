"""Error taxonomy shared by every pipeline component.

The router and the worker entry point decide retry behaviour from these
classes alone:

- AuthError: bad or missing webhook signature. Terminal, never retried.
- ConfigError: missing secret or environment value. Fatal at startup.
- UpstreamError: an external dependency failed. Reported so the
  delivering transport can redeliver.
- DataNotFoundError: nothing to do for this event (for example no email
  on file). The pipeline stops quietly.
- InvalidEventError: an envelope or payload failed validation.
"""

from typing import Any, Dict, Optional


class VortexError(Exception):
    """Base class for all pipeline errors.

    Attributes:
        message: Human-readable error description.
        context: Structured fields to attach to log entries.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)


class AuthError(VortexError):
    """Raised when a webhook fails signature verification."""


class ConfigError(VortexError):
    """Raised when configuration or a required secret is missing or malformed."""


class UpstreamError(VortexError):
    """Raised when an external service call fails or times out.

    Attributes:
        service: Name of the failing dependency (github, dynamodb, s3, ...).
        status_code: HTTP status code when one is available.
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.service = service
        self.status_code = status_code


class CredentialError(UpstreamError):
    """Raised when an installation token cannot be issued."""


class DataNotFoundError(VortexError):
    """Raised when a stage has no data to act on and should stop silently."""


class InvalidEventError(VortexError):
    """Raised when a domain event envelope or payload is malformed."""
