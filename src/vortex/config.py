"""Pipeline configuration using pydantic-settings.

This module defines the VortexSettings class that reads configuration
from environment variables with the VORTEX_ prefix. Secrets themselves
(webhook secret, GitHub App key) live in AWS Secrets Manager; only their
names are configured here.
"""

from typing import Any, Optional

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.vortex.errors import ConfigError
from src.vortex.pipeline import PIPELINE_EDGES


class VortexSettings(BaseSettings):
    """Review pipeline configuration from environment variables.

    All environment variables are prefixed with VORTEX_ (e.g., VORTEX_TABLE_NAME).

    Required fields (must be set via environment variables):
    - event_bus_name: EventBridge bus that carries domain events
    - table_name: DynamoDB table for tokens, profiles and the audit log
    - report_bucket: S3 bucket that stores generated reports
    """

    model_config = SettingsConfigDict(
        env_prefix="VORTEX_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # AWS Resources
    # -------------------------------------------------------------------------
    event_bus_name: str

    table_name: str

    report_bucket: str

    aws_region: Optional[str] = None

    # Connect/read timeouts applied to every boto3 client
    aws_connect_timeout_seconds: float = 5.0
    aws_read_timeout_seconds: float = 30.0
    aws_max_attempts: int = 3

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------
    event_source: str = "vortex.github"

    # Pipeline stage served by the bus worker; one deployed function per stage
    stage: Optional[str] = None

    # -------------------------------------------------------------------------
    # Secrets
    # -------------------------------------------------------------------------
    webhook_secret_name: str = "vortex/github-app-webhook-secret"

    # Key inside the JSON secret string; a plain-string secret is used as is
    webhook_secret_key: str = "vortex-github-app-webhook-secret"

    app_credentials_secret_name: str = "vortex/github-app-credentials"

    # -------------------------------------------------------------------------
    # GitHub
    # -------------------------------------------------------------------------
    github_base_url: str = "https://api.github.com"

    http_timeout_seconds: float = 10.0

    github_max_retries: int = 2

    # Minimum remaining validity before a cached token is reused
    token_freshness_seconds: int = 60

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------
    model_id: str = "anthropic.claude-3-sonnet-20240229-v1:0"

    max_tokens: int = 1024

    temperature: float = 0.3

    top_p: float = 0.95

    # Upper bound on patch text included in a single prompt
    max_patch_chars: int = 60000

    # Serialized diff.ready detail stays below the 256 KB PutEvents entry limit
    max_event_detail_bytes: int = 240 * 1024

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------
    mail_sender: str = '"Code Reviewer" <noreply@vortex.dev>'

    mail_subject: str = "Your PR Review Report"

    # -------------------------------------------------------------------------
    # Server / Logging
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    log_level: str = "INFO"

    log_json: bool = True

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator(
        "event_bus_name",
        "table_name",
        "report_bucket",
        "webhook_secret_name",
        "app_credentials_secret_name",
        "event_source",
        "model_id",
    )
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Validate that resource names are not empty."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("stage")
    @classmethod
    def validate_stage(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the worker stage is a declared pipeline stage."""
        if v is None:
            return v
        names = [edge.name for edge in PIPELINE_EDGES]
        if v.strip() not in names:
            raise ValueError(f"stage must be one of: {', '.join(names)}")
        return v.strip()

    @field_validator("github_base_url")
    @classmethod
    def validate_github_base_url(cls, v: str) -> str:
        """Validate that the GitHub base URL is an HTTP(S) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator(
        "http_timeout_seconds",
        "aws_connect_timeout_seconds",
        "aws_read_timeout_seconds",
    )
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("token_freshness_seconds", "github_max_retries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value cannot be negative")
        return v

    @field_validator(
        "max_tokens",
        "max_patch_chars",
        "max_event_detail_bytes",
        "aws_max_attempts",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def load_settings(**overrides: Any) -> VortexSettings:
    """Create and return a VortexSettings instance.

    Args:
        **overrides: Explicit field values that take precedence over
            the environment.

    Returns:
        VortexSettings: Configured settings instance.

    Raises:
        ConfigError: If required fields are missing or invalid.
    """
    try:
        return VortexSettings(**overrides)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigError(
            f"Invalid configuration: {', '.join(fields)}",
            fields=fields,
        ) from e
