"""User profile registration and lookup."""

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.vortex.storage.dynamo import DynamoTable, string_attr


logger = structlog.get_logger(__name__)

PROFILE_SORT_KEY = "PROFILE"


def profile_key(github_username: str) -> str:
    return f"GITHUBUSER#{github_username}"


class UserProfile(BaseModel):
    """A registered report recipient.

    Attributes:
        github_username: GitHub login, unique per profile.
        email: Address reports are mailed to.
    """

    github_username: str = Field(..., min_length=1, alias="githubUsername")
    email: str = Field(..., min_length=3)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("github_username", "email")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("value cannot be blank")
        return v.strip()

    @field_validator("email")
    @classmethod
    def validate_email_shape(cls, v: str) -> str:
        local, _, domain = v.partition("@")
        if not local or not domain:
            raise ValueError("email must contain a local part and a domain")
        return v


class ProfileRepository:
    """Stores and resolves UserProfile rows keyed by GitHub login."""

    def __init__(self, table: DynamoTable):
        self._table = table

    def register(self, profile: UserProfile) -> None:
        """Create or replace the profile for a GitHub login.

        Raises:
            StorageError: If the write fails.
        """
        self._table.put_item(
            {
                "PK": {"S": profile_key(profile.github_username)},
                "SK": {"S": PROFILE_SORT_KEY},
                "Email": {"S": profile.email},
                "GitHubUsername": {"S": profile.github_username},
            }
        )
        logger.info("Profile registered", github_username=profile.github_username)

    def get_email(self, github_username: str) -> Optional[str]:
        """Resolve the registered email for a GitHub login.

        Returns:
            The email, or None if no profile exists.

        Raises:
            StorageError: If the read fails.
        """
        item = self._table.get_item(
            profile_key(github_username),
            PROFILE_SORT_KEY,
            attributes=["Email"],
        )
        if item is None:
            return None
        return string_attr(item, "Email")
