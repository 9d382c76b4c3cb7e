"""Pydantic models for stored OAuth tokens and accounts.

The durable token record (tokens.json) is a TokenRecord: a schema version
plus a mapping from account name to Account. Each Account carries exactly one
OAuthToken; an account without a completed authorization is never stored.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

# Highest tokens.json schema version this release understands.
TOKEN_RECORD_VERSION = 1


class TokenStatus(str, Enum):
    """State of an account's stored token."""

    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"
    MISSING = "missing"


class OAuthToken(BaseModel):
    """OAuth2 bearer token for a single Google account.

    Attributes:
        access_token: Short-lived bearer token sent with API requests.
        refresh_token: Long-lived token used to obtain new access tokens.
        token_type: Token type, always "Bearer" for Google.
        expiry: When the access token expires (UTC). None means unknown.
        scopes: Scopes granted to the token.
    """

    access_token: str = Field(..., description="OAuth access token")
    refresh_token: str | None = Field(default=None, description="OAuth refresh token")
    token_type: str = Field(default="Bearer", description="Token type")
    expiry: datetime | None = Field(default=None, description="Access token expiry (UTC)")
    scopes: list[str] = Field(default_factory=list, description="Granted OAuth scopes")

    @field_validator("expiry")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        """Check whether the access token is expired or about to expire.

        Args:
            buffer_seconds: Treat the token as expired this many seconds early.

        Returns:
            True if the token expires within the buffer. Tokens without an
            expiry are never considered expired.
        """
        if self.expiry is None:
            return False
        return datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds) >= self.expiry


class Account(BaseModel):
    """A named, authorized Google identity."""

    email: str = Field(default="", description="Account email, resolved lazily")
    token: OAuthToken


class TokenRecord(BaseModel):
    """Contents of tokens.json."""

    version: int = Field(default=TOKEN_RECORD_VERSION, description="Record schema version")
    accounts: dict[str, Account] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value < 1 or value > TOKEN_RECORD_VERSION:
            raise ValueError(
                f"unsupported token record version {value} "
                f"(this release reads up to version {TOKEN_RECORD_VERSION})"
            )
        return value
