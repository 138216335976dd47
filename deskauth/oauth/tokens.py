"""OAuth token data structures and utilities.

This module provides the Token dataclass for representing OAuth tokens
with their metadata, including expiry handling and serialization.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

# Treat tokens as expired this many seconds early to absorb clock skew
EXPIRY_DELTA = 10


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Token:
    """OAuth token with metadata.

    Attributes:
        access_token: The access token string
        token_type: Token type (typically "Bearer")
        refresh_token: Optional refresh token for obtaining new access tokens
        expires_at: When the access token expires (UTC datetime)
        scope: Space-separated list of granted scopes
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str | None = None

    def is_expired(self, buffer_seconds: int = EXPIRY_DELTA) -> bool:
        """Check if the access token is expired or nearly expired.

        Args:
            buffer_seconds: Consider token expired this many seconds before
                actual expiry to allow for clock skew and request latency.

        Returns:
            True if token is expired or will expire within buffer_seconds
        """
        if self.expires_at is None:
            # No expiry information - assume token is still valid
            return False

        now = datetime.now(timezone.utc)
        return now >= _as_utc(self.expires_at) - timedelta(seconds=buffer_seconds)

    def is_valid(self) -> bool:
        """Check if the token carries an access token that has not expired."""
        return bool(self.access_token) and not self.is_expired()

    def has_refresh_token(self) -> bool:
        """Check if this token has a refresh token."""
        return self.refresh_token is not None and len(self.refresh_token) > 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize token to dictionary for storage.

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }

        if self.refresh_token:
            data["refresh_token"] = self.refresh_token

        if self.expires_at:
            data["expiry"] = _as_utc(self.expires_at).isoformat()

        if self.scope:
            data["scope"] = self.scope

        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Token":
        """Deserialize token from dictionary.

        Args:
            data: Dictionary from storage (via to_dict)

        Returns:
            Token instance

        Raises:
            KeyError: If access_token is missing
            ValueError: If expiry is not an ISO-8601 timestamp
        """
        expires_at = None
        if data.get("expiry"):
            expires_at = _as_utc(datetime.fromisoformat(data["expiry"]))

        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            scope=data.get("scope"),
        )

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "Token":
        """Create Token from OAuth token endpoint response.

        Args:
            response: JSON response from token endpoint

        Returns:
            Token instance
        """
        expires_at = None
        if response.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(
                seconds=int(float(response["expires_in"]))
            )

        return cls(
            access_token=response["access_token"],
            token_type=response.get("token_type") or "Bearer",
            refresh_token=response.get("refresh_token"),
            expires_at=expires_at,
            scope=response.get("scope"),
        )

    def get_auth_header(self) -> str:
        """Get the Authorization header value for this token.

        Returns:
            Authorization header value (e.g., "Bearer abc123...")
        """
        # Always use "Bearer" (capital B) per RFC 6750, regardless of
        # what token_type the OAuth server returned (some return lowercase)
        return f"Bearer {self.access_token}"
