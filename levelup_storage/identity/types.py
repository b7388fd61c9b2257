"""
Identity types.

Defines who the current user is. The user_id is the owner predicate
for every store call.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class AuthProvider(Enum):
    """Supported identity sources."""

    STATIC = "static"  # Supplied by the host application's auth flow
    CONFIG = "config"  # Local settings file (dev/offline)


@dataclass
class UserIdentity:
    """Identity of the current user.

    This is the single source of truth for "who am I?" in the storage layer.
    Credentials for the remote store live in CosmosConfig, not here.
    """

    user_id: str
    display_name: str | None = None
    email: str | None = None
    auth_provider: AuthProvider = AuthProvider.STATIC

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "email": self.email,
            "auth_provider": self.auth_provider.value,
        }


class AuthenticationRequiredError(Exception):
    """Raised when an identity is required but none is available."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)
        self.message = message
