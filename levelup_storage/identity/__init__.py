"""
Identity management for tiered storage.

The authenticated user's id scopes every local and remote store call.
"""

from .config_provider import ConfigFileIdentityProvider
from .provider import IdentityProvider, StaticIdentityProvider
from .types import AuthenticationRequiredError, AuthProvider, UserIdentity

__all__ = [
    # Types
    "AuthProvider",
    "UserIdentity",
    # Errors
    "AuthenticationRequiredError",
    # Providers
    "IdentityProvider",
    "StaticIdentityProvider",
    "ConfigFileIdentityProvider",
]
