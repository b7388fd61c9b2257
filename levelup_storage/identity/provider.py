"""
Identity provider interface.

The storage layer never authenticates users itself; the host application's
auth flow supplies the identity through one of these providers.
"""

from abc import ABC, abstractmethod

from .types import AuthenticationRequiredError, AuthProvider, UserIdentity


class IdentityProvider(ABC):
    """Abstract identity provider."""

    @abstractmethod
    async def get_current_identity(self) -> UserIdentity:
        """Get the current authenticated user identity.

        Raises:
            AuthenticationRequiredError: If no user is signed in
        """
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        """Clear cached credentials."""
        ...

    @property
    @abstractmethod
    def provider_type(self) -> AuthProvider:
        """Get the provider type."""
        ...

    async def get_user_id(self) -> str:
        """Convenience: get just user_id."""
        identity = await self.get_current_identity()
        return identity.user_id


class StaticIdentityProvider(IdentityProvider):
    """Identity handed over by the host application after sign-in."""

    def __init__(self, identity: UserIdentity | str):
        if isinstance(identity, str):
            identity = UserIdentity(user_id=identity)
        self._identity: UserIdentity | None = identity

    async def get_current_identity(self) -> UserIdentity:
        if self._identity is None:
            raise AuthenticationRequiredError()
        return self._identity

    async def sign_out(self) -> None:
        self._identity = None

    @property
    def provider_type(self) -> AuthProvider:
        return AuthProvider.STATIC
