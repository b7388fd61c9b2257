"""
Config file identity provider.

Reads the signed-in user from a local settings file. Used for development
and for offline-first devices where the last signed-in user is persisted.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from .provider import IdentityProvider
from .types import AuthenticationRequiredError, AuthProvider, UserIdentity

logger = logging.getLogger(__name__)


class ConfigFileIdentityProvider(IdentityProvider):
    """Identity provider that reads from local config.

    Configuration in ~/.levelup/settings.yaml:

    ```yaml
    identity:
      user_id: "3f1c2a9e-..."
      display_name: "Alice"
      email: "alice@example.com"
    ```

    Unlike a generated local identity, a missing user_id is an error:
    records must never be written under a made-up owner.
    """

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or Path.home() / ".levelup" / "settings.yaml"
        self._identity: UserIdentity | None = None

    async def get_current_identity(self) -> UserIdentity:
        if self._identity is not None:
            return self._identity

        identity_config = self._load_config().get("identity") or {}
        user_id = identity_config.get("user_id")
        if not user_id:
            raise AuthenticationRequiredError(f"No identity.user_id configured in {self.config_path}")

        self._identity = UserIdentity(
            user_id=str(user_id),
            display_name=identity_config.get("display_name"),
            email=identity_config.get("email"),
            auth_provider=AuthProvider.CONFIG,
        )
        return self._identity

    async def sign_out(self) -> None:
        """Clear cached identity. The config file is not modified."""
        self._identity = None

    @property
    def provider_type(self) -> AuthProvider:
        return AuthProvider.CONFIG

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            return {}

        try:
            return yaml.safe_load(self.config_path.read_text()) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Could not parse {self.config_path}: {e}")
            return {}
