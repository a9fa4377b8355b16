"""
Process-wide sync state and its transitions
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from dastan.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Persisted setting keys
KEY_PROVIDER = "sync_provider"
KEY_ROOM_ID = "sync_room_id"
KEY_TOKEN = "sync_github_token"
KEY_RESOURCE_ID = "sync_gist_id"
KEY_RECONNECT = "sync_reconnect_required"


class ProviderKind(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderKind":
        """Parse a stored provider name; 'github' is the legacy name for private"""
        if not value:
            return cls.PUBLIC
        value = value.strip().lower()
        if value == "github":
            return cls.PRIVATE
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown sync provider: {value}")


@dataclass(frozen=True)
class SyncState:
    """
    Active provider selection and routing parameters

    token and resource_id are always set or cleared together.
    """

    provider: ProviderKind = ProviderKind.PUBLIC
    room_id: Optional[str] = None
    token: Optional[str] = None
    resource_id: Optional[str] = None
    last_synced: Optional[int] = None
    is_syncing: bool = False
    reconnect_required: bool = False

    @classmethod
    def from_settings(cls, settings: Dict[str, str], default_room: str) -> "SyncState":
        """Build the initial state from persisted settings, falling back to defaults"""
        try:
            provider = ProviderKind.parse(settings.get(KEY_PROVIDER))
        except ConfigurationError as e:
            logger.warning(f"{str(e)}; using public provider")
            provider = ProviderKind.PUBLIC

        room_id = settings.get(KEY_ROOM_ID) or default_room
        token = settings.get(KEY_TOKEN) or None
        resource_id = settings.get(KEY_RESOURCE_ID) or None

        if not (token and resource_id):
            token, resource_id = None, None
            if provider == ProviderKind.PRIVATE:
                logger.warning("Private provider selected without credentials; using local-only mode")
                provider = ProviderKind.NONE

        return cls(
            provider=provider,
            room_id=room_id,
            token=token,
            resource_id=resource_id,
            reconnect_required=settings.get(KEY_RECONNECT) == "1",
        )

    def to_settings(self) -> Dict[str, Optional[str]]:
        return {
            KEY_PROVIDER: self.provider.value,
            KEY_ROOM_ID: self.room_id,
            KEY_TOKEN: self.token,
            KEY_RESOURCE_ID: self.resource_id,
            KEY_RECONNECT: "1" if self.reconnect_required else None,
        }

    def reconfigured(
        self,
        provider: ProviderKind,
        room_id: Optional[str] = None,
        token: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> "SyncState":
        """
        Return the state after an explicit user reconfiguration

        The result is never-synced and has no reconnect requirement. Raises
        ConfigurationError if the routing parameters do not fit the provider.
        """
        if bool(token) != bool(resource_id):
            raise ConfigurationError("Credential and resource id must be set together")

        if provider == ProviderKind.PUBLIC and not (room_id or self.room_id):
            raise ConfigurationError("A room id is required for the public provider")

        if provider == ProviderKind.PRIVATE and not (token and resource_id):
            raise ConfigurationError("A token and a resource id are required for the private provider")

        return SyncState(
            provider=provider,
            room_id=room_id or self.room_id,
            token=token or None,
            resource_id=resource_id or None,
            last_synced=None,
            is_syncing=False,
            reconnect_required=False,
        )

    def downgraded(self) -> "SyncState":
        """State after the private store rejected the credential"""
        return replace(
            self,
            provider=ProviderKind.NONE,
            is_syncing=False,
            reconnect_required=True,
        )

    def synced(self, timestamp_ms: int) -> "SyncState":
        return replace(self, last_synced=timestamp_ms)

    def syncing(self, flag: bool) -> "SyncState":
        return replace(self, is_syncing=flag)

    @property
    def label(self) -> str:
        if self.provider == ProviderKind.PRIVATE:
            return "GitHub Gist active"
        if self.provider == ProviderKind.PUBLIC:
            return f"Room {self.room_id}"
        return "Local only"
