"""Developer app and platform credential models."""

from pydantic import BaseModel, ConfigDict, Field

from tunelink.models.enums import Platform

# Platforms that can be queried without per-app credentials
_CREDENTIAL_FREE_PLATFORMS = frozenset({Platform.DEEZER, Platform.YTMUSIC})


class PlatformCredentials(BaseModel):
    """Credentials an app holds for one platform integration."""

    model_config = ConfigDict(frozen=True)

    client_id: str | None = None
    client_secret: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.client_id, self.client_secret, self.access_token, self.refresh_token)
        )


class DeveloperApp(BaseModel):
    """A developer application that owns conversions.

    Attributes:
        id: App identifier.
        name: Display name.
        webhook_url: Where conversion events are delivered, if set.
        webhook_secret: Secret used to sign webhook payloads.
        credentials: Per-platform integration credentials.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    webhook_url: str | None = None
    webhook_secret: str | None = None
    credentials: dict[Platform, PlatformCredentials] = Field(default_factory=dict)

    def credentials_for(self, platform: Platform) -> PlatformCredentials | None:
        creds = self.credentials.get(platform)
        if creds is None or creds.is_empty:
            return None
        return creds

    @property
    def configured_platforms(self) -> list[Platform]:
        """Platforms this app can convert to, in enum order."""
        return [
            p
            for p in Platform
            if p in _CREDENTIAL_FREE_PLATFORMS or self.credentials_for(p) is not None
        ]
