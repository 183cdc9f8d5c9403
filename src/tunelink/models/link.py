"""Parsed platform link model."""

from pydantic import BaseModel, ConfigDict

from tunelink.models.enums import EntityKind, Platform


class LinkInfo(BaseModel):
    """A platform URL resolved into its entity.

    Attributes:
        platform: Platform that owns the link.
        entity: Kind of entity the link points to.
        entity_id: Platform-specific identifier of the entity.
        target_link: Canonical URL of the entity, tracking params removed.
        target_platform: Requested target platform, or None for all.
        app: Owning developer app ID.
        developer: Developer that owns the app.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform
    entity: EntityKind
    entity_id: str
    target_link: str
    target_platform: Platform | None = None
    app: str | None = None
    developer: str | None = None

    @property
    def is_playlist(self) -> bool:
        return self.entity == EntityKind.PLAYLIST
