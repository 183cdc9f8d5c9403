"""Track and playlist metadata models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tunelink.models.enums import EntityKind, Platform


def format_duration(duration_ms: int | None) -> str:
    """Format a duration in milliseconds as m:ss (h:mm:ss above one hour)."""
    if duration_ms is None:
        return ""
    total = round(duration_ms / 1000)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


class CandidateTrack(BaseModel):
    """A track as returned by a platform adapter.

    Used both for source tracks (fetched by ID) and for search candidates.

    Attributes:
        platform: Platform the track lives on.
        id: Platform-specific track identifier.
        title: Track title as the platform reports it.
        artists: Ordered list of artist names.
        duration_ms: Track length in milliseconds, if known.
        album: Album title, if known.
        explicit: Whether the platform flags the track as explicit.
        cover: Cover art URL.
        preview: Audio preview URL.
        release_date: Release date string as reported by the platform.
        url: Public URL of the track.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform
    id: str
    title: str
    artists: list[str] = Field(default_factory=list)
    duration_ms: int | None = None
    album: str | None = None
    explicit: bool = False
    cover: str | None = None
    preview: str | None = None
    release_date: str | None = None
    url: str = ""

    @field_validator("id", "title")
    @classmethod
    def non_empty_string(cls, v: str) -> str:
        """Validate that id and title are non-empty strings."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @property
    def artist(self) -> str:
        """Joined artists for display."""
        return ", ".join(self.artists) if self.artists else "Unknown Artist"

    @property
    def duration(self) -> str:
        """Duration formatted as m:ss."""
        return format_duration(self.duration_ms)


class SearchQuery(BaseModel):
    """What an adapter should look for when searching a platform."""

    model_config = ConfigDict(frozen=True)

    title: str
    artists: list[str] = Field(default_factory=list)
    album: str | None = None
    duration_ms: int | None = None

    @classmethod
    def from_track(cls, track: CandidateTrack) -> SearchQuery:
        return cls(
            title=track.title,
            artists=list(track.artists),
            album=track.album,
            duration_ms=track.duration_ms,
        )

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""

    @property
    def text(self) -> str:
        """Free-text query for platforms without field-scoped search."""
        return f"{self.title} {self.primary_artist}".strip()


class PlaylistMetadata(BaseModel):
    """Information about a source playlist.

    Attributes:
        title: Playlist title.
        owner: Display name of the playlist owner.
        cover: Cover image URL.
        url: Public URL of the playlist.
        track_count: Number of tracks the platform reports.
        length_ms: Total duration of all tracks in milliseconds.
        last_updated: When the platform last modified the playlist, if known.
        checksum: Platform snapshot/checksum of the playlist contents, if any.
        entity: Always playlist.
        short_url: Short link to the conversion result, once assigned.
    """

    model_config = ConfigDict(frozen=True)

    title: str
    owner: str | None = None
    cover: str | None = None
    url: str = ""
    track_count: int = 0
    length_ms: int = 0
    last_updated: datetime | None = None
    checksum: str | None = None
    entity: EntityKind = EntityKind.PLAYLIST
    short_url: str | None = None

    @property
    def length(self) -> str:
        """Total duration formatted for display."""
        return format_duration(self.length_ms)
