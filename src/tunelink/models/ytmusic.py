"""Pydantic models for the ytmusicapi payloads read by the YouTube Music adapter.

Only the fields needed to build candidates and playlist metadata are
declared; the rest of each response is ignored. Tracks from search,
get_playlist and get_watch_playlist differ in shape and all validate
into the same Song model.
"""

import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

__all__ = [
    "AlbumRef",
    "ArtistRef",
    "Playlist",
    "Song",
    "Thumbnail",
    "parse_length",
]


def parse_length(length: str | None) -> int | None:
    """Parse a track length like '3:00' or '1:23:45' into seconds.

    Returns None for empty or unparseable values.
    """
    if not length:
        return None

    try:
        parts = [int(p) for p in length.split(":")]
    except ValueError:
        logger.warning("Could not parse track length: %s", length)
        return None

    if len(parts) > 3:
        logger.warning("Unexpected track length format: %s", length)
        return None
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + part
    return seconds


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Thumbnail(_Payload):
    url: str
    width: int = 0


class ArtistRef(_Payload):
    name: str = ""
    id: str | None = None


class AlbumRef(_Payload):
    name: str
    id: str | None = None


def _largest(thumbnails: list[Thumbnail]) -> str | None:
    if not thumbnails:
        return None
    return max(thumbnails, key=lambda t: t.width).url


class Song(_Payload):
    """A song from search, a playlist, or a watch playlist.

    Watch playlist tracks name their thumbnails `thumbnail` and carry the
    duration as a string in `length`; both spellings are accepted.
    """

    video_id: str = Field(alias="videoId")
    title: str
    artists: list[ArtistRef] = Field(default_factory=list)
    album: AlbumRef | None = None
    thumbnails: list[Thumbnail] = Field(
        default_factory=list,
        validation_alias=AliasChoices("thumbnails", "thumbnail"),
    )
    duration_seconds: int | None = Field(
        default=None,
        validation_alias=AliasChoices("duration_seconds", "length"),
    )
    is_explicit: bool = Field(default=False, alias="isExplicit")
    year: str | None = None

    @field_validator("artists", "thumbnails", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        # ytmusicapi returns null instead of an empty list on some tracks
        return value or []

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _parse_length(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_length(value)
        return value

    @property
    def artist_names(self) -> list[str]:
        return [a.name for a in self.artists if a.name]

    @property
    def duration_ms(self) -> int | None:
        return self.duration_seconds * 1000 if self.duration_seconds else None

    @property
    def cover(self) -> str | None:
        return _largest(self.thumbnails)


class Playlist(_Payload):
    """Response of get_playlist(), with unavailable tracks already removed."""

    title: str | None = None
    author: ArtistRef | None = None
    thumbnails: list[Thumbnail] = Field(default_factory=list)
    tracks: list[Song] = Field(default_factory=list)

    @property
    def cover(self) -> str | None:
        return _largest(self.thumbnails)
