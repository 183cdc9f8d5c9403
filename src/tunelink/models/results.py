"""Match and conversion result models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from tunelink.models.enums import EntityKind, Platform, TaskStatus
from tunelink.models.track import CandidateTrack, PlaylistMetadata


class Omitted(BaseModel):
    """A source track that could not be matched on a target platform.

    Attributes:
        title: Title of the source track.
        url: URL of the source track.
        artists: Artists of the source track.
        platform: Target platform the match was missing on.
        index: 1-based position of the track in the source playlist.
    """

    model_config = ConfigDict(frozen=True)

    title: str
    url: str = ""
    artists: list[str] = Field(default_factory=list)
    platform: Platform
    index: int = Field(ge=1)


class MatchResult(BaseModel):
    """Outcome of scoring candidates against one source track.

    Attributes:
        source: The track being matched.
        chosen: The accepted candidate, or None when nothing passed the threshold.
        score: Score of the chosen candidate, or the best score seen.
        platform: Target platform the candidates came from.
    """

    model_config = ConfigDict(frozen=True)

    source: CandidateTrack
    chosen: CandidateTrack | None = None
    score: float = 0.0
    platform: Platform

    @property
    def omitted(self) -> bool:
        return self.chosen is None

    def to_omitted(self, index: int) -> Omitted:
        """Describe the source track as omitted at a playlist position."""
        return Omitted(
            title=self.source.title,
            url=self.source.url,
            artists=list(self.source.artists),
            platform=self.platform,
            index=index,
        )


class TrackConversion(BaseModel):
    """Result of converting a single track.

    Each target platform maps to its MatchResult. A None value means the
    adapter failed or the platform is not configured for the app; a
    MatchResult with no chosen track means nothing passed the threshold.
    """

    model_config = ConfigDict(frozen=True)

    entity: EntityKind = EntityKind.TRACK
    unique_id: str
    source_platform: Platform
    source: CandidateTrack
    platforms: dict[Platform, MatchResult | None] = Field(default_factory=dict)

    @property
    def matched_count(self) -> int:
        return sum(
            1 for match in self.platforms.values() if match and match.chosen
        )


class PlatformPlaylistResult(BaseModel):
    """Matched tracks for one target platform, in source playlist order.

    Attributes:
        tracks: Matched tracks ordered by their source index.
        length_ms: Sum of the matched track durations.
        omitted: Source tracks that were not matched on this platform.
    """

    model_config = ConfigDict(frozen=True)

    tracks: list[CandidateTrack] = Field(default_factory=list)
    length_ms: int = 0
    omitted: list[Omitted] = Field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return len(self.tracks)


class PlaylistConversion(BaseModel):
    """Result of converting a playlist to one or more platforms.

    Attributes:
        unique_id: Checksum identifying the conversion request.
        status: Status of the task that produced this result.
        meta: Metadata of the source playlist.
        platforms: Per-target results. The source platform is never a key.
        omitted_tracks: Omitted entries across all target platforms.
        short_url: Short link to the result, if assigned.
    """

    model_config = ConfigDict(frozen=True)

    unique_id: str
    status: TaskStatus = TaskStatus.COMPLETED
    meta: PlaylistMetadata
    platforms: dict[Platform, PlatformPlaylistResult] = Field(default_factory=dict)
    omitted_tracks: list[Omitted] = Field(default_factory=list)
    short_url: str | None = None
