"""Data models for tunelink.

Public API:
    LinkInfo - A platform URL resolved into its entity
    CandidateTrack - A track as returned by a platform adapter
    PlaylistMetadata - Information about a source playlist
    MatchResult - Outcome of matching one source track on one platform
    TrackConversion / PlaylistConversion - Conversion results
    DeveloperApp - The app that owns a conversion and its credentials
"""

from tunelink.models.app import DeveloperApp, PlatformCredentials
from tunelink.models.enums import (
    EntityKind,
    ErrorKind,
    EventType,
    Platform,
    TaskStatus,
    TaskType,
)
from tunelink.models.link import LinkInfo
from tunelink.models.results import (
    MatchResult,
    Omitted,
    PlatformPlaylistResult,
    PlaylistConversion,
    TrackConversion,
)
from tunelink.models.track import CandidateTrack, PlaylistMetadata, SearchQuery

__all__ = [
    "CandidateTrack",
    "DeveloperApp",
    "EntityKind",
    "ErrorKind",
    "EventType",
    "LinkInfo",
    "MatchResult",
    "Omitted",
    "Platform",
    "PlatformCredentials",
    "PlatformPlaylistResult",
    "PlaylistConversion",
    "PlaylistMetadata",
    "SearchQuery",
    "TaskStatus",
    "TaskType",
    "TrackConversion",
]
